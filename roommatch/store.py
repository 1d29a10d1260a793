"""
Acceso a conversaciones y mensajes en MongoDB.

Todas las lecturas normalizan los documentos en el borde: participantes,
remitentes y read_by salen siempre como emails en minúsculas, aunque el
documento sea antiguo y guarde objetos.

Cada escritura avisa a la fuente de cambios para que los streams en tiempo
real vuelvan a consultar sus tópicos.
"""
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
import logging

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from .change_source import ChangeSource, Topic
from .codec import MessageCodec
from .errors import ConversationNotFound, ConversationValidationError, NotAParticipant
from .ledger import deleted_identifier
from .utils import normalize_identifier, to_id, utcnow

logger = logging.getLogger(__name__)


def normalize_participants(values: Iterable[Any]) -> List[str]:
    """Normaliza y elimina duplicados conservando el orden."""
    seen: List[str] = []
    for value in values or []:
        ident = normalize_identifier(value)
        if ident and ident not in seen:
            seen.append(ident)
    return seen


def _oid(conversation_id: str) -> ObjectId:
    if not ObjectId.is_valid(conversation_id):
        raise ConversationNotFound(conversation_id)
    return ObjectId(conversation_id)


def conversation_from_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    d = to_id(doc)
    d["participants"] = normalize_participants(d.get("participants"))
    d["hidden_by"] = normalize_participants(d.get("hidden_by"))
    d["is_group"] = bool(d.get("is_group", False))
    last = d.get("last_message")
    if isinstance(last, dict):
        last["sender_id"] = normalize_identifier(last.get("sender_id")) or ""
    else:
        d["last_message"] = None
    return d


def message_from_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    d = to_id(doc)
    d["sender_id"] = normalize_identifier(d.get("sender_id")) or ""
    read_by = d.get("read_by")
    if isinstance(read_by, list):
        d["read_by"] = normalize_participants(read_by)
    else:
        d["read_by"] = []
    return d


class Store:

    def __init__(self, db: AsyncIOMotorDatabase, codec: MessageCodec, change_source: Optional[ChangeSource] = None):
        self.db = db
        self.codec = codec
        self.change_source = change_source or ChangeSource()

    # ---------- Avisos ----------

    def _notify_conversations(self, participants: Iterable[str]) -> None:
        for email in participants:
            self.change_source.notify(Topic.conversations(email))

    def _notify_messages(self, conversation_id: str) -> None:
        self.change_source.notify(Topic.messages(conversation_id))

    # ---------- Conversaciones ----------

    async def get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        if not ObjectId.is_valid(conversation_id):
            return None
        doc = await self.db.conversations.find_one({"_id": ObjectId(conversation_id)})
        return conversation_from_doc(doc) if doc else None

    async def require_participant(self, conversation_id: str, email: str) -> Dict[str, Any]:
        conv = await self.get_conversation(conversation_id)
        if conv is None:
            raise ConversationNotFound(conversation_id)
        if email not in conv["participants"]:
            raise NotAParticipant(conversation_id)
        return conv

    async def get_conversations_for_user(self, email: str) -> List[Dict[str, Any]]:
        """Conversaciones del usuario, más recientes primero (incluye las ocultas)."""
        cursor = self.db.conversations.find(
            {"$or": [{"participants": email}, {"participants.email": email}]}
        ).sort([("updated_at", -1), ("_id", -1)])
        return [conversation_from_doc(doc) async for doc in cursor]

    async def conversation_ids_with_messages(self, conversation_ids: List[str]) -> Set[str]:
        if not conversation_ids:
            return set()
        ids = await self.db.messages.distinct("conversation_id", {"conversation_id": {"$in": conversation_ids}})
        return {str(i) for i in ids}

    async def find_existing_conversation(self, participants: List[str]) -> Optional[Dict[str, Any]]:
        """Busca una conversación con exactamente el mismo conjunto de participantes."""
        wanted = sorted(normalize_participants(participants))
        if not wanted:
            return None
        for conv in await self.get_conversations_for_user(normalize_participants(participants)[0]):
            if sorted(conv["participants"]) == wanted:
                return conv
        return None

    async def create_conversation(self, participants: List[str], is_group: bool = False, name: Optional[str] = None) -> Dict[str, Any]:
        participants = normalize_participants(participants)
        if not participants:
            raise ConversationValidationError("Una conversación necesita al menos un participante")
        now = utcnow()
        doc = {
            "participants": participants,
            "is_group": bool(is_group),
            "name": name if is_group else None,
            "last_message": None,
            "hidden_by": [],
            "created_at": now,
            "updated_at": now,
        }
        res = await self.db.conversations.insert_one(doc)
        doc["_id"] = res.inserted_id
        logger.info(f"Conversación {res.inserted_id} creada ({len(participants)} participantes)")
        # Sin mensajes todavía: el stream de conversaciones no la mostrará
        self._notify_conversations(participants)
        return conversation_from_doc(doc)

    async def start_conversation(
        self,
        creator: str,
        participants: List[str],
        is_group: bool = False,
        name: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Crea la conversación o devuelve la existente con los mismos participantes.
        Devuelve (conversación, creada).
        """
        creator_id = normalize_identifier(creator)
        members = normalize_participants([creator_id, *participants])
        if is_group:
            if not (name and name.strip()):
                raise ConversationValidationError("Los grupos necesitan un nombre")
        elif len(members) < 2:
            raise ConversationValidationError("Una conversación directa necesita otro participante")

        existing = await self.find_existing_conversation(members)
        if existing is not None:
            return existing, False
        created = await self.create_conversation(members, is_group, name.strip() if is_group else None)
        return created, True

    async def update_conversation(self, conversation_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(patch)
        data["updated_at"] = utcnow()
        res = await self.db.conversations.find_one_and_update(
            {"_id": _oid(conversation_id)},
            {"$set": data},
            return_document=ReturnDocument.AFTER,
        )
        if res is None:
            raise ConversationNotFound(conversation_id)
        conv = conversation_from_doc(res)
        self._notify_conversations(conv["participants"])
        return conv

    async def hide_conversation(self, conversation_id: str, email: str) -> Dict[str, Any]:
        return await self._set_hidden(conversation_id, email, hidden=True)

    async def unhide_conversation(self, conversation_id: str, email: str) -> Dict[str, Any]:
        return await self._set_hidden(conversation_id, email, hidden=False)

    async def _set_hidden(self, conversation_id: str, email: str, hidden: bool) -> Dict[str, Any]:
        op = "$addToSet" if hidden else "$pull"
        res = await self.db.conversations.find_one_and_update(
            {"_id": _oid(conversation_id)},
            {op: {"hidden_by": email}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if res is None:
            raise ConversationNotFound(conversation_id)
        conv = conversation_from_doc(res)
        self._notify_conversations(conv["participants"])
        return conv

    async def delete_conversation(self, conversation_id: str) -> None:
        """Borra la conversación y todos sus mensajes."""
        conv = await self.get_conversation(conversation_id)
        if conv is None:
            raise ConversationNotFound(conversation_id)
        deleted = await self.db.messages.delete_many({"conversation_id": conversation_id})
        await self.db.conversations.delete_one({"_id": ObjectId(conversation_id)})
        logger.info(f"Conversación {conversation_id} eliminada con {deleted.deleted_count} mensajes")
        self._notify_messages(conversation_id)
        self._notify_conversations(conv["participants"])

    # ---------- Mensajes ----------

    async def get_messages_for_conversation(self, conversation_id: str) -> List[Dict[str, Any]]:
        """Mensajes en orden de creación. El contenido sigue cifrado."""
        cursor = self.db.messages.find({"conversation_id": conversation_id}).sort([("created_at", 1), ("_id", 1)])
        return [message_from_doc(doc) async for doc in cursor]

    async def create_message(self, conversation_id: str, sender_id: str, content: str) -> Dict[str, Any]:
        conv = await self.require_participant(conversation_id, sender_id)
        now = utcnow()
        envelope = self.codec.encrypt(content)
        doc = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "content": envelope,
            "read_by": [sender_id],
            "created_at": now,
            "updated_at": now,
        }
        res = await self.db.messages.insert_one(doc)
        doc["_id"] = res.inserted_id

        # Copia desnormalizada (también cifrada) para listar sin join
        last_message = {
            "id": str(res.inserted_id),
            "content": envelope,
            "sender_id": sender_id,
            "conversation_id": conversation_id,
            "created_at": now,
        }
        await self.db.conversations.update_one(
            {"_id": ObjectId(conversation_id)},
            {"$set": {"last_message": last_message, "updated_at": now}},
        )
        self._notify_messages(conversation_id)
        self._notify_conversations(conv["participants"])
        return message_from_doc(doc)

    async def mark_conversation_read(self, conversation_id: str, email: str) -> int:
        """Añade al usuario a read_by en todos los mensajes. Idempotente."""
        res = await self.db.messages.update_many(
            {"conversation_id": conversation_id, "read_by": {"$ne": email}},
            {"$addToSet": {"read_by": email}},
        )
        if res.modified_count:
            self._notify_messages(conversation_id)
            # Otras pestañas del mismo usuario recalculan sus contadores
            self._notify_conversations([email])
        return res.modified_count

    # ---------- Borrado de cuenta ----------

    async def rewrite_deleted_user(self, email: str) -> Dict[str, int]:
        """
        Sustituye al usuario por el identificador "deleted_<email>" en
        conversaciones y mensajes. Los mensajes no se borran y su contenido
        sigue intacto. Después elimina el perfil y la encuesta.
        """
        email = normalize_identifier(email) or ""
        sentinel = deleted_identifier(email)
        stats = {"conversations_updated": 0, "messages_updated": 0}

        convs = await self.db.conversations.find(
            {"$or": [{"participants": email}, {"participants.email": email}]}
        ).to_list(None)
        for raw in convs:
            conv = conversation_from_doc(raw)
            participants = [sentinel if p == email else p for p in conv["participants"]]
            update: Dict[str, Any] = {
                "participants": participants,
                "hidden_by": [h for h in conv["hidden_by"] if h != email],
            }
            last = conv.get("last_message")
            if last and last.get("sender_id") == email:
                update["last_message.sender_id"] = sentinel
            await self.db.conversations.update_one({"_id": raw["_id"]}, {"$set": update})
            stats["conversations_updated"] += 1

            async for msg in self.db.messages.find({"conversation_id": conv["id"]}):
                m = message_from_doc(msg)
                changes: Dict[str, Any] = {}
                if m["sender_id"] == email:
                    changes["sender_id"] = sentinel
                if email in m["read_by"]:
                    changes["read_by"] = [sentinel if r == email else r for r in m["read_by"]]
                if changes:
                    await self.db.messages.update_one({"_id": msg["_id"]}, {"$set": changes})
                    stats["messages_updated"] += 1

            self._notify_messages(conv["id"])
            self._notify_conversations([p for p in participants if p != sentinel])

        await self.db.surveys.delete_many({"email": email})
        await self.db.users.delete_many({"email": email})
        logger.info(
            f"Usuario eliminado: {stats['conversations_updated']} conversaciones y "
            f"{stats['messages_updated']} mensajes reescritos"
        )
        return stats
