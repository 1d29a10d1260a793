"""
Publicador de cambios en tiempo real (Server-Sent Events).

Cada conexión tiene su propia suscripción a la fuente de cambios. En cada
aviso se vuelve a ejecutar la consulta completa del tópico y se envía el
resultado entero en un frame: los frames no son diffs, cada uno sustituye
al anterior.

Frames (`data: <json>\\n\\n`):
    {"type": "connected", ...contexto}
    {"type": "conversations" | "messages", "data": [...]}
    {"type": "error", "error": "..."}
"""
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List
import json
import logging

from pydantic import ValidationError
from pymongo.errors import PyMongoError

from .change_source import ChangeSource, Subscription, Topic
from .enrichment import present_conversations, present_messages
from .errors import DecryptionError
from .identity import IdentityResolver
from .store import Store

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_frame(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


def error_frame(message: str) -> str:
    return encode_frame({"type": "error", "error": message})


class LiveStream:
    """
    Stream SSE de un tópico. La suscripción ya está abierta al construirlo,
    así que los fallos de preparación ocurren antes de enviar ningún frame.
    """

    def __init__(
        self,
        subscription: Subscription,
        connected: Dict[str, Any],
        snapshot: Callable[[], Awaitable[List[Dict[str, Any]]]],
    ):
        self.subscription = subscription
        self.topic = subscription.topic
        self._connected = connected
        self._snapshot = snapshot

    async def _snapshot_frame(self) -> str:
        try:
            data = await self._snapshot()
        except PyMongoError as e:
            logger.error(f"Error leyendo {self.topic.kind}: {e}")
            return error_frame(f"Error leyendo {self.topic.kind}")
        except DecryptionError as e:
            logger.error(f"Error descifrando {self.topic.kind}: {e}")
            return error_frame(e.detail)
        except (KeyError, ValidationError) as e:
            # Documento con campos que faltan o con tipos inválidos
            logger.error(f"Documento inválido en {self.topic.kind}: {e}", exc_info=True)
            return error_frame(f"Error leyendo {self.topic.kind}")
        return encode_frame({"type": self.topic.kind, "data": data})

    async def _frames(self) -> AsyncIterator[str]:
        try:
            yield encode_frame({"type": "connected", **self._connected})
            while True:
                yield await self._snapshot_frame()
                try:
                    await self.subscription.wait()
                except PyMongoError as e:
                    # Error transitorio de la fuente: se informa y el stream sigue
                    logger.error(f"Fuente de cambios de {self.topic.kind} falló: {e}")
                    yield error_frame("Error en la suscripción de cambios")
        finally:
            await self.aclose()

    def __aiter__(self) -> AsyncIterator[str]:
        return self._frames()

    async def aclose(self) -> None:
        """Libera la suscripción. Idempotente."""
        if not self.subscription.closed:
            await self.subscription.close()
            logger.debug(f"Stream de {self.topic} cerrado")


class ChangeStreamPublisher:

    def __init__(self, store: Store, change_source: ChangeSource):
        self.store = store
        self.change_source = change_source

    def _identity(self) -> IdentityResolver:
        # Una caché de identidades por frame, nunca compartida entre conexiones
        return IdentityResolver(self.store.db)

    async def conversations_snapshot(self, email: str) -> List[Dict[str, Any]]:
        conversations = await self.store.get_conversations_for_user(email)
        # Se ocultan conversaciones sin ningún mensaje (creadas y abandonadas)
        with_messages = await self.store.conversation_ids_with_messages([c["id"] for c in conversations])
        conversations = [c for c in conversations if c["id"] in with_messages]
        out = await present_conversations(conversations, email, self.store.codec, self._identity())
        return [c.model_dump(mode="json") for c in out]

    async def messages_snapshot(self, conversation_id: str) -> List[Dict[str, Any]]:
        messages = await self.store.get_messages_for_conversation(conversation_id)
        out = await present_messages(messages, self.store.codec, self._identity())
        return [m.model_dump(mode="json") for m in out]

    async def open_conversations(self, email: str) -> LiveStream:
        subscription = await self.change_source.subscribe(Topic.conversations(email))
        logger.info("Stream de conversaciones abierto")
        return LiveStream(
            subscription,
            {"userEmail": email},
            lambda: self.conversations_snapshot(email),
        )

    async def open_messages(self, conversation_id: str, email: str) -> LiveStream:
        # Lanza ConversationNotFound / NotAParticipant antes de suscribirse
        await self.store.require_participant(conversation_id, email)
        subscription = await self.change_source.subscribe(Topic.messages(conversation_id))
        logger.info(f"Stream de mensajes abierto para {conversation_id}")
        return LiveStream(
            subscription,
            {"conversationId": conversation_id},
            lambda: self.messages_snapshot(conversation_id),
        )


