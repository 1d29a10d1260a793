"""
Convierte documentos normalizados del Store en schemas de salida:
descifra el contenido y resuelve remitentes y participantes.
"""
from typing import Any, Dict, List

from .codec import MessageCodec
from .identity import IdentityResolver
from .schemas.conversation import ConversationOut, LastMessageOut
from .schemas.message import MessageOut

UNKNOWN_CONVERSATION_NAME = "Unknown User"


async def present_message(msg: Dict[str, Any], codec: MessageCodec, identity: IdentityResolver) -> MessageOut:
    return MessageOut(
        id=msg["id"],
        conversation_id=msg["conversation_id"],
        sender_id=msg["sender_id"],
        sender=await identity.resolve(msg["sender_id"]),
        content=codec.safe_decrypt(msg.get("content")),
        read_by=msg.get("read_by", []),
        created_at=msg["created_at"],
    )


async def present_messages(messages: List[Dict[str, Any]], codec: MessageCodec, identity: IdentityResolver) -> List[MessageOut]:
    return [await present_message(m, codec, identity) for m in messages]


async def present_conversation(
    conv: Dict[str, Any],
    viewer: str,
    codec: MessageCodec,
    identity: IdentityResolver,
) -> ConversationOut:
    participants = await identity.resolve_many(conv["participants"])
    others = [p for p in participants if p.id != viewer]

    # El nombre de una conversación 1:1 no se guarda: es el del otro participante
    if conv.get("is_group") and conv.get("name"):
        name = conv["name"]
    else:
        name = others[0].name if others else UNKNOWN_CONVERSATION_NAME

    last_message = None
    last = conv.get("last_message")
    if last:
        last_message = LastMessageOut(
            id=last.get("id", ""),
            content=codec.safe_decrypt(last.get("content")),
            sender_id=last.get("sender_id", ""),
            created_at=last["created_at"],
        )

    return ConversationOut(
        id=conv["id"],
        participants=participants,
        other_participants=others,
        is_group=conv.get("is_group", False),
        name=name,
        last_message=last_message,
        hidden_by=conv.get("hidden_by", []),
        created_at=conv.get("created_at"),
        updated_at=conv.get("updated_at"),
    )


async def present_conversations(
    conversations: List[Dict[str, Any]],
    viewer: str,
    codec: MessageCodec,
    identity: IdentityResolver,
) -> List[ConversationOut]:
    return [await present_conversation(c, viewer, codec, identity) for c in conversations]
