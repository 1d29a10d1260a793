"""
Cálculo de mensajes no leídos.

Funciones puras: reciben los mensajes ya cargados y no tocan la BD.
Aceptan mensajes como dict (documentos / JSON) o como objetos con atributos
`sender_id` y `read_by` (schemas).
"""
from typing import Any, Dict, Iterable, Mapping, Optional

DELETED_USER_PREFIX = "deleted_"


def is_deleted_identifier(identifier: Any) -> bool:
    return isinstance(identifier, str) and identifier.startswith(DELETED_USER_PREFIX)


def deleted_identifier(email: str) -> str:
    return f"{DELETED_USER_PREFIX}{email}"


def _field(message: Any, name: str) -> Any:
    if isinstance(message, Mapping):
        return message.get(name)
    return getattr(message, name, None)


def is_unread_by(message: Any, viewer: str) -> bool:
    if _field(message, "sender_id") == viewer:
        return False
    read_by = _field(message, "read_by")
    # readBy ausente o corrupto: no leído para todos menos el remitente
    if not isinstance(read_by, (list, tuple, set)):
        return True
    return viewer not in read_by


def unread_count(
    messages: Iterable[Any],
    viewer: str,
    active_conversation_id: Optional[str],
    conversation_id: str,
) -> int:
    if active_conversation_id is not None and conversation_id == active_conversation_id:
        return 0
    # Un usuario eliminado no tiene contadores
    if not viewer or is_deleted_identifier(viewer):
        return 0
    return sum(1 for m in messages or [] if is_unread_by(m, viewer))


def is_hidden_for(conversation: Any, viewer: str) -> bool:
    hidden_by = _field(conversation, "hidden_by") or []
    return viewer in hidden_by


def unread_by_conversation(
    conversations: Iterable[Any],
    messages_by_conversation: Mapping[str, Iterable[Any]],
    viewer: str,
    active_conversation_id: Optional[str] = None,
) -> Dict[str, int]:
    """
    Contador por conversación. Las conversaciones ocultas por el usuario no
    aparecen, aunque tengan mensajes sin leer.
    """
    counts: Dict[str, int] = {}
    for conv in conversations:
        if is_hidden_for(conv, viewer):
            continue
        conv_id = _field(conv, "id")
        counts[conv_id] = unread_count(
            messages_by_conversation.get(conv_id, []),
            viewer,
            active_conversation_id,
            conv_id,
        )
    return counts


def total_unread(
    conversations: Iterable[Any],
    messages_by_conversation: Mapping[str, Iterable[Any]],
    viewer: str,
    active_conversation_id: Optional[str] = None,
) -> int:
    return sum(
        unread_by_conversation(conversations, messages_by_conversation, viewer, active_conversation_id).values()
    )
