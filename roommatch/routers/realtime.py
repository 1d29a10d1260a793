# roommatch/routers/realtime.py
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from ..publisher import SSE_HEADERS, ChangeStreamPublisher, LiveStream
from ..deps import get_publisher
from ..security import get_stream_email
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

def _sse_response(stream: LiveStream) -> StreamingResponse:
    # La tarea de fondo libera la suscripción aunque el generador no llegue a cerrarse
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        background=BackgroundTask(stream.aclose),
    )

@router.get("/conversations")
async def stream_conversations(
    email: str = Depends(get_stream_email),
    publisher: ChangeStreamPublisher = Depends(get_publisher),
):
    """
    Stream SSE con la lista completa de conversaciones del usuario
    en cada cambio.
    """
    stream = await publisher.open_conversations(email)
    return _sse_response(stream)

@router.get("/messages/{conversation_id}")
async def stream_messages(
    conversation_id: str,
    email: str = Depends(get_stream_email),
    publisher: ChangeStreamPublisher = Depends(get_publisher),
):
    """
    Stream SSE con todos los mensajes de la conversación en cada cambio.
    Responde 404/403 antes de enviar ningún frame si no hay acceso.
    """
    stream = await publisher.open_messages(conversation_id, email)
    return _sse_response(stream)
