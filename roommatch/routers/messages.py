from fastapi import APIRouter, Depends
import asyncio
import logging

from ..deps import get_store
from ..ledger import is_hidden_for, unread_by_conversation
from ..schemas.message import UnreadSummary
from ..security import get_current_email
from ..store import Store

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/unread", response_model=UnreadSummary)
async def get_unread_summary(
    email: str = Depends(get_current_email),
    store: Store = Depends(get_store),
):
    """Total de no leídos y desglose por conversación (sin las ocultas)"""
    conversations = [
        c for c in await store.get_conversations_for_user(email)
        if not is_hidden_for(c, email)
    ]
    messages = await asyncio.gather(
        *(store.get_messages_for_conversation(c["id"]) for c in conversations)
    )
    by_conversation = unread_by_conversation(
        conversations,
        {c["id"]: msgs for c, msgs in zip(conversations, messages)},
        email,
    )
    return {"total_unread": sum(by_conversation.values()), "by_conversation": by_conversation}
