# roommatch/routers/conversations.py
from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, Response, status
from typing import List

from ..deps import get_identity, get_store
from ..enrichment import present_conversation, present_conversations, present_message, present_messages
from ..identity import IdentityResolver
from ..middleware.rate_limit import apply_rate_limit
from ..schemas.conversation import ConversationCreate, ConversationOut, ConversationUpdate, VisibilityPatch
from ..schemas.message import MarkReadResult, MessageCreate, MessageOut
from ..security import get_current_email
from ..store import Store
from ..utils import to_object_id
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

def valid_conversation_id(conversation_id: str = Path(...)) -> str:
    to_object_id(conversation_id, "conversation_id")
    return conversation_id

# ---------- Conversaciones ----------

@router.get("", response_model=List[ConversationOut])
async def list_conversations(
    show_hidden: bool = Query(False, description="Devuelve sólo las conversaciones ocultas"),
    email: str = Depends(get_current_email),
    store: Store = Depends(get_store),
    identity: IdentityResolver = Depends(get_identity),
):
    """Conversaciones del usuario, más recientes primero"""
    conversations = await store.get_conversations_for_user(email)
    conversations = [c for c in conversations if (email in c["hidden_by"]) == show_hidden]
    return await present_conversations(conversations, email, store.codec, identity)

@router.post("", response_model=ConversationOut, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    request: Request,
    response: Response,
    payload: ConversationCreate,
    email: str = Depends(get_current_email),
    store: Store = Depends(get_store),
    identity: IdentityResolver = Depends(get_identity),
):
    """Crea una conversación o devuelve la existente con los mismos participantes"""
    apply_rate_limit(request, "20/minute", key=email)

    conversation, created = await store.start_conversation(
        email, list(payload.participants), payload.is_group, payload.name
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return await present_conversation(conversation, email, store.codec, identity)

@router.get("/{conversation_id}", response_model=ConversationOut)
async def get_conversation(
    conversation_id: str = Depends(valid_conversation_id),
    email: str = Depends(get_current_email),
    store: Store = Depends(get_store),
    identity: IdentityResolver = Depends(get_identity),
):
    conversation = await store.require_participant(conversation_id, email)
    return await present_conversation(conversation, email, store.codec, identity)

@router.put("/{conversation_id}", response_model=ConversationOut)
async def rename_conversation(
    payload: ConversationUpdate,
    conversation_id: str = Depends(valid_conversation_id),
    email: str = Depends(get_current_email),
    store: Store = Depends(get_store),
    identity: IdentityResolver = Depends(get_identity),
):
    """Cambia el nombre de un grupo"""
    conversation = await store.require_participant(conversation_id, email)
    updates = payload.model_dump(exclude_none=True)
    if not updates:
        return await present_conversation(conversation, email, store.codec, identity)
    if not conversation["is_group"]:
        raise HTTPException(400, "Sólo los grupos tienen nombre")

    updates["name"] = updates["name"].strip()
    updated = await store.update_conversation(conversation_id, updates)
    return await present_conversation(updated, email, store.codec, identity)

@router.patch("/{conversation_id}", response_model=ConversationOut)
async def set_conversation_visibility(
    payload: VisibilityPatch,
    conversation_id: str = Depends(valid_conversation_id),
    email: str = Depends(get_current_email),
    store: Store = Depends(get_store),
    identity: IdentityResolver = Depends(get_identity),
):
    """Oculta o muestra la conversación sólo para el usuario actual"""
    await store.require_participant(conversation_id, email)
    if payload.action == "hide":
        updated = await store.hide_conversation(conversation_id, email)
    else:
        updated = await store.unhide_conversation(conversation_id, email)
    return await present_conversation(updated, email, store.codec, identity)

@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: str = Depends(valid_conversation_id),
    email: str = Depends(get_current_email),
    store: Store = Depends(get_store),
):
    """Elimina la conversación y todos sus mensajes"""
    await store.require_participant(conversation_id, email)
    await store.delete_conversation(conversation_id)
    return None

# ---------- Mensajes ----------

@router.get("/{conversation_id}/messages", response_model=List[MessageOut])
async def list_messages(
    conversation_id: str = Depends(valid_conversation_id),
    email: str = Depends(get_current_email),
    store: Store = Depends(get_store),
    identity: IdentityResolver = Depends(get_identity),
):
    await store.require_participant(conversation_id, email)
    messages = await store.get_messages_for_conversation(conversation_id)
    return await present_messages(messages, store.codec, identity)

@router.post("/{conversation_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(
    request: Request,
    payload: MessageCreate,
    conversation_id: str = Depends(valid_conversation_id),
    email: str = Depends(get_current_email),
    store: Store = Depends(get_store),
    identity: IdentityResolver = Depends(get_identity),
):
    apply_rate_limit(request, "60/minute", key=email)
    message = await store.create_message(conversation_id, email, payload.content)
    return await present_message(message, store.codec, identity)

@router.post("/{conversation_id}/mark-read", response_model=MarkReadResult)
async def mark_conversation_read(
    conversation_id: str = Depends(valid_conversation_id),
    email: str = Depends(get_current_email),
    store: Store = Depends(get_store),
):
    """Marca como leídos todos los mensajes visibles. Se puede repetir sin efecto"""
    await store.require_participant(conversation_id, email)
    updated = await store.mark_conversation_read(conversation_id, email)
    return {"updated_count": updated}
