from fastapi import APIRouter, Depends
import logging

from ..deps import get_identity, get_store
from ..identity import IdentityResolver
from ..schemas.participant import Participant
from ..security import get_current_email
from ..store import Store
from ..utils import normalize_identifier

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/{email}/identity", response_model=Participant)
async def get_user_identity(
    email: str,
    _current: str = Depends(get_current_email),
    identity: IdentityResolver = Depends(get_identity),
):
    """Nombre visible y avatar de un usuario"""
    return await identity.resolve(normalize_identifier(email) or email)

@router.delete("/me")
async def delete_my_account(
    email: str = Depends(get_current_email),
    store: Store = Depends(get_store),
):
    """
    Elimina la cuenta del usuario actual.
    Sus mensajes se conservan, pero quedan a nombre de "Deleted User".
    """
    stats = await store.rewrite_deleted_user(email)
    return {"message": "Cuenta eliminada", "details": stats}
