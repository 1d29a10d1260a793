"""
Resolución de identidad: email -> nombre visible y avatar.

El nombre sale primero de la encuesta (first_name), después del perfil de
usuario y si no, "User". Los identificadores de usuarios eliminados no se
buscan nunca.
"""
from typing import Dict, Iterable, List
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from .ledger import is_deleted_identifier
from .schemas.participant import Participant

logger = logging.getLogger(__name__)

DELETED_USER_NAME = "Deleted User"
DEFAULT_USER_NAME = "User"


class IdentityResolver:
    """Una instancia por frame o por petición: la caché no se comparte."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self._db = db
        self._cache: Dict[str, Participant] = {}
        self.lookups = 0

    async def resolve(self, identifier: str) -> Participant:
        if is_deleted_identifier(identifier):
            return Participant(id=identifier, name=DELETED_USER_NAME, image="", is_deleted=True)
        cached = self._cache.get(identifier)
        if cached is not None:
            return cached
        participant = await self._lookup(identifier)
        self._cache[identifier] = participant
        return participant

    async def resolve_many(self, identifiers: Iterable[str]) -> List[Participant]:
        return [await self.resolve(i) for i in identifiers]

    async def _lookup(self, email: str) -> Participant:
        self.lookups += 1
        try:
            survey = await self._db.surveys.find_one({"email": email}, {"first_name": 1})
            user = await self._db.users.find_one({"email": email}, {"name": 1, "image": 1})
        except PyMongoError as e:
            logger.warning(f"No se pudo resolver la identidad de {email}: {e}")
            return Participant(id=email, name=DEFAULT_USER_NAME)

        name = ""
        if survey and isinstance(survey.get("first_name"), str):
            name = survey["first_name"].strip()
        if not name and user and isinstance(user.get("name"), str):
            name = user["name"].strip()
        image = (user or {}).get("image") or ""
        return Participant(id=email, name=name or DEFAULT_USER_NAME, image=image)
