"""
Dependencias FastAPI que construyen los colaboradores de mensajería.

La fuente de cambios vive en app.state (se crea en el lifespan); todo lo
demás se construye por petición.
"""
from fastapi import Depends, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from .change_source import ChangeSource
from .codec import MessageCodec, get_codec
from .db import get_db
from .identity import IdentityResolver
from .publisher import ChangeStreamPublisher
from .store import Store


def get_change_source(request: Request) -> ChangeSource:
    return request.app.state.change_source


def get_message_codec() -> MessageCodec:
    return get_codec()


async def get_store(
    db: AsyncIOMotorDatabase = Depends(get_db),
    codec: MessageCodec = Depends(get_message_codec),
    change_source: ChangeSource = Depends(get_change_source),
) -> Store:
    return Store(db, codec, change_source)


async def get_identity(db: AsyncIOMotorDatabase = Depends(get_db)) -> IdentityResolver:
    return IdentityResolver(db)


async def get_publisher(
    store: Store = Depends(get_store),
    change_source: ChangeSource = Depends(get_change_source),
) -> ChangeStreamPublisher:
    return ChangeStreamPublisher(store, change_source)
