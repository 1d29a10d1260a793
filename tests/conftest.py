"""
Configuración de pytest para tests
"""
import os

# La configuración se lee al importar la app: las variables van antes
os.environ.setdefault("ENCRYPTION_KEY", "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("CHANGE_SOURCE", "notifier")

import pytest
from httpx import AsyncClient, ASGITransport
from mongomock_motor import AsyncMongoMockClient

from roommatch.change_source import NotifierChangeSource
from roommatch.codec import MessageCodec
from roommatch.db import get_db
from roommatch.identity import IdentityResolver
from roommatch.main import app
from roommatch.security import create_access_token
from roommatch.store import Store

TEST_KEY = os.environ["ENCRYPTION_KEY"]


@pytest.fixture
def db():
    """Base de datos en memoria, nueva en cada test"""
    return AsyncMongoMockClient()["roommatch_test"]

@pytest.fixture
def codec():
    return MessageCodec.from_hex(TEST_KEY)

@pytest.fixture
def change_source():
    return NotifierChangeSource(max_queue_size=10)

@pytest.fixture
def store(db, codec, change_source):
    return Store(db, codec, change_source)

@pytest.fixture
def identity(db):
    return IdentityResolver(db)

@pytest.fixture
def test_app(db, change_source):
    """App con la BD de test y sin rate limiting"""
    async def _test_db():
        return db

    app.dependency_overrides[get_db] = _test_db
    # ASGITransport no ejecuta el lifespan
    app.state.change_source = change_source
    app.state.limiter = None
    yield app
    app.dependency_overrides.clear()

@pytest.fixture
async def client(test_app):
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

@pytest.fixture
def auth():
    """auth("ana@test.com") -> cabeceras con un token válido"""
    def _headers(email: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(email)}"}
    return _headers

@pytest.fixture
async def profiles(db):
    """Perfiles de ejemplo: Ana tiene encuesta, Bruno sólo usuario"""
    await db.users.insert_many([
        {"email": "ana@test.com", "name": "Ana García", "image": "https://img.test/ana.png"},
        {"email": "bruno@test.com", "name": "Bruno"},
        {"email": "carla@test.com", "name": "Carla"},
    ])
    await db.surveys.insert_one({"email": "ana@test.com", "first_name": "Ana"})
    return db
