# tests/test_store.py
from datetime import datetime
import pytest
from bson import ObjectId

from roommatch.change_source import Topic
from roommatch.codec import is_envelope
from roommatch.errors import ConversationNotFound, ConversationValidationError, NotAParticipant

ANA = "ana@test.com"
BRUNO = "bruno@test.com"
CARLA = "carla@test.com"


async def test_start_conversation_reuses_same_participants(store):
    conv, created = await store.start_conversation(ANA, [BRUNO])
    assert created
    assert conv["participants"] == [ANA, BRUNO]

    # Otro orden y mayúsculas: misma conversación
    again, created = await store.start_conversation(BRUNO, ["ANA@test.com "])
    assert not created
    assert again["id"] == conv["id"]
    assert await store.db.conversations.count_documents({}) == 1

async def test_different_participant_sets_are_different(store):
    a, _ = await store.start_conversation(ANA, [BRUNO])
    b, created = await store.start_conversation(ANA, [BRUNO, CARLA], is_group=True, name="Piso")
    assert created
    assert a["id"] != b["id"]
    assert b["name"] == "Piso"

async def test_start_conversation_validation(store):
    with pytest.raises(ConversationValidationError):
        await store.start_conversation(ANA, [ANA])
    with pytest.raises(ConversationValidationError):
        await store.start_conversation(ANA, [BRUNO, CARLA], is_group=True, name="  ")

async def test_legacy_object_participants_are_normalized(store):
    res = await store.db.conversations.insert_one({
        "participants": [{"email": "Ana@Test.com", "name": "Ana"}, BRUNO],
        "is_group": False,
    })
    conv = await store.get_conversation(str(res.inserted_id))
    assert conv["participants"] == [ANA, BRUNO]
    assert conv["hidden_by"] == []
    assert conv["last_message"] is None

async def test_message_is_encrypted_at_rest(store, codec):
    conv, _ = await store.start_conversation(ANA, [BRUNO])
    msg = await store.create_message(conv["id"], ANA, "hola Bruno")

    raw = await store.db.messages.find_one({"_id": ObjectId(msg["id"])})
    assert is_envelope(raw["content"])
    assert codec.decrypt(raw["content"]) == "hola Bruno"
    assert raw["read_by"] == [ANA]

    stored = await store.get_conversation(conv["id"])
    assert is_envelope(stored["last_message"]["content"])
    assert stored["last_message"]["id"] == msg["id"]
    assert stored["last_message"]["sender_id"] == ANA

async def test_non_participant_cannot_send(store):
    conv, _ = await store.start_conversation(ANA, [BRUNO])
    with pytest.raises(NotAParticipant):
        await store.create_message(conv["id"], CARLA, "hola")
    with pytest.raises(ConversationNotFound):
        await store.create_message(str(ObjectId()), ANA, "hola")

async def test_messages_in_creation_order(store, codec):
    conv, _ = await store.start_conversation(ANA, [BRUNO])
    for text in ["uno", "dos", "tres"]:
        await store.create_message(conv["id"], ANA, text)
    messages = await store.get_messages_for_conversation(conv["id"])
    assert [codec.decrypt(m["content"]) for m in messages] == ["uno", "dos", "tres"]

async def test_conversations_most_recent_first(store):
    a, _ = await store.start_conversation(ANA, [BRUNO])
    b, _ = await store.start_conversation(ANA, [CARLA])
    await store.db.conversations.update_one({"_id": ObjectId(a["id"])}, {"$set": {"updated_at": datetime(2025, 5, 2)}})
    await store.db.conversations.update_one({"_id": ObjectId(b["id"])}, {"$set": {"updated_at": datetime(2025, 5, 1)}})
    ids = [c["id"] for c in await store.get_conversations_for_user(ANA)]
    assert ids == [a["id"], b["id"]]

async def test_mark_read_is_idempotent(store):
    conv, _ = await store.start_conversation(ANA, [BRUNO])
    await store.create_message(conv["id"], BRUNO, "uno")
    await store.create_message(conv["id"], BRUNO, "dos")

    assert await store.mark_conversation_read(conv["id"], ANA) == 2
    assert await store.mark_conversation_read(conv["id"], ANA) == 0
    for m in await store.get_messages_for_conversation(conv["id"]):
        assert m["read_by"].count(ANA) == 1

async def test_mark_read_notifies_viewer_conversations(store, change_source):
    conv, _ = await store.start_conversation(ANA, [BRUNO])
    await store.create_message(conv["id"], BRUNO, "uno")
    sub = await change_source.subscribe(Topic.conversations(ANA))
    await store.mark_conversation_read(conv["id"], ANA)
    assert sub.queue.qsize() == 1

async def test_hide_and_unhide(store):
    conv, _ = await store.start_conversation(ANA, [BRUNO])
    hidden = await store.hide_conversation(conv["id"], ANA)
    assert hidden["hidden_by"] == [ANA]
    # Ocultar dos veces no duplica
    hidden = await store.hide_conversation(conv["id"], ANA)
    assert hidden["hidden_by"] == [ANA]
    shown = await store.unhide_conversation(conv["id"], ANA)
    assert shown["hidden_by"] == []

async def test_delete_conversation_cascades(store):
    conv, _ = await store.start_conversation(ANA, [BRUNO])
    await store.create_message(conv["id"], ANA, "hola")
    await store.delete_conversation(conv["id"])
    assert await store.get_conversation(conv["id"]) is None
    assert await store.db.messages.count_documents({"conversation_id": conv["id"]}) == 0
    with pytest.raises(ConversationNotFound):
        await store.delete_conversation(conv["id"])

async def test_rewrite_deleted_user(store, codec, profiles):
    conv, _ = await store.start_conversation(ANA, [BRUNO])
    await store.create_message(conv["id"], ANA, "hola")
    await store.create_message(conv["id"], BRUNO, "adiós")
    await store.mark_conversation_read(conv["id"], ANA)
    await store.hide_conversation(conv["id"], ANA)

    stats = await store.rewrite_deleted_user(ANA)
    assert stats == {"conversations_updated": 1, "messages_updated": 2}

    stored = await store.get_conversation(conv["id"])
    assert stored["participants"] == ["deleted_ana@test.com", BRUNO]
    assert stored["hidden_by"] == []
    assert stored["last_message"]["sender_id"] == BRUNO

    messages = await store.get_messages_for_conversation(conv["id"])
    assert messages[0]["sender_id"] == "deleted_ana@test.com"
    # El contenido no se toca
    assert codec.decrypt(messages[0]["content"]) == "hola"
    assert ANA not in messages[1]["read_by"]

    assert await store.db.users.count_documents({"email": ANA}) == 0
    assert await store.db.surveys.count_documents({"email": ANA}) == 0
