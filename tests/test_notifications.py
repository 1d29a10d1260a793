# tests/test_notifications.py
from contextlib import asynccontextmanager
import asyncio
import json
import logging

from roommatch.client.notifications import NotificationCenter

ANA = "ana@test.com"
BRUNO = "bruno@test.com"


def unread_from_bruno(n):
    return [{"sender_id": BRUNO, "read_by": [BRUNO]} for _ in range(n)]


class FakeAPI:
    def __init__(self, messages=None, fail_mark_read=False):
        self.messages = messages or {}
        self.fail_mark_read = fail_mark_read
        self.marked = []
        self.gates = {}

    async def get_messages(self, conversation_id):
        gate = self.gates.get(conversation_id)
        if gate is not None:
            await gate.wait()
        result = self.messages[conversation_id]
        if isinstance(result, Exception):
            raise result
        return result

    async def mark_read(self, conversation_id):
        self.marked.append(conversation_id)
        if self.fail_mark_read:
            raise ConnectionError("sin red")
        return 1


class OneShotTransport:
    def __init__(self, frames):
        self.frames = frames

    @asynccontextmanager
    async def open(self, endpoint):
        async def _frames():
            for frame in self.frames:
                yield frame
            await asyncio.Event().wait()
        yield _frames()


async def until(predicate, steps=500):
    for _ in range(steps):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condición no alcanzada")


async def test_refresh_counts_visible_conversations():
    api = FakeAPI({"c1": unread_from_bruno(2), "c2": unread_from_bruno(3), "c3": unread_from_bruno(1)})
    center = NotificationCenter(ANA, api)
    counts = await center.refresh([
        {"id": "c1", "hidden_by": []},
        {"id": "c2", "hidden_by": [ANA]},
        {"id": "c3", "hidden_by": [BRUNO]},
    ])
    assert counts == {"c1": 2, "c3": 1}
    assert center.total_unread == 3
    assert center.has_unread_messages("c1")
    assert not center.has_unread_messages("c2")

async def test_active_conversation_is_not_counted():
    api = FakeAPI({"c1": unread_from_bruno(2), "c2": unread_from_bruno(1)})
    center = NotificationCenter(ANA, api)
    center.set_active_conversation("c1")
    await center.refresh([{"id": "c1"}, {"id": "c2"}])
    assert center.get_unread_count("c1") == 0
    assert center.total_unread == 1

async def test_set_active_conversation_zeroes_count():
    center = NotificationCenter(ANA, FakeAPI())
    center.set_unread_count("c1", 4)
    center.set_active_conversation("c1")
    assert center.get_unread_count("c1") == 0
    center.set_active_conversation(None)
    assert center.state.active_conversation_id is None

async def test_failed_fetch_keeps_previous_count(caplog):
    api = FakeAPI({"c1": unread_from_bruno(2), "c2": unread_from_bruno(1)})
    center = NotificationCenter(ANA, api)
    await center.refresh([{"id": "c1"}, {"id": "c2"}])

    api.messages["c1"] = ConnectionError("sin red")
    api.messages["c2"] = unread_from_bruno(5)
    with caplog.at_level(logging.ERROR):
        await center.refresh([{"id": "c1"}, {"id": "c2"}])
    assert center.state.unread_counts == {"c1": 2, "c2": 5}
    assert "c1" in caplog.text

async def test_older_refresh_is_discarded():
    api = FakeAPI({"c1": unread_from_bruno(3)})
    api.gates["c1"] = asyncio.Event()
    center = NotificationCenter(ANA, api)

    slow = asyncio.create_task(center.refresh([{"id": "c1"}]))
    await asyncio.sleep(0)
    # Un frame más nuevo ya no contiene c1
    await center.refresh([])
    api.gates["c1"].set()
    await slow
    assert center.state.unread_counts == {}

async def test_mark_as_read_is_optimistic():
    api = FakeAPI()
    center = NotificationCenter(ANA, api)
    center.set_unread_count("c1", 3)

    task = center.mark_conversation_as_read("c1")
    assert center.get_unread_count("c1") == 0
    await task
    assert api.marked == ["c1"]

async def test_mark_as_read_failure_is_logged_without_rollback(caplog):
    api = FakeAPI(fail_mark_read=True)
    center = NotificationCenter(ANA, api)
    center.set_unread_count("c1", 3)

    with caplog.at_level(logging.ERROR):
        await center.mark_conversation_as_read("c1")
    assert center.get_unread_count("c1") == 0
    assert "No se pudo marcar c1" in caplog.text

async def test_subscribers_receive_state():
    center = NotificationCenter(ANA, FakeAPI())
    seen = []
    unsubscribe = center.subscribe(lambda state: seen.append(state.total_unread))
    center.set_unread_count("c1", 2)
    unsubscribe()
    center.set_unread_count("c1", 5)
    assert seen == [2]

async def test_recomputes_on_conversations_frame():
    frame = json.dumps({"type": "conversations", "data": [{"id": "c1", "hidden_by": []}]})
    api = FakeAPI({"c1": unread_from_bruno(4)})
    center = NotificationCenter(ANA, api, OneShotTransport([frame]))

    await center.start()
    await until(lambda: center.total_unread == 4)
    assert center.state.conversations == [{"id": "c1", "hidden_by": []}]
    await center.stop()

async def test_refresh_in_flight_does_not_undo_local_read():
    api = FakeAPI({"c1": unread_from_bruno(3)})
    api.gates["c1"] = asyncio.Event()
    center = NotificationCenter(ANA, api)

    # El refresco empieza antes de marcar como leída
    in_flight = asyncio.create_task(center.refresh([{"id": "c1"}]))
    await asyncio.sleep(0)
    await center.mark_conversation_as_read("c1")
    api.gates["c1"].set()
    await in_flight
    assert center.get_unread_count("c1") == 0

    # Un refresco posterior vuelve a usar los datos del servidor
    await center.refresh([{"id": "c1"}])
    assert center.get_unread_count("c1") == 3
