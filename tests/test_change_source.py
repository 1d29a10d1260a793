# tests/test_change_source.py
import asyncio
import pytest

from roommatch.change_source import (
    MongoChangeStreamSource,
    NotifierChangeSource,
    Topic,
    build_change_source,
)


async def test_notify_reaches_only_matching_topic(change_source):
    ana = await change_source.subscribe(Topic.conversations("ana@test.com"))
    bruno = await change_source.subscribe(Topic.conversations("bruno@test.com"))

    change_source.notify(Topic.conversations("ana@test.com"))

    await asyncio.wait_for(ana.wait(), timeout=1)
    assert bruno.queue.empty()

async def test_multiple_subscribers_same_topic(change_source):
    topic = Topic.messages("c1")
    subs = [await change_source.subscribe(topic) for _ in range(3)]
    assert change_source.listener_count(topic) == 3

    change_source.notify(topic)
    for sub in subs:
        await asyncio.wait_for(sub.wait(), timeout=1)

async def test_close_unsubscribes_and_is_idempotent(change_source):
    topic = Topic.messages("c1")
    sub = await change_source.subscribe(topic)
    await sub.close()
    await sub.close()
    assert sub.closed
    assert change_source.listener_count(topic) == 0
    assert change_source.total_listeners() == 0
    # Avisar sin suscriptores no falla
    change_source.notify(topic)

async def test_full_queue_coalesces_notifications():
    source = NotifierChangeSource(max_queue_size=1)
    sub = await source.subscribe(Topic.messages("c1"))
    for _ in range(5):
        source.notify(Topic.messages("c1"))
    assert sub.queue.qsize() == 1

async def test_wait_raises_source_errors(change_source):
    sub = await change_source.subscribe(Topic.messages("c1"))
    sub.queue.put_nowait(RuntimeError("fallo"))
    with pytest.raises(RuntimeError):
        await sub.wait()

async def test_shutdown_clears_listeners(change_source):
    await change_source.subscribe(Topic.messages("c1"))
    await change_source.shutdown()
    assert change_source.total_listeners() == 0

def test_build_change_source(db):
    assert isinstance(build_change_source("notifier"), NotifierChangeSource)
    assert isinstance(build_change_source("mongo", db), MongoChangeStreamSource)
    with pytest.raises(ValueError):
        build_change_source("mongo")
    with pytest.raises(ValueError):
        build_change_source("kafka")
