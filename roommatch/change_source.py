"""
Fuentes de notificaciones de cambio para el publicador en tiempo real.

Una suscripción no transporta datos: sólo avisa de que algo cambió en su
tópico ("conversaciones del usuario X" o "mensajes de la conversación Y").
El publicador vuelve a consultar la BD completa en cada aviso, así la BD
sigue siendo la única fuente de verdad.

Implementaciones:
- NotifierChangeSource: colas asyncio en proceso; el Store llama a notify()
  después de cada escritura. Válido con un solo proceso.
- MongoChangeStreamSource: change streams de MongoDB (requiere replica set);
  ve también las escrituras de otros procesos.
"""
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional
import asyncio
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

CONVERSATIONS = "conversations"
MESSAGES = "messages"


@dataclass(frozen=True)
class Topic:
    kind: str
    key: str

    @classmethod
    def conversations(cls, email: str) -> "Topic":
        return cls(CONVERSATIONS, email)

    @classmethod
    def messages(cls, conversation_id: str) -> "Topic":
        return cls(MESSAGES, conversation_id)


def _offer(queue: asyncio.Queue, item) -> None:
    try:
        queue.put_nowait(item)
    except asyncio.QueueFull:
        # Ya hay un aviso pendiente: el siguiente refresco lo cubre
        logger.debug("Cola de suscripción llena, aviso agrupado")


class Subscription:
    """Secuencia asíncrona de avisos de cambio de un tópico."""

    def __init__(self, topic: Topic, queue: asyncio.Queue, on_close: Callable[["Subscription"], Awaitable[None]]):
        self.topic = topic
        self.queue = queue
        self._on_close = on_close
        self.closed = False

    async def wait(self) -> None:
        """Espera el siguiente aviso. Si la fuente falló, lanza su error."""
        item = await self.queue.get()
        if isinstance(item, BaseException):
            raise item

    def __aiter__(self):
        return self

    async def __anext__(self) -> None:
        if self.closed:
            raise StopAsyncIteration
        await self.wait()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._on_close(self)


class ChangeSource:
    async def subscribe(self, topic: Topic) -> Subscription:
        raise NotImplementedError

    def notify(self, topic: Topic) -> None:
        """Avisa a los suscriptores de `topic`. No bloquea."""
        return

    async def shutdown(self) -> None:
        return


class NotifierChangeSource(ChangeSource):

    def __init__(self, max_queue_size: int = 10) -> None:
        self._listeners: Dict[Topic, List[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()
        self._max_queue_size = max_queue_size

    async def subscribe(self, topic: Topic) -> Subscription:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        async with self._lock:
            self._listeners.setdefault(topic, []).append(queue)
            logger.debug(f"Suscrito a {topic}, total: {len(self._listeners[topic])}")
        return Subscription(topic, queue, self._unsubscribe)

    async def _unsubscribe(self, subscription: Subscription) -> None:
        async with self._lock:
            queues = self._listeners.get(subscription.topic)
            if not queues:
                return
            try:
                queues.remove(subscription.queue)
            except ValueError:
                pass
            if not queues:
                del self._listeners[subscription.topic]
            logger.debug(f"Baja de {subscription.topic}")

    def notify(self, topic: Topic) -> None:
        # Copia para no mantener el lock (notify es síncrono)
        for queue in list(self._listeners.get(topic, [])):
            _offer(queue, True)

    def listener_count(self, topic: Topic) -> int:
        return len(self._listeners.get(topic, []))

    def total_listeners(self) -> int:
        return sum(len(q) for q in self._listeners.values())

    async def shutdown(self) -> None:
        async with self._lock:
            self._listeners.clear()


class MongoChangeStreamSource(ChangeSource):

    retry_delay = 1.0

    def __init__(self, db: AsyncIOMotorDatabase, max_queue_size: int = 10) -> None:
        self._db = db
        self._max_queue_size = max_queue_size
        self._tasks: Dict[int, asyncio.Task] = {}

    def _watch_target(self, topic: Topic):
        if topic.kind == CONVERSATIONS:
            collection = self._db.conversations
            match = {"fullDocument.participants": topic.key}
        else:
            collection = self._db.messages
            match = {"fullDocument.conversation_id": topic.key}
        pipeline = [{"$match": {"$or": [match, {"operationType": "delete"}]}}]
        return collection, pipeline

    async def _watch(self, topic: Topic, queue: asyncio.Queue) -> None:
        collection, pipeline = self._watch_target(topic)
        while True:
            try:
                async with collection.watch(pipeline, full_document="updateLookup") as stream:
                    async for _change in stream:
                        _offer(queue, True)
            except PyMongoError as e:
                logger.error(f"Change stream de {topic} falló: {e}")
                _offer(queue, e)
                await asyncio.sleep(self.retry_delay)

    async def subscribe(self, topic: Topic) -> Subscription:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        subscription = Subscription(topic, queue, self._unsubscribe)
        self._tasks[id(subscription)] = asyncio.create_task(self._watch(topic, queue))
        return subscription

    async def _unsubscribe(self, subscription: Subscription) -> None:
        task: Optional[asyncio.Task] = self._tasks.pop(id(subscription), None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def build_change_source(kind: str, db: AsyncIOMotorDatabase | None = None, max_queue_size: int = 10) -> ChangeSource:
    if kind == "mongo":
        if db is None:
            raise ValueError("MongoChangeStreamSource necesita una base de datos")
        return MongoChangeStreamSource(db, max_queue_size)
    if kind != "notifier":
        raise ValueError(f"CHANGE_SOURCE desconocido: {kind}")
    return NotifierChangeSource(max_queue_size)
