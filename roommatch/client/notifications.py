"""
Contadores de no leídos del lado del cliente.

Escucha el stream de conversaciones y, en cada frame, recalcula los
contadores de las conversaciones visibles con los mensajes de cada una.

Las lecturas se aplican primero en local y después se persisten en segundo
plano. Si la persistencia falla sólo se registra: el contador local no
vuelve atrás.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set
import asyncio
import logging

from ..ledger import is_hidden_for, unread_count
from .live import LiveConnection
from .observable import Observable

logger = logging.getLogger(__name__)

CONVERSATIONS_ENDPOINT = "/realtime/conversations"


@dataclass
class NotificationState:
    unread_counts: Dict[str, int] = field(default_factory=dict)
    active_conversation_id: Optional[str] = None
    conversations: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_unread(self) -> int:
        return sum(self.unread_counts.values())


class NotificationCenter(Observable):

    def __init__(self, viewer: str, api, transport=None, *, endpoint: str = CONVERSATIONS_ENDPOINT, **connection_options):
        super().__init__()
        self.viewer = viewer
        self.api = api
        self.state = NotificationState()
        self.connection: Optional[LiveConnection] = None
        if transport is not None:
            self.connection = LiveConnection(
                endpoint,
                transport,
                topic="conversations",
                identity=viewer,
                on_data=self._on_conversations,
                **connection_options,
            )
        self._tasks: Set[asyncio.Task] = set()
        self._generation = 0
        # Lecturas locales que un refresco iniciado antes no puede pisar
        self._pending_reads: Set[str] = set()
        self._read_at: Dict[str, int] = {}

    # ---------- Ciclo de vida ----------

    async def start(self) -> None:
        if self.connection is not None:
            await self.connection.connect()

    async def stop(self) -> None:
        if self.connection is not None:
            await self.connection.disconnect()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ---------- Consultas ----------

    @property
    def total_unread(self) -> int:
        return self.state.total_unread

    def get_unread_count(self, conversation_id: str) -> int:
        return self.state.unread_counts.get(conversation_id, 0)

    def has_unread_messages(self, conversation_id: str) -> bool:
        return self.get_unread_count(conversation_id) > 0

    # ---------- Mutaciones locales ----------

    def set_unread_count(self, conversation_id: str, count: int) -> None:
        self.state.unread_counts[conversation_id] = max(0, count)
        self._emit(self.state)

    def set_active_conversation(self, conversation_id: Optional[str]) -> None:
        self.state.active_conversation_id = conversation_id
        if conversation_id is not None:
            self.state.unread_counts[conversation_id] = 0
        self._emit(self.state)

    def mark_conversation_as_read(self, conversation_id: str) -> asyncio.Task:
        self.state.unread_counts[conversation_id] = 0
        self._pending_reads.add(conversation_id)
        self._emit(self.state)
        return self._track(self._persist_read(conversation_id))

    async def _persist_read(self, conversation_id: str) -> None:
        try:
            await self.api.mark_read(conversation_id)
        except Exception as e:
            logger.error(f"No se pudo marcar {conversation_id} como leída: {e}")
        finally:
            self._pending_reads.discard(conversation_id)
            self._read_at[conversation_id] = self._generation

    # ---------- Recalculo ----------

    def _on_conversations(self, conversations: Any) -> None:
        self.state.conversations = list(conversations or [])
        self._track(self.refresh(self.state.conversations))

    async def refresh(self, conversations: List[Dict[str, Any]]) -> Dict[str, int]:
        """
        Recalcula los contadores de las conversaciones no ocultas. Si llega
        un frame más nuevo mientras tanto, este resultado se descarta.
        """
        self._generation += 1
        generation = self._generation

        visible = [c for c in conversations if not is_hidden_for(c, self.viewer)]
        results = await asyncio.gather(
            *(self.api.get_messages(c["id"]) for c in visible),
            return_exceptions=True,
        )
        if generation != self._generation:
            return self.state.unread_counts

        counts: Dict[str, int] = {}
        for conv, result in zip(visible, results):
            conv_id = conv["id"]
            if isinstance(result, BaseException):
                # Se mantiene el último valor conocido
                logger.error(f"Error cargando mensajes de {conv_id}: {result}")
                counts[conv_id] = self.state.unread_counts.get(conv_id, 0)
                continue
            # La conversación activa se evalúa después de las esperas
            counts[conv_id] = unread_count(result, self.viewer, self.state.active_conversation_id, conv_id)

        for conv_id in counts:
            if conv_id in self._pending_reads or self._read_at.get(conv_id, -1) >= generation:
                counts[conv_id] = 0
        self._read_at = {k: v for k, v in self._read_at.items() if v >= generation}

        self.state.unread_counts = counts
        self._emit(self.state)
        return counts
