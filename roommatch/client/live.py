"""
Conexión en tiempo real del cliente con reconexión y backoff exponencial.

Estados:
    idle -> connecting -> connected -> disconnected -> reconnecting -> connecting ...
    closed  tras disconnect()
    failed  tras agotar los reintentos o si el servidor rechaza la suscripción
            (401/403/404); es un fallo visible para el usuario

Mientras se reconecta se conservan los últimos datos recibidos.
"""
from enum import Enum
from typing import Any, Awaitable, Callable, Optional
import asyncio
import json
import logging

import httpx

from .observable import Observable
from .transport import TransportClosed, TransportRejected

logger = logging.getLogger(__name__)

MAX_RECONNECT_ATTEMPTS = 5
BASE_DELAY_SECONDS = 1.0


class ConnectionState(str, Enum):
    idle = "idle"
    connecting = "connecting"
    connected = "connected"
    disconnected = "disconnected"
    reconnecting = "reconnecting"
    closed = "closed"
    failed = "failed"


class ServerError(Exception):
    """Frame de tipo "error" enviado por el servidor."""


def backoff_delay(attempt: int, base_delay: float = BASE_DELAY_SECONDS) -> float:
    """Espera antes del reintento número `attempt` (desde 0): 1s, 2s, 4s, 8s, 16s."""
    return base_delay * (2 ** attempt)


class LiveConnection(Observable):

    def __init__(
        self,
        endpoint: str,
        transport,
        *,
        topic: str,
        identity: Optional[str] = None,
        enabled: bool = True,
        on_data: Optional[Callable[[Any], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        on_connected: Optional[Callable[[], None]] = None,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        base_delay: float = BASE_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__()
        self.endpoint = endpoint
        self.transport = transport
        self.topic = topic
        self.identity = identity
        self.enabled = enabled
        self.on_data = on_data
        self.on_error = on_error
        self.on_connected = on_connected
        self.max_reconnect_attempts = max_reconnect_attempts
        self.base_delay = base_delay
        self._sleep = sleep

        self.state = ConnectionState.idle
        self.data: Any = None
        self.error: Optional[Exception] = None
        self.reconnect_attempts = 0
        self._reader: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.connected

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.state:
            logger.debug(f"{self.endpoint}: {self.state.value} -> {state.value}")
            self.state = state
            self._emit(self)

    def _call(self, callback: Optional[Callable], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Error en callback de {self.endpoint}: {e}", exc_info=True)

    # ---------- Ciclo de vida ----------

    async def connect(self) -> None:
        if not self.enabled or not self.identity:
            self._set_state(ConnectionState.idle)
            return
        # Nunca dos conexiones a la vez: se cierra la anterior
        self._cancel_timer()
        await self._stop_reader()
        self._closed = False
        self._open()

    reconnect = connect

    async def disconnect(self) -> None:
        if self.state == ConnectionState.closed:
            return
        self._closed = True
        self._cancel_timer()
        await self._stop_reader()
        self.data = None
        self.error = None
        self._set_state(ConnectionState.closed)

    def _open(self) -> None:
        self.error = None
        self._set_state(ConnectionState.connecting)
        self._reader = asyncio.create_task(self._read())

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _stop_reader(self) -> None:
        task, self._reader = self._reader, None
        if task is None or task.done():
            return
        task.cancel()
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ---------- Lectura ----------

    async def _read(self) -> None:
        try:
            async with self.transport.open(self.endpoint) as frames:
                self._on_open()
                async for raw in frames:
                    self._handle_frame(raw)
            raise TransportClosed("El servidor cerró el stream")
        except TransportRejected as e:
            self._on_failure(e, permanent=e.permanent)
        except (httpx.HTTPError, OSError) as e:
            self._on_failure(e)

    def _on_open(self) -> None:
        self.reconnect_attempts = 0
        self._set_state(ConnectionState.connected)
        self._call(self.on_connected)

    def _handle_frame(self, raw: str) -> None:
        try:
            parsed = json.loads(raw)
            frame_type = parsed.get("type")
        except (ValueError, AttributeError):
            logger.error(f"Frame SSE inválido en {self.endpoint}")
            self._report(ValueError("No se pudo interpretar el mensaje del servidor"))
            return

        if frame_type == "connected":
            return
        if frame_type == "error":
            # El servidor sigue conectado: sólo se informa
            self._report(ServerError(parsed.get("error") or "Unknown server error"))
            return
        if frame_type == self.topic:
            self.data = parsed.get("data")
            self._call(self.on_data, self.data)
            self._emit(self)
            return
        logger.warning(f"Tipo de frame desconocido: {frame_type}")

    def _report(self, error: Exception) -> None:
        self.error = error
        self._call(self.on_error, error)
        self._emit(self)

    def _on_failure(self, error: Exception, permanent: bool = False) -> None:
        logger.warning(f"Conexión con {self.endpoint} perdida: {error}")
        self._reader = None
        self.error = error
        self._set_state(ConnectionState.disconnected)
        self._call(self.on_error, error)
        if self._closed:
            return

        if permanent:
            logger.error(f"{self.endpoint} rechazó la conexión, no se reintenta")
            self._set_state(ConnectionState.failed)
            return
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            logger.error(f"Máximo de reintentos alcanzado para {self.endpoint}")
            self._set_state(ConnectionState.failed)
            return

        delay = backoff_delay(self.reconnect_attempts, self.base_delay)
        self.reconnect_attempts += 1
        self._set_state(ConnectionState.reconnecting)
        logger.info(f"Reintento {self.reconnect_attempts} en {delay:g}s")
        self._timer = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        # Un temporizador tardío no resucita una conexión cerrada
        if self._closed:
            return
        self._timer = None
        self._open()
