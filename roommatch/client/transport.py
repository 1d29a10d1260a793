"""
Transporte SSE sobre httpx.

`open(endpoint)` es un context manager asíncrono: al entrar la conexión ya
está abierta (respuesta 2xx) y devuelve un iterador con el texto de cada
campo `data` recibido.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

PERMANENT_STATUSES = {401, 403, 404}


class TransportRejected(ConnectionError):
    """El servidor rechazó la suscripción con un status HTTP."""

    def __init__(self, status_code: int):
        super().__init__(f"Conexión rechazada con status {status_code}")
        self.status_code = status_code

    @property
    def permanent(self) -> bool:
        return self.status_code in PERMANENT_STATUSES


class TransportClosed(ConnectionError):
    """El servidor terminó el stream."""


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    buffer = []
    async for line in lines:
        line = line.rstrip("\r")
        if not line:
            if buffer:
                yield "\n".join(buffer)
                buffer = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            buffer.append(value[1:] if value.startswith(" ") else value)
    if buffer:
        yield "\n".join(buffer)


class HttpxSSETransport:

    def __init__(self, client: httpx.AsyncClient, token: Optional[str] = None):
        self._client = client
        self._token = token

    def _headers(self) -> dict:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    @asynccontextmanager
    async def open(self, endpoint: str) -> AsyncIterator[AsyncIterator[str]]:
        # Sin timeout de lectura: un stream sano puede pasar mucho tiempo sin datos
        timeout = httpx.Timeout(10.0, read=None)
        async with self._client.stream("GET", endpoint, headers=self._headers(), timeout=timeout) as response:
            if response.status_code >= 400:
                raise TransportRejected(response.status_code)
            yield iter_sse_data(response.aiter_lines())
