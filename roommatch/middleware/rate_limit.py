"""
Rate limiting por endpoint usando el Limiter de slowapi guardado en app.state
"""
from typing import Optional
from fastapi import Request, HTTPException
from limits import parse
from slowapi.util import get_remote_address

def apply_rate_limit(request: Request, limit: str, key: Optional[str] = None):
    """
    Aplica rate limiting a un endpoint específico.
    Uso: apply_rate_limit(request, "30/minute", key=email)

    Sin `key` se limita por IP. Si el limiter no está configurado (por
    ejemplo, en tests), la función no hace nada.
    """
    limiter = getattr(request.app.state, "limiter", None)
    if limiter is None:
        return

    identifier = key or get_remote_address(request)
    if not limiter.limiter.hit(parse(limit), request.url.path, identifier):
        raise HTTPException(
            status_code=429,
            detail=f"Demasiadas solicitudes. Límite: {limit}. Intenta más tarde."
        )
