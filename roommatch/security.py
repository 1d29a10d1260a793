from datetime import datetime, timedelta
from typing import Optional
from fastapi import Depends, HTTPException, Query
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError

from .config import get_settings
from .utils import normalize_identifier

settings = get_settings()
ALGO = "HS256"
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
# EventSource no puede enviar cabeceras: los streams aceptan ?token=
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def create_access_token(email: str, expires_hours: Optional[int] = None) -> str:
    expire = datetime.utcnow() + timedelta(hours=expires_hours or settings.jwt_expires_hours)
    payload = {"sub": email, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGO)


def decode_email(token: str) -> str:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[ALGO])
    except JWTError:
        raise HTTPException(status_code=401, detail="Token inválido")
    email = normalize_identifier(payload.get("sub"))
    if not email:
        raise HTTPException(status_code=401, detail="Token inválido")
    return email


async def get_current_email(token: str = Depends(oauth2_scheme)) -> str:
    return decode_email(token)


async def get_stream_email(
    header_token: Optional[str] = Depends(optional_oauth2_scheme),
    token: Optional[str] = Query(None, description="Token JWT para clientes EventSource"),
) -> str:
    raw = header_token or token
    if not raw:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return decode_email(raw)
