from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from .config import get_settings
from .codec import get_codec
from .change_source import build_change_source
from .db import close_db, get_db
from .errors import MessagingError
from .routers import conversations, messages, realtime, users
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import logging

# Configurar logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

settings = get_settings()

# Configurar rate limiting
limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Sin clave de cifrado válida la app no arranca (EncryptionConfigError)
    get_codec()
    db = await get_db() if settings.change_source == "mongo" else None
    app.state.change_source = build_change_source(settings.change_source, db, settings.stream_queue_size)
    logger.info(f"Fuente de cambios: {settings.change_source}")
    try:
        yield
    finally:
        await app.state.change_source.shutdown()
        close_db()


async def messaging_error_handler(request: Request, exc: MessagingError):
    if exc.status_code >= 500:
        logger.error(f"Error de mensajería en {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(MessagingError, messaging_error_handler)

# Configuración de CORS según entorno
if settings.env == "dev":
    cors_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    cors_regex = r"https?://(localhost|127\.0\.0\.1)(:\d+)?"
    cors_headers = ["Authorization", "Content-Type", "Accept", "Origin", "Cache-Control"]
else:
    frontend_url = settings.frontend_base_url
    cors_origins = [frontend_url] if frontend_url else []
    cors_regex = None
    cors_headers = ["Authorization", "Content-Type", "Accept", "Cache-Control"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_origin_regex=cors_regex,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=cors_headers,
    expose_headers=["Content-Type"],
)

@app.get("/health")
async def health():
    return {"status": "ok", "env": settings.env, "change_source": settings.change_source}

# Routers
app.include_router(conversations.router, prefix="/conversations", tags=["conversations"])
app.include_router(messages.router, prefix="/messages", tags=["messages"])
app.include_router(realtime.router, prefix="/realtime", tags=["realtime"])
app.include_router(users.router, prefix="/users", tags=["users"])
