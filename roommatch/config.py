from pydantic import BaseModel
import os
from dotenv import load_dotenv
load_dotenv()  # carga el archivo .env de la raíz

class Settings(BaseModel):
    app_name: str = os.getenv("APP_NAME", "RoomMatch")
    env: str = os.getenv("APP_ENV", "dev")
    mongodb_uri: str = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
    db_name: str = os.getenv("DB_NAME", "roommatch")
    jwt_secret: str = os.getenv("JWT_SECRET", "change-me")
    jwt_expires_hours: int = int(os.getenv("JWT_EXPIRES_HOURS", "8"))
    frontend_base_url: str = os.getenv("FRONTEND_BASE_URL", "http://localhost:3000")

    # Clave AES-256 en hexadecimal (64 caracteres). Sin valor por defecto:
    # el arranque falla si no está configurada.
    encryption_key: str = os.getenv("ENCRYPTION_KEY", "")

    # "notifier" (colas en proceso) o "mongo" (change streams, requiere replica set)
    change_source: str = os.getenv("CHANGE_SOURCE", "notifier").lower()
    stream_queue_size: int = int(os.getenv("STREAM_QUEUE_SIZE", "10"))


_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
