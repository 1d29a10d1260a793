"""
Migración única: cifra los mensajes guardados en texto plano.

Uso: python -m roommatch.migrate   (o roommatch-encrypt-messages)

Sólo toca contenido que todavía es un string; los sobres ya cifrados se
dejan tal cual, así que se puede volver a ejecutar sin efecto.
"""
from typing import Dict
import asyncio
import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from .codec import MessageCodec, get_codec
from .config import get_settings

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 100


async def encrypt_plaintext_messages(db: AsyncIOMotorDatabase, codec: MessageCodec) -> Dict[str, int]:
    stats = {"messages_encrypted": 0, "conversations_encrypted": 0}

    async for msg in db.messages.find({}, {"content": 1}):
        content = msg.get("content")
        if not isinstance(content, str):
            continue
        await db.messages.update_one({"_id": msg["_id"]}, {"$set": {"content": codec.encrypt(content)}})
        stats["messages_encrypted"] += 1
        if stats["messages_encrypted"] % PROGRESS_EVERY == 0:
            logger.info(f"{stats['messages_encrypted']} mensajes cifrados...")

    async for conv in db.conversations.find({}, {"last_message": 1}):
        last = conv.get("last_message")
        if not isinstance(last, dict) or not isinstance(last.get("content"), str):
            continue
        await db.conversations.update_one(
            {"_id": conv["_id"]},
            {"$set": {"last_message.content": codec.encrypt(last["content"])}},
        )
        stats["conversations_encrypted"] += 1

    logger.info(
        f"Migración completa: {stats['messages_encrypted']} mensajes y "
        f"{stats['conversations_encrypted']} conversaciones cifrados"
    )
    return stats


async def _run() -> Dict[str, int]:
    settings = get_settings()
    codec = get_codec()
    client = AsyncIOMotorClient(settings.mongodb_uri)
    try:
        return await encrypt_plaintext_messages(client[settings.db_name], codec)
    finally:
        client.close()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    asyncio.run(_run())


if __name__ == "__main__":
    main()
