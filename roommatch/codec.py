"""
Cifrado simétrico del contenido de los mensajes (AES-256-GCM).

El sobre almacenado es {"encryptedContent": <base64>, "iv": <base64>}; el tag
de autenticación de GCM va al final de encryptedContent, así el sobre conserva
los dos campos y `decrypt` detecta cualquier manipulación.
"""
from typing import Any, Dict
import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import get_settings
from .errors import DecryptionError, EncryptionConfigError


IV_LENGTH = 16
KEY_LENGTH = 32

Envelope = Dict[str, str]


def is_envelope(content: Any) -> bool:
    """True si `content` tiene la forma de un sobre cifrado."""
    return (
        isinstance(content, dict)
        and isinstance(content.get("encryptedContent"), str)
        and isinstance(content.get("iv"), str)
    )


class MessageCodec:
    def __init__(self, key: bytes):
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
            raise EncryptionConfigError(f"La clave de cifrado debe tener {KEY_LENGTH} bytes")
        self._aead = AESGCM(bytes(key))

    @classmethod
    def from_hex(cls, hex_key: str | None) -> "MessageCodec":
        if not hex_key:
            raise EncryptionConfigError("ENCRYPTION_KEY no está configurada")
        if len(hex_key) != KEY_LENGTH * 2:
            raise EncryptionConfigError(
                f"ENCRYPTION_KEY debe tener {KEY_LENGTH * 2} caracteres hexadecimales, tiene {len(hex_key)}"
            )
        try:
            key = bytes.fromhex(hex_key)
        except ValueError:
            raise EncryptionConfigError("ENCRYPTION_KEY no es hexadecimal válido") from None
        return cls(key)

    def encrypt(self, plaintext: str) -> Envelope:
        iv = os.urandom(IV_LENGTH)
        ciphertext = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        return {
            "encryptedContent": base64.b64encode(ciphertext).decode("ascii"),
            "iv": base64.b64encode(iv).decode("ascii"),
        }

    def decrypt(self, envelope: Envelope) -> str:
        if not is_envelope(envelope):
            raise DecryptionError("El contenido no es un sobre cifrado")
        try:
            iv = base64.b64decode(envelope["iv"], validate=True)
            ciphertext = base64.b64decode(envelope["encryptedContent"], validate=True)
        except (binascii.Error, ValueError):
            raise DecryptionError("Sobre cifrado con base64 inválido") from None
        if len(iv) != IV_LENGTH:
            raise DecryptionError("Longitud de IV inválida")
        try:
            plaintext = self._aead.decrypt(iv, ciphertext, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError):
            # No incluir IV ni clave en el mensaje
            raise DecryptionError("No se pudo descifrar el mensaje") from None

    def safe_decrypt(self, content: Any) -> str:
        """
        Descifra si es un sobre; si no, devuelve el texto tal cual.
        Compatibilidad con mensajes antiguos guardados en claro.
        """
        if is_envelope(content):
            return self.decrypt(content)
        if content is None:
            return ""
        return content if isinstance(content, str) else str(content)


_codec: MessageCodec | None = None
def get_codec() -> MessageCodec:
    global _codec
    if _codec is None:
        _codec = MessageCodec.from_hex(get_settings().encryption_key)
    return _codec
