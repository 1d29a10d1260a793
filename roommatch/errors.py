"""
Errores de dominio de la mensajería.

Los routers los dejan propagar; main.py los traduce a respuestas JSON
usando `status_code`.
"""


class MessagingError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ConversationNotFound(MessagingError):
    status_code = 404

    def __init__(self, conversation_id: str):
        super().__init__("Conversación no encontrada")
        self.conversation_id = conversation_id


class NotAParticipant(MessagingError):
    status_code = 403

    def __init__(self, conversation_id: str):
        super().__init__("Acceso denegado a esta conversación")
        self.conversation_id = conversation_id


class ConversationValidationError(MessagingError):
    status_code = 400


# ---------- Cifrado ----------

class EncryptionConfigError(MessagingError):
    """La clave de cifrado falta o tiene un formato inválido."""


class DecryptionError(MessagingError):
    """Un sobre cifrado bien formado no se pudo descifrar."""
