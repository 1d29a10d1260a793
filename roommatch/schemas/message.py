from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import List, Optional

from .participant import Participant

class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000, description="Texto del mensaje (se cifra al guardar)")

    @field_validator('content')
    @classmethod
    def validate_content(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("El mensaje no puede estar vacío")
        return v

class MessageOut(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    sender: Optional[Participant] = None
    content: str
    read_by: List[str] = []
    created_at: datetime

class MarkReadResult(BaseModel):
    updated_count: int

class UnreadSummary(BaseModel):
    total_unread: int
    by_conversation: dict[str, int] = Field(default_factory=dict)
