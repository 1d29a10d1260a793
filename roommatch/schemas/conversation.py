from pydantic import BaseModel, EmailStr, Field, model_validator
from datetime import datetime
from typing import List, Literal, Optional

from .participant import Participant

class ConversationCreate(BaseModel):
    participants: List[EmailStr] = Field(..., min_length=1, description="Emails de los otros participantes")
    is_group: bool = Field(False, description="Sólo es grupo si se pide explícitamente")
    name: Optional[str] = Field(None, max_length=100, description="Obligatorio para grupos")

    @model_validator(mode='after')
    def validate_group_name(self):
        """Un grupo necesita nombre; en conversaciones 1:1 se ignora"""
        if self.is_group and not (self.name and self.name.strip()):
            raise ValueError("Los grupos necesitan un nombre")
        if not self.is_group:
            self.name = None
        return self

class ConversationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)

class VisibilityPatch(BaseModel):
    action: Literal["hide", "unhide"]

class LastMessageOut(BaseModel):
    id: str
    content: str
    sender_id: str
    created_at: datetime

class ConversationOut(BaseModel):
    id: str
    participants: List[Participant] = []
    other_participants: List[Participant] = []
    is_group: bool = False
    name: Optional[str] = None
    last_message: Optional[LastMessageOut] = None
    hidden_by: List[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
