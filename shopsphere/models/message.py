"""Chat message data models"""

from pydantic import BaseModel
from datetime import datetime


class Message(BaseModel):
    """Immutable chat message scoped to one negotiation"""
    id: str
    negotiation_id: str
    sender_id: str
    receiver_id: str
    content: str
    created_at: datetime

    class Config:
        from_attributes = True


class MessageCreate(BaseModel):
    """Request body for sending a chat message"""
    content: str
