"""Profile data models"""

from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime, timezone
from typing import Optional


class ProfileMode(str, Enum):
    """Dashboard view preference. Cosmetic only, never an access check."""
    BUYER = "buyer"
    SELLER = "seller"


class Profile(BaseModel):
    """Per-user profile keyed by the user id"""
    id: str
    mode: ProfileMode = ProfileMode.BUYER
    full_name: Optional[str] = None
    email: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        from_attributes = True

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or "Unknown user"


class ModeUpdate(BaseModel):
    """Request body for switching dashboard mode"""
    mode: ProfileMode
