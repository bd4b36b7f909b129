# models.py
from datetime import datetime, timezone
from enum import Enum
from typing import List

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Vibe(str, Enum):
    DEEP = "deep"
    LIGHTHEARTED = "lighthearted"
    SUPPORTIVE = "supportive"
    CREATIVE = "creative"


class CommunicationStyle(str, Enum):
    DIRECT = "direct"
    THOUGHTFUL = "thoughtful"
    ENERGETIC = "energetic"
    CALM = "calm"


# ----------------------
# Stored records
# ----------------------
class Profile(BaseModel):
    id: str
    name: str
    vibe: Vibe
    interests: List[str]
    communication_style: CommunicationStyle
    matched: bool = False
    created_at: datetime


class MatchRecord(BaseModel):
    id: str
    user_a: str
    user_b: str
    created_at: datetime
    expires_at: datetime
    active: bool = True

    def involves(self, user_id: str) -> bool:
        return user_id in (self.user_a, self.user_b)

    def partner_of(self, user_id: str) -> str:
        """Return whichever side of the pair is not `user_id`."""
        if user_id == self.user_a:
            return self.user_b
        if user_id == self.user_b:
            return self.user_a
        raise ValueError(f"{user_id} is not part of match {self.id}")

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now


class Message(BaseModel):
    id: str
    match_id: str
    sender_id: str
    content: str
    created_at: datetime


# ----------------------
# Payloads
# ----------------------
class ProfileCreate(BaseModel):
    name: str = Field(min_length=1)
    vibe: Vibe
    interests: List[str] = Field(min_length=3, max_length=5)
    communication_style: CommunicationStyle

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value

    @field_validator("interests")
    @classmethod
    def _distinct_interests(cls, value: List[str]) -> List[str]:
        # Case is kept: "Music" and "music" are different interests.
        cleaned = [i.strip() for i in value]
        if any(not i for i in cleaned):
            raise ValueError("interests must not be blank")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("interests must be distinct")
        return cleaned


class MessageCreate(BaseModel):
    sender_id: str
    content: str
