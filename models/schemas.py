"""
Core data models for the inbox triage pipeline.
These are the universal types shared across all modules.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_KEYWORDS = 5


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class AuthProvider(str, Enum):
    GOOGLE = "google"
    OUTLOOK = "outlook"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ──────────────────────────────────────────────────────────────
#  User — the authenticated mailbox owner
# ──────────────────────────────────────────────────────────────

class User(BaseModel):
    """
    Identity handed over by the credential provider at login.

    The pipeline never refreshes credentials; it copies the user into
    every job payload as an immutable value.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    display_name: str = Field("", alias="displayName")
    email: str
    provider: AuthProvider = AuthProvider.GOOGLE
    access_token: str = Field(alias="accessToken")
    refresh_token: Optional[str] = Field(None, alias="refreshToken")
    token_expiry: Optional[datetime] = Field(None, alias="tokenExpiry")


# ──────────────────────────────────────────────────────────────
#  Email — a message as returned by the mail provider
# ──────────────────────────────────────────────────────────────

class MessageRef(BaseModel):
    """A bare message reference from the unread listing."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    thread_id: Optional[str] = Field(None, alias="threadId")


class Attachment(BaseModel):
    id: str
    filename: str
    content_type: str = ""
    size: int = 0


class Email(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    sender: str
    to: list[str] = []
    cc: list[str] = []
    bcc: list[str] = []
    subject: str = ""
    body: str = ""
    date: datetime
    is_read: bool = False
    labels: list[str] = []
    attachments: list[Attachment] = []
    thread_id: Optional[str] = None


# ──────────────────────────────────────────────────────────────
#  AnalysisResult — produced once per email by the analysis stage
# ──────────────────────────────────────────────────────────────

class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str = "uncategorized"
    sentiment: Sentiment = Sentiment.NEUTRAL
    priority: Priority = Priority.MEDIUM
    summary: str = "No summary available"
    keywords: list[str] = []
    suggested_response: Optional[str] = None

    @field_validator("keywords")
    @classmethod
    def _bound_keywords(cls, value: list[str]) -> list[str]:
        return value[:MAX_KEYWORDS]

    @property
    def needs_response(self) -> bool:
        return self.priority == Priority.HIGH
