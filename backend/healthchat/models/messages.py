"""Conversation and message models.

Includes: Conversation (SQL), ChatMessage (SQL),
HealthChatRequest / HealthChatResponse / EntityChange (Pydantic).
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field
from sqlmodel import JSON, Column, SQLModel
from sqlmodel import Field as SQLField


class Conversation(SQLModel, table=True):
    """A chat thread owned by one user."""

    __tablename__ = "conversation"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    title: str = ""
    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))


class ChatMessage(SQLModel, table=True):
    """A single user or assistant message within a conversation.

    Assistant messages carry the status events emitted while the turn ran,
    in wire form, so the client can replay them from history.
    """

    __tablename__ = "chat_message"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    conversation_id: str = SQLField(index=True)
    role: str  # "user" | "assistant"
    content: str = ""
    status_information: list[dict] | None = SQLField(default=None, sa_column=Column(JSON))
    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))


# === Pydantic-only models (not persisted) ===


class HealthChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    conversation_id: str | None = None


class EntityChange(BaseModel):
    """A domain change made during a turn, for client-side refresh."""

    id: str
    action: str  # "created" | "updated" | "resolved"
    name: str | None = None
    confidence: float | None = None


class HealthChatResponse(BaseModel):
    """Result of processing one user message."""

    message: str
    conversation_id: str
    is_new_conversation: bool = False
    symptom_changes: list[EntityChange] = Field(default_factory=list)
    assessment_changes: list[EntityChange] = Field(default_factory=list)
    status_updates: list[dict] = Field(default_factory=list)
