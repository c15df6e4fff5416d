"""Conversations CRUD API for health chat history.

GET    /api/v1/conversations          — List the user's conversations (newest first)
GET    /api/v1/conversations/{id}     — Get conversation with messages
PATCH  /api/v1/conversations/{id}     — Rename conversation
DELETE /api/v1/conversations/{id}     — Delete conversation + messages + assessments
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, ValidationError
from sqlmodel import Session

from healthchat.api.deps import get_current_user_id
from healthchat.db.database import get_session
from healthchat.models.messages import Conversation
from healthchat.models.status import parse_status_event
from healthchat.repositories.conversations import ConversationRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["conversations"])


# === Response models ===


class ConversationSummary(BaseModel):
    """Lightweight conversation entry for list view."""

    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    message_count: int


class MessageDetail(BaseModel):
    """Single message in a conversation.

    ``status_information`` holds the status events of an assistant turn in
    wire form, for replay.
    """

    id: str
    role: str
    content: str
    status_information: list[dict] | None = None
    created_at: datetime


class ConversationDetail(BaseModel):
    """Full conversation with all messages."""

    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    messages: list[MessageDetail]


class ConversationRenameRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)


def _get_owned(repo: ConversationRepository, conversation_id: str, user_id: str) -> Conversation:
    conversation = repo.get(conversation_id, user_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


def replay_status_events(stored: list[dict] | None) -> list[dict[str, Any]] | None:
    """Re-validate persisted status events and return their wire form.

    Entries that no longer parse as a known event are dropped with a warning.
    """
    if not stored:
        return stored
    events = []
    for data in stored:
        try:
            events.append(parse_status_event(data).to_wire())
        except ValidationError as e:
            logger.warning("Dropping unreadable status event: %s", e)
    return events


def _summary(repo: ConversationRepository, conversation: Conversation) -> ConversationSummary:
    return ConversationSummary(
        id=conversation.id,
        title=conversation.title,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        message_count=repo.count_messages(conversation.id),
    )


# === Endpoints ===


@router.get("/conversations", response_model=list[ConversationSummary])
def list_conversations(
    limit: int = 50,
    offset: int = 0,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
) -> list[ConversationSummary]:
    """List conversations, newest first."""
    repo = ConversationRepository(session)
    conversations = repo.list_for_user(user_id, limit=min(limit, 100), offset=offset)
    return [_summary(repo, c) for c in conversations]


@router.get("/conversations/{conversation_id}", response_model=ConversationDetail)
def get_conversation(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
) -> ConversationDetail:
    """Get conversation with all messages."""
    repo = ConversationRepository(session)
    conversation = _get_owned(repo, conversation_id, user_id)
    messages = repo.list_messages(conversation.id)

    return ConversationDetail(
        id=conversation.id,
        title=conversation.title,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        messages=[
            MessageDetail(
                id=m.id,
                role=m.role,
                content=m.content,
                status_information=replay_status_events(m.status_information),
                created_at=m.created_at,
            )
            for m in messages
        ],
    )


@router.patch("/conversations/{conversation_id}", response_model=ConversationSummary)
def rename_conversation(
    conversation_id: str,
    body: ConversationRenameRequest,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
) -> ConversationSummary:
    """Rename a conversation."""
    repo = ConversationRepository(session)
    conversation = repo.rename(_get_owned(repo, conversation_id, user_id), body.title)
    return _summary(repo, conversation)


@router.delete("/conversations/{conversation_id}", status_code=204)
def delete_conversation(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
) -> None:
    """Delete conversation with its messages and assessments."""
    repo = ConversationRepository(session)
    repo.delete(_get_owned(repo, conversation_id, user_id))
