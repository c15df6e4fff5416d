"""Conversation + ChatMessage repository."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

from sqlmodel import Session, select

from healthchat.models.messages import ChatMessage, Conversation
from healthchat.repositories.assessments import AssessmentRepository

TITLE_MAX_CHARS = 50


def title_from_message(message: str) -> str:
    """First 50 characters of the opening message, with an ellipsis if cut."""
    if len(message) > TITLE_MAX_CHARS:
        return message[:TITLE_MAX_CHARS] + "..."
    return message


class ConversationRepository:
    """CRUD for conversations and the messages inside them."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, user_id: str, title: str) -> Conversation:
        now = datetime.now(timezone.utc)
        conversation = Conversation(user_id=user_id, title=title, created_at=now, updated_at=now)
        self.session.add(conversation)
        self.session.commit()
        self.session.refresh(conversation)
        return conversation

    def get(self, conversation_id: str, user_id: str) -> Conversation | None:
        """Get a conversation only if it belongs to ``user_id``."""
        conversation = self.session.get(Conversation, conversation_id)
        if conversation is None or conversation.user_id != user_id:
            return None
        return conversation

    def list_for_user(self, user_id: str, limit: int = 50, offset: int = 0) -> Sequence[Conversation]:
        statement = (
            select(Conversation)
            .where(Conversation.user_id == user_id)
            .order_by(Conversation.updated_at.desc())  # type: ignore[union-attr]
            .offset(offset)
            .limit(limit)
        )
        return self.session.exec(statement).all()

    def touch(self, conversation: Conversation) -> Conversation:
        conversation.updated_at = datetime.now(timezone.utc)
        self.session.add(conversation)
        self.session.commit()
        self.session.refresh(conversation)
        return conversation

    def rename(self, conversation: Conversation, title: str) -> Conversation:
        conversation.title = title
        return self.touch(conversation)

    def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        status_information: list[dict] | None = None,
    ) -> ChatMessage:
        message = ChatMessage(
            conversation_id=conversation_id,
            role=role,
            content=content,
            status_information=status_information,
        )
        self.session.add(message)
        self.session.commit()
        self.session.refresh(message)
        return message

    def list_messages(self, conversation_id: str, limit: int | None = None) -> Sequence[ChatMessage]:
        """Messages in chronological order. With ``limit``, only the most recent ones."""
        if limit is None:
            statement = (
                select(ChatMessage)
                .where(ChatMessage.conversation_id == conversation_id)
                .order_by(ChatMessage.created_at)  # type: ignore[arg-type]
            )
            return self.session.exec(statement).all()
        statement = (
            select(ChatMessage)
            .where(ChatMessage.conversation_id == conversation_id)
            .order_by(ChatMessage.created_at.desc())  # type: ignore[union-attr]
            .limit(limit)
        )
        return list(reversed(self.session.exec(statement).all()))

    def count_messages(self, conversation_id: str) -> int:
        return len(self.list_messages(conversation_id))

    def delete(self, conversation: Conversation) -> None:
        """Delete a conversation with its messages, assessments and links."""
        messages = self.session.exec(
            select(ChatMessage).where(ChatMessage.conversation_id == conversation.id)
        ).all()
        for message in messages:
            self.session.delete(message)
        AssessmentRepository(self.session).delete_for_conversation(conversation.id)
        self.session.delete(conversation)
        self.session.commit()
