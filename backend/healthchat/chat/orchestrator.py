"""HealthChatOrchestrator — entry point for one user message.

Steps per turn:
1. Get or create the conversation (an existing one must belong to the user).
2. Hydrate a fresh ConversationContext.
3. Route: assessment requests → AssessmentWorkflow, everything else →
   SymptomTrackingWorkflow (whose follow-up may also refine the current
   assessment).
4. Persist the user message and the assistant reply, with the turn's status
   events attached to the reply.
5. Return the reply plus the entity changes derived from those events.

Decoupled from FastAPI so it can be driven by the REST endpoint, the SSE
stream, or tests.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from sqlmodel import Session

from healthchat.chat.connection import ClientConnection, TrackingClientConnection
from healthchat.chat.context_service import ConversationContextService
from healthchat.config import settings
from healthchat.models.messages import Conversation, EntityChange, HealthChatResponse
from healthchat.models.status import (
    AssessmentCreatedEvent,
    StatusEvent,
    SymptomAddedEvent,
    SymptomResolvedEvent,
    SymptomUpdatedEvent,
    serialize_status_events,
)
from healthchat.repositories.conversations import ConversationRepository, title_from_message
from healthchat.tools.assessment import AssessmentTools
from healthchat.tools.symptom_tracker import UNKNOWN_SYMPTOM, SymptomTrackerTools
from healthchat.workflows.assessment import INTENT_CREATE_ASSESSMENT, AssessmentWorkflow, classify_intent
from healthchat.workflows.state import WorkflowResult
from healthchat.workflows.symptom_tracking import SymptomTrackingWorkflow

logger = logging.getLogger(__name__)


class ConversationNotFoundError(LookupError):
    """The conversation does not exist or belongs to another user."""


def entity_changes(events: list[StatusEvent]) -> tuple[list[EntityChange], list[EntityChange]]:
    """Symptom and assessment changes made during a turn, in event order.

    One entry per (id, action); later duplicates are dropped.
    """
    symptom_changes: list[EntityChange] = []
    assessment_changes: list[EntityChange] = []
    seen: set[tuple[str, str]] = set()

    for event in events:
        if isinstance(event, (SymptomAddedEvent, SymptomUpdatedEvent, SymptomResolvedEvent)):
            if not event.symptom_name or event.symptom_name == UNKNOWN_SYMPTOM:
                continue
            action = {
                "symptom-added": "created",
                "symptom-updated": "updated",
                "symptom-resolved": "resolved",
            }[event.type]
            if (event.episode_id, action) in seen:
                continue
            seen.add((event.episode_id, action))
            symptom_changes.append(EntityChange(id=event.episode_id, action=action, name=event.symptom_name))
        elif isinstance(event, AssessmentCreatedEvent):
            if (event.assessment_id, "created") in seen:
                continue
            seen.add((event.assessment_id, "created"))
            assessment_changes.append(EntityChange(
                id=event.assessment_id,
                action="created",
                name=event.hypothesis,
                confidence=event.confidence,
            ))
    return symptom_changes, assessment_changes


class HealthChatOrchestrator:
    """Runs one chat turn end to end against a database session."""

    def __init__(self, llm: Any, session: Session) -> None:
        self.llm = llm
        self.session = session
        self.conversations = ConversationRepository(session)

    def _get_or_create_conversation(
        self, user_id: str, message: str, conversation_id: str | None,
    ) -> tuple[Conversation, bool]:
        if conversation_id:
            conversation = self.conversations.get(conversation_id, user_id)
            if conversation is None:
                logger.warning("Conversation %s not found for user %s", conversation_id, user_id)
                raise ConversationNotFoundError("Conversation not found")
            return conversation, False

        conversation = self.conversations.create(user_id, title_from_message(message))
        logger.debug("Created conversation %s for user %s", conversation.id, user_id)
        return conversation, True

    def _load_history(self, conversation_id: str) -> list[dict]:
        messages = self.conversations.list_messages(conversation_id, limit=settings.history_message_limit)
        return [{"role": m.role, "content": m.content} for m in messages]

    async def process_message(
        self,
        user_id: str,
        message: str,
        conversation_id: str | None = None,
        connection: ClientConnection | None = None,
    ) -> HealthChatResponse:
        """Process a user message and persist the full turn.

        Raises:
            ConversationNotFoundError: If ``conversation_id`` is unknown or not the user's.
        """
        start = time.time()
        connection = connection or TrackingClientConnection()
        first_event = len(connection.tracked_events)

        conversation, is_new = self._get_or_create_conversation(user_id, message, conversation_id)
        history = [] if is_new else self._load_history(conversation.id)

        context = await ConversationContextService(self.session).hydrate(user_id, conversation.id)

        result = await self._run_workflow(context, connection, message, history)
        logger.debug("Workflow state for conversation %s: %s", conversation.id, result.state)
        if not self.session.is_active:
            logger.warning("Rolling back failed transaction before persisting turn in %s", conversation.id)
            self.session.rollback()

        events = connection.tracked_events[first_event:]
        status_information = serialize_status_events(events)
        self.conversations.add_message(conversation.id, "user", message)
        self.conversations.add_message(conversation.id, "assistant", result.response, status_information)
        self.conversations.touch(conversation)

        symptom_changes, assessment_changes = entity_changes(events)
        logger.info(
            "Processed message for conversation %s in %dms (new=%s, success=%s, events=%d)",
            conversation.id, int((time.time() - start) * 1000), is_new, result.success, len(events),
        )
        return HealthChatResponse(
            message=result.response,
            conversation_id=conversation.id,
            is_new_conversation=is_new,
            symptom_changes=symptom_changes,
            assessment_changes=assessment_changes,
            status_updates=status_information or [],
        )

    async def _run_workflow(self, context, connection, message, history) -> WorkflowResult:
        if classify_intent(message) == INTENT_CREATE_ASSESSMENT:
            workflow = AssessmentWorkflow(self.llm, AssessmentTools(self.session))
        else:
            workflow = SymptomTrackingWorkflow(
                self.llm, SymptomTrackerTools(self.session), AssessmentTools(self.session),
            )
        return await workflow.run(context, connection, message, history=history)
