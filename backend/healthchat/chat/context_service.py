"""ConversationContextService — hydrates the per-turn ConversationContext."""

from __future__ import annotations

import logging

from sqlmodel import Session

from healthchat.chat.context import ConversationContext, ConversationPhase
from healthchat.config import settings
from healthchat.repositories.assessments import AssessmentRepository
from healthchat.repositories.episodes import EpisodeRepository
from healthchat.repositories.negative_findings import NegativeFindingRepository
from healthchat.repositories.symptoms import SymptomRepository

logger = logging.getLogger(__name__)


class ContextNotHydratedError(RuntimeError):
    """Raised when the context is read before hydrate() ran for this turn."""


class ConversationContextService:
    """Loads a user's active health state from storage.

    One instance serves one turn. ``hydrate`` must run before any tool or
    workflow touches the context.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self._context: ConversationContext | None = None

    async def hydrate(self, user_id: str, conversation_id: str | None = None) -> ConversationContext:
        episodes = EpisodeRepository(self.session).list_active(
            user_id, since_days=settings.active_episode_window_days,
        )
        symptoms = SymptomRepository(self.session).get_many(
            list(dict.fromkeys(e.symptom_id for e in episodes))
        )

        context = ConversationContext(user_id=user_id, conversation_id=conversation_id)
        context.active_episodes = list(episodes)
        context.active_symptoms = list(symptoms.values())
        # episodes arrive newest first; keep the first seen per symptom
        for episode in episodes:
            symptom = symptoms.get(episode.symptom_id)
            if symptom is not None and symptom.name not in context.recent_episodes_by_symptom:
                context.recent_episodes_by_symptom[symptom.name] = episode

        context.negative_findings = list(
            NegativeFindingRepository(self.session).list_recent(
                user_id, since_days=settings.negative_finding_window_days,
            )
        )

        if conversation_id:
            assessment = AssessmentRepository(self.session).latest_for_conversation(conversation_id, user_id)
            if assessment is not None:
                context.current_assessment = assessment
                context.advance_phase(ConversationPhase.ASSESSING)

        logger.info(
            "Hydrated context for user %s: %d active episodes, %d negative findings, assessment=%s",
            user_id,
            len(context.active_episodes),
            len(context.negative_findings),
            context.current_assessment.id if context.current_assessment else None,
        )
        self._context = context
        return context

    def get_current_context(self) -> ConversationContext:
        """Return the context built by the last ``hydrate`` call.

        Raises:
            ContextNotHydratedError: If ``hydrate`` has not run yet.
        """
        if self._context is None:
            raise ContextNotHydratedError("Conversation context has not been hydrated for this turn.")
        return self._context
