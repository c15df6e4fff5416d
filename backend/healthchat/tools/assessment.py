"""AssessmentTools — create, update, and complete diagnostic assessments.

Creation is never terminal: a successful ``create_assessment`` always asks
for ``complete_assessment`` next (``next_recommended_action="CompleteAssessment"``).
Completion is a phase/notification boundary and does not touch the row.
"""

from __future__ import annotations

import logging

from sqlmodel import Session

from healthchat.chat.connection import ClientConnection
from healthchat.chat.context import ConversationContext, ConversationPhase
from healthchat.models.health import RECOMMENDED_ACTIONS, clamp, normalize_differentials
from healthchat.repositories.assessments import AssessmentRepository
from healthchat.tools.results import AssessmentResult, CompleteAssessmentResult

logger = logging.getLogger(__name__)

NO_CONVERSATION_ERROR = (
    "Cannot create assessment because no conversation is active. "
    "Please start a conversation first."
)
CREATE_FAILED_ERROR = (
    "Failed to create assessment due to a technical error. "
    "Please try again or contact support if the issue persists."
)


def default_episode_weights(context: ConversationContext) -> dict[str, float]:
    """Equal split of 1.0 across every active episode in the context."""
    active = [e for e in context.active_episodes if e.status == "active"]
    if not active:
        return {}
    weight = 1.0 / len(active)
    return {e.id: weight for e in active}


class AssessmentTools:
    """Assessment operations callable by workflows."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.assessments = AssessmentRepository(session)

    async def create_assessment(
        self,
        context: ConversationContext,
        connection: ClientConnection,
        hypothesis: str,
        confidence: float,
        differentials: list[str] | None = None,
        reasoning: str | None = None,
        recommended_action: str | None = None,
        negative_finding_ids: list[str] | None = None,
        episode_weights: dict[str, float] | None = None,
    ) -> AssessmentResult:
        if not context.conversation_id:
            return AssessmentResult.failure(NO_CONVERSATION_ERROR)

        action = recommended_action or "see-gp"
        if action not in RECOMMENDED_ACTIONS:
            return AssessmentResult.failure(
                f"Invalid recommended action '{action}'. Expected one of: {', '.join(RECOMMENDED_ACTIONS)}."
            )

        try:
            connection.send_generating_assessment()

            if negative_finding_ids is None:
                negative_finding_ids = [f.id for f in context.negative_findings]
            weights = episode_weights if episode_weights is not None else default_episode_weights(context)

            assessment = self.assessments.create(
                user_id=context.user_id,
                conversation_id=context.conversation_id,
                hypothesis=hypothesis,
                confidence=clamp(confidence),
                differentials=normalize_differentials(differentials),
                reasoning=reasoning or "",
                recommended_action=action,
                negative_finding_ids=negative_finding_ids,
                episode_weights=weights,
            )

            context.current_assessment = assessment
            context.advance_phase(ConversationPhase.ASSESSING)

            connection.send_assessment_created(assessment.id, assessment.hypothesis, assessment.confidence)
            connection.send_analyzing_assessment()
            logger.info(
                "Created assessment %s (confidence=%.2f, action=%s, episodes=%d)",
                assessment.id, assessment.confidence, assessment.recommended_action, len(weights),
            )
            return AssessmentResult(
                message=f"Created assessment {assessment.id}.",
                assessment_id=assessment.id,
                hypothesis=assessment.hypothesis,
                confidence=assessment.confidence,
                recommended_action=assessment.recommended_action,
                episode_weights={k: clamp(v) for k, v in weights.items()},
                next_recommended_action="CompleteAssessment",
            )
        except Exception as e:
            logger.error("create_assessment failed: %s", e, exc_info=True)
            self.session.rollback()
            return AssessmentResult.failure(CREATE_FAILED_ERROR)

    async def update_assessment(
        self,
        context: ConversationContext,
        connection: ClientConnection,
        assessment_id: str,
        hypothesis: str | None = None,
        confidence: float | None = None,
        differentials: list[str] | None = None,
        reasoning: str | None = None,
        recommended_action: str | None = None,
        negative_finding_ids: list[str] | None = None,
        episode_weights: dict[str, float] | None = None,
    ) -> AssessmentResult:
        """Partially update an assessment.

        A supplied ``episode_weights`` map replaces every existing link.
        """
        try:
            assessment = self.assessments.get(assessment_id, user_id=context.user_id)
            if assessment is None:
                return AssessmentResult.failure(f"Assessment {assessment_id} not found.")
            if recommended_action is not None and recommended_action not in RECOMMENDED_ACTIONS:
                return AssessmentResult.failure(
                    f"Invalid recommended action '{recommended_action}'. "
                    f"Expected one of: {', '.join(RECOMMENDED_ACTIONS)}."
                )

            if hypothesis is not None:
                assessment.hypothesis = hypothesis
            if confidence is not None:
                assessment.confidence = clamp(confidence)
            if differentials is not None:
                assessment.differentials = normalize_differentials(differentials)
            if reasoning is not None:
                assessment.reasoning = reasoning
            if recommended_action is not None:
                assessment.recommended_action = recommended_action
            if negative_finding_ids is not None:
                assessment.negative_finding_ids = list(negative_finding_ids)
            assessment = self.assessments.save(assessment)

            if episode_weights is not None:
                self.assessments.replace_links(assessment.id, episode_weights)

            if context.current_assessment is not None and context.current_assessment.id == assessment.id:
                context.current_assessment = assessment

            connection.send_assessment_created(assessment.id, assessment.hypothesis, assessment.confidence)
            connection.send_analyzing_assessment()
            links = self.assessments.get_links(assessment.id)
            return AssessmentResult(
                message=f"Updated assessment {assessment.id}.",
                assessment_id=assessment.id,
                hypothesis=assessment.hypothesis,
                confidence=assessment.confidence,
                recommended_action=assessment.recommended_action,
                episode_weights={link.episode_id: link.weight for link in links},
            )
        except Exception as e:
            logger.error("update_assessment failed for %s: %s", assessment_id, e, exc_info=True)
            self.session.rollback()
            return AssessmentResult.failure(f"Error updating assessment: {e}")

    async def complete_assessment(
        self,
        context: ConversationContext,
        connection: ClientConnection,
        assessment_id: str | None = None,
    ) -> CompleteAssessmentResult:
        """Close the assessment step of the turn and move to recommending."""
        if not context.conversation_id:
            return CompleteAssessmentResult.failure(
                "Cannot complete assessment because no conversation is active."
            )

        target_id = assessment_id
        if target_id is None and context.current_assessment is not None:
            target_id = context.current_assessment.id
        if target_id is None:
            return CompleteAssessmentResult.failure(
                "No assessment found to complete. Please create an assessment first."
            )

        if context.current_assessment is None or context.current_assessment.id != target_id:
            assessment = self.assessments.get(target_id, user_id=context.user_id)
            if assessment is None:
                return CompleteAssessmentResult.failure(f"Assessment {target_id} not found.")

        context.advance_phase(ConversationPhase.RECOMMENDING)
        connection.send_assessment_complete(target_id, f"Assessment {target_id} completed.")
        logger.info("Completed assessment %s", target_id)
        return CompleteAssessmentResult(
            message=f"Assessment {target_id} completed.",
            completed_assessment_id=target_id,
        )
