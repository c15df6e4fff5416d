"""Assessment workflow: Classify → Extract → Create → Complete → Respond.

Creation is always followed directly by completion, with no other tool call
in between, so an assessment is never left half-finished across turns.
The only early exit after classification is a failed create, since there is
then nothing to complete.
"""

from __future__ import annotations

import logging
from typing import Any

from healthchat.chat.connection import ClientConnection
from healthchat.chat.context import ConversationContext
from healthchat.config import settings
from healthchat.llm.fallback import with_fallback
from healthchat.llm.layer import response_text
from healthchat.tools.assessment import AssessmentTools
from healthchat.tools.results import AssessmentResult
from healthchat.workflows.prompts import (
    ASSESSMENT_EXTRACTION_SYSTEM,
    ASSESSMENT_REPLY_SYSTEM,
    GENERAL_REPLY_SYSTEM,
    build_messages,
    with_symptom_context,
)
from healthchat.workflows.state import AssessmentExtraction, WorkflowResult, WorkflowStateKeys, new_state

logger = logging.getLogger(__name__)

INTENT_CREATE_ASSESSMENT = "create_assessment"
INTENT_OTHER = "other"

ASSESSMENT_KEYWORDS: tuple[str, ...] = (
    "assessment",
    "assess",
    "diagnosis",
    "evaluate",
    "evaluation",
    "generate assessment",
    "create assessment",
)

ASSESSMENT_ERROR_RESPONSE = "I encountered an error processing your request. Please try again."
ASSESSMENT_REPLY_FALLBACK = (
    "I've processed your request and created an assessment. "
    "Is there anything else you'd like to discuss?"
)
GENERAL_REPLY_FALLBACK = "Thanks for your message. How else can I help with your symptoms?"


def classify_intent(message: str) -> str:
    """Keyword intent check: "create_assessment" or "other"."""
    lowered = message.lower()
    if any(keyword in lowered for keyword in ASSESSMENT_KEYWORDS):
        return INTENT_CREATE_ASSESSMENT
    return INTENT_OTHER


def default_extraction() -> AssessmentExtraction:
    return AssessmentExtraction(
        hypothesis="General health concern",
        confidence=0.7,
        recommended_action="see-gp",
    )


class AssessmentWorkflow:
    """Creates and completes an assessment when the user asks for one."""

    def __init__(self, llm: Any, assessment_tools: AssessmentTools) -> None:
        self.llm = llm
        self.assessment_tools = assessment_tools

    async def run(
        self,
        context: ConversationContext,
        connection: ClientConnection,
        message: str,
        history: list[dict] | None = None,
    ) -> WorkflowResult:
        state = new_state(context.user_id, context.conversation_id, message)
        state[WorkflowStateKeys.ACTIVE_EPISODES] = [e.id for e in context.active_episodes]

        try:
            intent = classify_intent(message)
            state[WorkflowStateKeys.INTENT] = intent
            logger.info("Classified intent: %s", intent)

            if intent != INTENT_CREATE_ASSESSMENT:
                response = await self._respond(context, message, None, history, state)
                state[WorkflowStateKeys.RESPONSE] = response
                return WorkflowResult(success=True, response=response, state=state)

            extraction = await self._extract(context, message, state)
            state[WorkflowStateKeys.SYMPTOMS] = context.active_symptom_names()
            state[WorkflowStateKeys.EXTRACTION] = extraction.model_dump()
            logger.info(
                "Extracted assessment: hypothesis=%r confidence=%.2f action=%s",
                extraction.hypothesis, extraction.confidence, extraction.recommended_action,
            )

            created = await self.assessment_tools.create_assessment(
                context,
                connection,
                hypothesis=extraction.hypothesis,
                confidence=extraction.confidence,
                differentials=extraction.differentials,
                reasoning=extraction.reasoning,
                recommended_action=extraction.recommended_action,
            )
            if created.assessment_id is None:
                logger.error("Failed to create assessment: %s", created.error_message)
                error_response = f"I encountered an error creating your assessment: {created.error_message}"
                state[WorkflowStateKeys.RESPONSE] = error_response
                return WorkflowResult(success=False, response=error_response, state=state)
            state[WorkflowStateKeys.ASSESSMENT_ID] = created.assessment_id

            completed = await self.assessment_tools.complete_assessment(
                context, connection, assessment_id=created.assessment_id,
            )
            if completed.completed_assessment_id is None:
                logger.warning(
                    "complete_assessment returned no id for %s (%s); continuing",
                    created.assessment_id, completed.error_message,
                )

            response = await self._respond(context, message, created, history, state)
            state[WorkflowStateKeys.RESPONSE] = response
            return WorkflowResult(
                success=True,
                response=response,
                state=state,
                assessment_id=created.assessment_id,
            )
        except Exception as e:
            logger.error("Assessment workflow failed: %s", e, exc_info=True)
            state[WorkflowStateKeys.ERROR] = str(e)
            state[WorkflowStateKeys.RESPONSE] = ASSESSMENT_ERROR_RESPONSE
            return WorkflowResult(success=False, response=ASSESSMENT_ERROR_RESPONSE, state=state)

    async def _extract(self, context: ConversationContext, message: str, state: dict) -> AssessmentExtraction:
        system = with_symptom_context(ASSESSMENT_EXTRACTION_SYSTEM, context.active_symptom_names())

        async def _call() -> AssessmentExtraction:
            result, meta = await self.llm.complete_structured(
                messages=[{"role": "user", "content": message}],
                model_tier=settings.detection_model_tier,
                response_model=AssessmentExtraction,
                system=system,
            )
            if not result.hypothesis.strip():
                raise ValueError("empty hypothesis")
            return result

        extraction, used_fallback = await with_fallback(
            _call, fallback=default_extraction, label="Assessment extraction",
        )
        if used_fallback:
            state[WorkflowStateKeys.USED_FALLBACK].append("extraction")
        return extraction

    async def _respond(
        self,
        context: ConversationContext,
        message: str,
        created: AssessmentResult | None,
        history: list[dict] | None,
        state: dict,
    ) -> str:
        if created is None:
            system = with_symptom_context(GENERAL_REPLY_SYSTEM, context.active_symptom_names())
            fallback = GENERAL_REPLY_FALLBACK
        else:
            system = (
                f"{ASSESSMENT_REPLY_SYSTEM}\n\n"
                f"Hypothesis: {created.hypothesis}\n"
                f"Confidence: {created.confidence:.0%}\n"
                f"Recommended action: {created.recommended_action}"
            )
            system = with_symptom_context(system, context.active_symptom_names())
            fallback = ASSESSMENT_REPLY_FALLBACK

        async def _call() -> str:
            response, meta = await self.llm.complete_raw(
                messages=build_messages(message, history),
                model_tier=settings.response_model_tier,
                system=system,
            )
            text = response_text(response)
            if not text:
                raise ValueError("empty reply")
            return text

        reply, used_fallback = await with_fallback(_call, fallback=lambda: fallback, label="Assessment reply")
        if used_fallback:
            state[WorkflowStateKeys.USED_FALLBACK].append("response")
        return reply
