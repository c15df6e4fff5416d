"""Symptom tracking workflow: Detect → Create → Follow up.

1. Detect symptom names in the message (structured LLM call; keyword scan
   on failure).
2. create_symptom_with_episode for each name, in order.
3. Follow up with a tool-use loop: the model may update, link or resolve
   episodes, record negative findings, read history, or refine the current
   assessment, then answers the user (templated sentence on failure).

The run never raises. Unexpected errors end in a canned apology.
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
from healthchat.tools.registry import ToolExecutor
from healthchat.tools.symptom_tracker import UNKNOWN_SYMPTOM, SymptomTrackerTools
from healthchat.workflows.prompts import (
    SYMPTOM_DETECTION_SYSTEM,
    SYMPTOM_REPLY_SYSTEM,
    SYMPTOM_TOOLS_GUIDANCE,
    build_messages,
    with_episode_context,
    with_symptom_context,
)
from healthchat.workflows.state import DetectedSymptoms, WorkflowResult, WorkflowStateKeys, new_state

logger = logging.getLogger(__name__)

SYMPTOM_KEYWORDS: tuple[str, ...] = ("headache", "fever", "cough", "pain", "nausea", "dizziness")

SYMPTOM_ERROR_RESPONSE = "I encountered an error processing your symptoms. Please try again."
NO_SYMPTOMS_RESPONSE = (
    "Thanks for your message. Could you tell me which symptoms you're experiencing "
    "and how long you've had them?"
)


def keyword_scan(message: str) -> list[str]:
    """Fixed-list symptom detection over the lower-cased message."""
    lowered = message.lower()
    return [keyword for keyword in SYMPTOM_KEYWORDS if keyword in lowered]


def normalize_symptom_names(names: list[str]) -> list[str]:
    """Strip, lower-case and de-duplicate names, keeping first-seen order."""
    seen: list[str] = []
    for name in names:
        cleaned = (name or "").strip().lower()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


def acknowledgment_fallback(symptom_names: list[str]) -> str:
    if not symptom_names:
        return NO_SYMPTOMS_RESPONSE
    return (
        f"I've tracked your {', '.join(symptom_names)}. "
        "Is there anything else you'd like to tell me about these symptoms?"
    )


class SymptomTrackingWorkflow:
    """Turns a free-form symptom report into tracked episodes and a reply."""

    def __init__(
        self,
        llm: Any,
        symptom_tools: SymptomTrackerTools,
        assessment_tools: AssessmentTools | None = None,
    ) -> None:
        self.llm = llm
        self.symptom_tools = symptom_tools
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
            detected = await self._detect(context, message, state)
            state[WorkflowStateKeys.DETECTED_SYMPTOMS] = detected
            logger.info("Detected %d symptom(s): %s", len(detected), ", ".join(detected) or "-")

            tracked_names: list[str] = []
            episode_ids: list[str] = []
            for name in detected:
                result = await self.symptom_tools.create_symptom_with_episode(context, connection, name)
                if result.episode is None:
                    logger.warning("No episode for symptom '%s': %s", name, result.error_message)
                    continue
                episode_ids.append(result.episode.id)
                tracked_names.append(result.episode.symptom_name or name)
            state[WorkflowStateKeys.CREATED_EPISODES] = episode_ids
            state[WorkflowStateKeys.SYMPTOMS] = tracked_names

            response = await self._follow_up(context, connection, message, tracked_names, history, state)
            state[WorkflowStateKeys.RESPONSE] = response
            return WorkflowResult(success=True, response=response, state=state)
        except Exception as e:
            logger.error("Symptom tracking workflow failed: %s", e, exc_info=True)
            state[WorkflowStateKeys.ERROR] = str(e)
            state[WorkflowStateKeys.RESPONSE] = SYMPTOM_ERROR_RESPONSE
            return WorkflowResult(success=False, response=SYMPTOM_ERROR_RESPONSE, state=state)

    async def _detect(self, context: ConversationContext, message: str, state: dict) -> list[str]:
        system = with_symptom_context(SYMPTOM_DETECTION_SYSTEM, context.active_symptom_names())

        async def _call() -> list[str]:
            result, meta = await self.llm.complete_structured(
                messages=[{"role": "user", "content": message}],
                model_tier=settings.detection_model_tier,
                response_model=DetectedSymptoms,
                system=system,
            )
            return list(result.symptoms)

        names, used_fallback = await with_fallback(
            _call, fallback=lambda: keyword_scan(message), label="Symptom detection",
        )
        if used_fallback:
            state[WorkflowStateKeys.USED_FALLBACK].append("detection")
        return normalize_symptom_names(names)

    def _follow_up_system(self, context: ConversationContext, tracked_names: list[str]) -> str:
        system = with_symptom_context(
            f"{SYMPTOM_REPLY_SYSTEM}\n\n{SYMPTOM_TOOLS_GUIDANCE}", tracked_names, label="Tracked symptoms",
        )
        episodes = [
            (context.symptom_name_for(e) or UNKNOWN_SYMPTOM, e.id, e.stage)
            for e in context.active_episodes
            if e.status == "active"
        ]
        system = with_episode_context(system, episodes)
        if self.assessment_tools is not None and context.current_assessment is not None:
            assessment = context.current_assessment
            system += (
                f"\n\nCurrent assessment: {assessment.id} ({assessment.hypothesis}, "
                f"confidence {assessment.confidence:.2f}). Call update_assessment if new "
                "information changes it."
            )
        return system

    async def _follow_up(
        self,
        context: ConversationContext,
        connection: ClientConnection,
        message: str,
        tracked_names: list[str],
        history: list[dict] | None,
        state: dict,
    ) -> str:
        """Tool-use reply. Tool writes that ran before a failure are kept."""
        executor = ToolExecutor(context, connection, self.symptom_tools, self.assessment_tools)
        system = self._follow_up_system(context, tracked_names)

        async def _call() -> str:
            responses, meta = await self.llm.complete_with_tools(
                messages=build_messages(message, history),
                model_tier=settings.response_model_tier,
                system=system,
                tools=executor.definitions(),
                tool_executor=executor,
                max_iterations=settings.tool_max_iterations,
            )
            text = response_text(responses[-1]) if responses else ""
            if not text:
                raise ValueError("empty reply")
            logger.debug(
                "Follow-up used %d model call(s), %d tool call(s), cost $%.4f",
                len(responses), len(executor.calls), meta.cost,
            )
            return text

        reply, used_fallback = await with_fallback(
            _call,
            fallback=lambda: acknowledgment_fallback(tracked_names),
            label="Symptom reply",
            timeout=settings.tool_loop_timeout_seconds,
        )
        state[WorkflowStateKeys.TOOL_CALLS] = list(executor.calls)
        if used_fallback:
            state[WorkflowStateKeys.USED_FALLBACK].append("response")
        return reply
