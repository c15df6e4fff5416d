"""Shared workflow state keys, result type, and LLM output schemas."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field


class WorkflowStateKeys:
    """Keys of the per-run state dict. The dict is the audit trail of one run."""

    USER_ID = "userId"
    CONVERSATION_ID = "conversationId"
    USER_MESSAGE = "userMessage"
    INTENT = "intent"
    SYMPTOMS = "symptoms"
    ASSESSMENT_ID = "assessmentId"
    RESPONSE = "response"
    ACTIVE_EPISODES = "activeEpisodes"
    DETECTED_SYMPTOMS = "detectedSymptoms"
    CREATED_EPISODES = "createdEpisodes"
    EXTRACTION = "extraction"
    TOOL_CALLS = "toolCalls"
    USED_FALLBACK = "usedFallback"
    ERROR = "error"


def new_state(user_id: str, conversation_id: str | None, message: str) -> dict[str, Any]:
    return {
        WorkflowStateKeys.USER_ID: user_id,
        WorkflowStateKeys.CONVERSATION_ID: conversation_id,
        WorkflowStateKeys.USER_MESSAGE: message,
        WorkflowStateKeys.USED_FALLBACK: [],
    }


@dataclass
class WorkflowResult:
    """Outcome of one workflow run. ``response`` is always user-presentable."""

    success: bool
    response: str
    state: dict[str, Any] = field(default_factory=dict)
    assessment_id: str | None = None


# === LLM output schemas (instructor response models) ===


class DetectedSymptoms(BaseModel):
    """Symptoms mentioned in a user message."""

    symptoms: list[str] = Field(
        default_factory=list,
        description="Symptom names the user says they currently have, lower-case, singular",
    )


class AssessmentExtraction(BaseModel):
    """Structured assessment drafted from the user's tracked symptoms."""

    hypothesis: str = Field(description="Most likely explanation, in plain language")
    confidence: float = Field(description="0-1; 0.7 if unsure, 0.8-0.9 if confident")
    differentials: list[str] = Field(default_factory=list, description="Other plausible explanations")
    reasoning: str = ""
    recommended_action: Literal["self-care", "see-gp", "urgent-care", "emergency"] = "see-gp"
