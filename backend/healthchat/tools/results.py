"""Typed results returned by the tool layer.

``next_recommended_action`` tells the calling workflow whether to carry on
("Continue"), stop and answer the user ("SubmitFinalResponse"), or run the
mandatory follow-up step ("CompleteAssessment").
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

NextAction = Literal["Continue", "SubmitFinalResponse", "CompleteAssessment"]


class ToolResult(BaseModel):
    success: bool = True
    message: str = ""
    error_message: str | None = None
    next_recommended_action: NextAction = "Continue"

    @classmethod
    def failure(cls, error_message: str, **kwargs):
        return cls(
            success=False,
            error_message=error_message,
            next_recommended_action="SubmitFinalResponse",
            **kwargs,
        )


class EpisodeSummary(BaseModel):
    """Flat view of an episode for tool results and the REST surface."""

    id: str
    symptom_id: str
    symptom_name: str | None = None
    stage: str
    status: str
    started_at: datetime
    resolved_at: datetime | None = None
    severity: int | None = None
    location: str | None = None
    frequency: str | None = None
    triggers: list[str] = Field(default_factory=list)
    relievers: list[str] = Field(default_factory=list)
    pattern: str | None = None
    timeline: list[dict] = Field(default_factory=list)


class SymptomEpisodeResult(ToolResult):
    episode: EpisodeSummary | None = None
    created: bool = False


class NegativeFindingResult(ToolResult):
    finding_id: str | None = None
    symptom_name: str | None = None


class EpisodeListResult(ToolResult):
    episodes: list[EpisodeSummary] = Field(default_factory=list)


class AssessmentResult(ToolResult):
    assessment_id: str | None = None
    hypothesis: str | None = None
    confidence: float | None = None
    recommended_action: str | None = None
    episode_weights: dict[str, float] = Field(default_factory=dict)


class CompleteAssessmentResult(ToolResult):
    completed_assessment_id: str | None = None
