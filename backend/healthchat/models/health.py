"""Health domain models — Symptom, Episode, Assessment, NegativeFinding (SQL).

Episodes are occurrences of a symptom over time. Their stage only moves
forward (mentioned → explored → characterized → linked); see
``advance_stage`` for the fill-count rule.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from sqlmodel import JSON, Column, SQLModel
from sqlmodel import Field as SQLField

EpisodeStage = Literal["mentioned", "explored", "characterized", "linked"]
EpisodeStatus = Literal["active", "resolved", "chronic"]
RecommendedAction = Literal["self-care", "see-gp", "urgent-care", "emergency"]

STAGE_ORDER: dict[str, int] = {
    "mentioned": 0,
    "explored": 1,
    "characterized": 2,
    "linked": 3,
}

RECOMMENDED_ACTIONS: tuple[str, ...] = ("self-care", "see-gp", "urgent-care", "emergency")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Symptom(SQLModel, table=True):
    """A named symptom a user has mentioned at least once."""

    __tablename__ = "symptom"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    name: str = SQLField(index=True)
    description: str | None = None
    created_at: datetime = SQLField(default_factory=_utcnow)
    updated_at: datetime = SQLField(default_factory=_utcnow)


class Episode(SQLModel, table=True):
    """One tracked occurrence of a symptom for a user."""

    __tablename__ = "episode"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    symptom_id: str = SQLField(index=True)
    user_id: str = SQLField(index=True)
    stage: str = "mentioned"  # EpisodeStage
    status: str = "active"  # EpisodeStatus
    started_at: datetime = SQLField(default_factory=_utcnow)
    resolved_at: datetime | None = None
    severity: int | None = None  # 1-10
    location: str | None = None
    frequency: str | None = None  # "constant" | "intermittent" | "occasional"
    triggers: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    relievers: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    pattern: str | None = None
    timeline: list[dict] = SQLField(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = SQLField(default_factory=_utcnow)
    updated_at: datetime = SQLField(default_factory=_utcnow)

    def filled_detail_count(self) -> int:
        """Number of characterizing details present on this episode."""
        count = 0
        if self.severity is not None:
            count += 1
        for value in (self.location, self.frequency, self.pattern):
            if value and value.strip():
                count += 1
        if self.triggers:
            count += 1
        if self.relievers:
            count += 1
        return count

    def advance_stage(self) -> str:
        """Recompute stage from the detail count. Never moves backwards."""
        count = self.filled_detail_count()
        if count >= 3 and self.stage == "explored":
            self.stage = "characterized"
        elif count >= 1 and self.stage == "mentioned":
            self.stage = "explored"
        return self.stage


class Assessment(SQLModel, table=True):
    """AI-generated diagnostic hypothesis tied to one conversation."""

    __tablename__ = "assessment"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    conversation_id: str = SQLField(index=True)
    hypothesis: str
    confidence: float = 0.0  # 0-1, clamped on write
    differentials: list[str] | None = SQLField(default=None, sa_column=Column(JSON))
    reasoning: str = ""
    recommended_action: str = "see-gp"  # RecommendedAction
    negative_finding_ids: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = SQLField(default_factory=_utcnow)
    updated_at: datetime = SQLField(default_factory=_utcnow)


class AssessmentEpisodeLink(SQLModel, table=True):
    """Weighted link between an assessment and an episode it explains."""

    __tablename__ = "assessment_episode_link"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    assessment_id: str = SQLField(index=True)
    episode_id: str = SQLField(index=True)
    weight: float = 1.0  # 0-1
    reasoning: str | None = None


class NegativeFinding(SQLModel, table=True):
    """Explicit record that a symptom is absent or denied."""

    __tablename__ = "negative_finding"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    symptom_name: str
    episode_id: str | None = None
    reported_at: datetime = SQLField(default_factory=_utcnow)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


def normalize_differentials(differentials: list[str] | None) -> list[str] | None:
    """Trim entries, drop blanks, and collapse an empty result to None."""
    if not differentials:
        return None
    cleaned = [d.strip() for d in differentials if d and d.strip()]
    return cleaned or None
