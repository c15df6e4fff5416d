"""Assessment repository — assessments and their weighted episode links."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

from sqlmodel import Session, select

from healthchat.models.health import Assessment, AssessmentEpisodeLink, clamp


class AssessmentRepository:
    """CRUD for Assessment rows and AssessmentEpisodeLink rows."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def create(
        self,
        user_id: str,
        conversation_id: str,
        hypothesis: str,
        confidence: float,
        differentials: list[str] | None = None,
        reasoning: str = "",
        recommended_action: str = "see-gp",
        negative_finding_ids: list[str] | None = None,
        episode_weights: dict[str, float] | None = None,
    ) -> Assessment:
        """Create an assessment and link it to episodes with the given weights."""
        now = datetime.now(timezone.utc)
        assessment = Assessment(
            user_id=user_id,
            conversation_id=conversation_id,
            hypothesis=hypothesis,
            confidence=confidence,
            differentials=differentials,
            reasoning=reasoning,
            recommended_action=recommended_action,
            negative_finding_ids=negative_finding_ids or [],
            created_at=now,
            updated_at=now,
        )
        self.session.add(assessment)
        for episode_id, weight in (episode_weights or {}).items():
            self.session.add(AssessmentEpisodeLink(
                assessment_id=assessment.id,
                episode_id=episode_id,
                weight=clamp(weight),
            ))
        self.session.commit()
        self.session.refresh(assessment)
        return assessment

    def get(self, assessment_id: str, user_id: str | None = None) -> Assessment | None:
        """Get an assessment by ID, optionally scoped to one user."""
        assessment = self.session.get(Assessment, assessment_id)
        if assessment is None or (user_id is not None and assessment.user_id != user_id):
            return None
        return assessment

    def save(self, assessment: Assessment) -> Assessment:
        assessment.updated_at = datetime.now(timezone.utc)
        self.session.add(assessment)
        self.session.commit()
        self.session.refresh(assessment)
        return assessment

    def replace_links(self, assessment_id: str, episode_weights: dict[str, float]) -> list[AssessmentEpisodeLink]:
        """Drop every existing link and insert the new weight map."""
        for link in self.get_links(assessment_id):
            self.session.delete(link)
        links = [
            AssessmentEpisodeLink(assessment_id=assessment_id, episode_id=episode_id, weight=clamp(weight))
            for episode_id, weight in episode_weights.items()
        ]
        for link in links:
            self.session.add(link)
        self.session.commit()
        return links

    def get_links(self, assessment_id: str) -> Sequence[AssessmentEpisodeLink]:
        statement = select(AssessmentEpisodeLink).where(AssessmentEpisodeLink.assessment_id == assessment_id)
        return self.session.exec(statement).all()

    def latest_for_conversation(self, conversation_id: str, user_id: str | None = None) -> Assessment | None:
        statement = select(Assessment).where(Assessment.conversation_id == conversation_id)
        if user_id is not None:
            statement = statement.where(Assessment.user_id == user_id)
        statement = statement.order_by(Assessment.created_at.desc())  # type: ignore[union-attr]
        return self.session.exec(statement).first()

    def list_for_conversation(self, conversation_id: str, user_id: str) -> Sequence[Assessment]:
        statement = (
            select(Assessment)
            .where(Assessment.conversation_id == conversation_id, Assessment.user_id == user_id)
            .order_by(Assessment.created_at.desc())  # type: ignore[union-attr]
        )
        return self.session.exec(statement).all()

    def list_recent(self, user_id: str, limit: int = 10) -> Sequence[Assessment]:
        statement = (
            select(Assessment)
            .where(Assessment.user_id == user_id)
            .order_by(Assessment.created_at.desc())  # type: ignore[union-attr]
            .limit(limit)
        )
        return self.session.exec(statement).all()

    def delete_for_conversation(self, conversation_id: str) -> int:
        """Delete all assessments (and their links) of a conversation. No commit."""
        assessments = self.session.exec(
            select(Assessment).where(Assessment.conversation_id == conversation_id)
        ).all()
        for assessment in assessments:
            for link in self.get_links(assessment.id):
                self.session.delete(link)
            self.session.delete(assessment)
        return len(assessments)
