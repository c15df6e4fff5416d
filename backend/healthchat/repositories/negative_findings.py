"""NegativeFinding repository."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Sequence

from sqlmodel import Session, select

from healthchat.models.health import NegativeFinding


class NegativeFindingRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, user_id: str, symptom_name: str, episode_id: str | None = None) -> NegativeFinding:
        finding = NegativeFinding(
            user_id=user_id,
            symptom_name=symptom_name,
            episode_id=episode_id,
            reported_at=datetime.now(timezone.utc),
        )
        self.session.add(finding)
        self.session.commit()
        self.session.refresh(finding)
        return finding

    def list_recent(self, user_id: str, since_days: int) -> Sequence[NegativeFinding]:
        """Findings reported within the last ``since_days`` days, newest first."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=since_days)
        statement = (
            select(NegativeFinding)
            .where(NegativeFinding.user_id == user_id, NegativeFinding.reported_at >= cutoff)
            .order_by(NegativeFinding.reported_at.desc())  # type: ignore[union-attr]
        )
        return self.session.exec(statement).all()
