"""Episode repository — create, partial update, and history queries."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Sequence

from sqlmodel import Session, select

from healthchat.models.health import Episode, Symptom


class EpisodeRepository:
    """CRUD and lookups for Episode rows."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, user_id: str, symptom_id: str, started_at: datetime | None = None) -> Episode:
        """Create a fresh episode in stage "mentioned", status "active"."""
        now = datetime.now(timezone.utc)
        episode = Episode(
            user_id=user_id,
            symptom_id=symptom_id,
            stage="mentioned",
            status="active",
            started_at=started_at or now,
            created_at=now,
            updated_at=now,
        )
        self.session.add(episode)
        self.session.commit()
        self.session.refresh(episode)
        return episode

    def get(self, episode_id: str, user_id: str | None = None) -> Episode | None:
        """Get an episode by ID, optionally scoped to one user."""
        episode = self.session.get(Episode, episode_id)
        if episode is None or (user_id is not None and episode.user_id != user_id):
            return None
        return episode

    def save(self, episode: Episode) -> Episode:
        """Persist changes made to an episode and bump updated_at."""
        episode.updated_at = datetime.now(timezone.utc)
        self.session.add(episode)
        self.session.commit()
        self.session.refresh(episode)
        return episode

    def list_active(self, user_id: str, since_days: int | None = None) -> Sequence[Episode]:
        """Active episodes for a user, newest first."""
        statement = select(Episode).where(Episode.user_id == user_id, Episode.status == "active")
        if since_days is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(days=since_days)
            statement = statement.where(Episode.started_at >= cutoff)
        statement = statement.order_by(Episode.started_at.desc())  # type: ignore[union-attr]
        return self.session.exec(statement).all()

    def list_for_symptom(self, user_id: str, symptom_name: str) -> Sequence[Episode]:
        """All episodes of a named symptom for a user, newest first."""
        statement = (
            select(Episode)
            .join(Symptom, Symptom.id == Episode.symptom_id)  # type: ignore[arg-type]
            .where(Episode.user_id == user_id, Symptom.name == symptom_name)
            .order_by(Episode.started_at.desc())  # type: ignore[union-attr]
        )
        return self.session.exec(statement).all()
