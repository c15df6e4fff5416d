"""Symptom repository — get-or-create by (user, name) and listing."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

from sqlmodel import Session, select

from healthchat.models.health import Symptom


class SymptomRepository:
    """CRUD for Symptom rows."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, symptom_id: str) -> Symptom | None:
        return self.session.get(Symptom, symptom_id)

    def get_by_name(self, user_id: str, name: str) -> Symptom | None:
        statement = select(Symptom).where(Symptom.user_id == user_id, Symptom.name == name)
        return self.session.exec(statement).first()

    def get_or_create(self, user_id: str, name: str, description: str | None = None) -> Symptom:
        """Return the user's symptom with this name, creating it if needed.

        A differing non-empty description replaces the stored one.
        """
        symptom = self.get_by_name(user_id, name)
        if symptom is None:
            symptom = Symptom(user_id=user_id, name=name, description=description)
        elif description and description != symptom.description:
            symptom.description = description
            symptom.updated_at = datetime.now(timezone.utc)
        else:
            return symptom
        self.session.add(symptom)
        self.session.commit()
        self.session.refresh(symptom)
        return symptom

    def list_for_user(self, user_id: str) -> Sequence[Symptom]:
        statement = (
            select(Symptom)
            .where(Symptom.user_id == user_id)
            .order_by(Symptom.name)  # type: ignore[arg-type]
        )
        return self.session.exec(statement).all()

    def get_many(self, symptom_ids: list[str]) -> dict[str, Symptom]:
        """Map of id -> Symptom for the given ids."""
        if not symptom_ids:
            return {}
        statement = select(Symptom).where(Symptom.id.in_(symptom_ids))  # type: ignore[union-attr]
        return {s.id: s for s in self.session.exec(statement).all()}
