"""Episodes and symptoms read API.

GET /api/v1/episodes/active                 — Active episodes, newest first
GET /api/v1/episodes/symptom/{symptom_name} — History of one symptom
GET /api/v1/episodes/{episode_id}           — Single episode
GET /api/v1/symptoms                        — The user's known symptoms
"""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session

from healthchat.api.deps import get_current_user_id
from healthchat.db.database import get_session
from healthchat.models.health import Episode
from healthchat.repositories.episodes import EpisodeRepository
from healthchat.repositories.symptoms import SymptomRepository
from healthchat.tools.results import EpisodeSummary
from healthchat.tools.symptom_tracker import summarize_episode

router = APIRouter(prefix="/api/v1", tags=["episodes"])


class SymptomDetail(BaseModel):
    id: str
    name: str
    description: str | None = None
    created_at: datetime


def _with_names(session: Session, episodes: Sequence[Episode]) -> list[EpisodeSummary]:
    symptoms = SymptomRepository(session).get_many(list({e.symptom_id for e in episodes}))
    return [
        summarize_episode(e, symptoms[e.symptom_id].name if e.symptom_id in symptoms else None)
        for e in episodes
    ]


@router.get("/episodes/active", response_model=list[EpisodeSummary])
def list_active_episodes(
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
) -> list[EpisodeSummary]:
    return _with_names(session, EpisodeRepository(session).list_active(user_id))


@router.get("/episodes/symptom/{symptom_name}", response_model=list[EpisodeSummary])
def list_symptom_episodes(
    symptom_name: str,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
) -> list[EpisodeSummary]:
    episodes = EpisodeRepository(session).list_for_symptom(user_id, symptom_name)
    return [summarize_episode(e, symptom_name) for e in episodes]


@router.get("/episodes/{episode_id}", response_model=EpisodeSummary)
def get_episode(
    episode_id: str,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
) -> EpisodeSummary:
    episode = EpisodeRepository(session).get(episode_id, user_id=user_id)
    if episode is None:
        raise HTTPException(status_code=404, detail="Episode not found")
    return _with_names(session, [episode])[0]


@router.get("/symptoms", response_model=list[SymptomDetail])
def list_symptoms(
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
) -> list[SymptomDetail]:
    return [
        SymptomDetail(id=s.id, name=s.name, description=s.description, created_at=s.created_at)
        for s in SymptomRepository(session).list_for_user(user_id)
    ]
