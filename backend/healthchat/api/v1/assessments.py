"""Assessments read API.

GET /api/v1/assessments/recent                       — User's latest assessments
GET /api/v1/assessments/conversation/{conversation_id} — Assessments of a conversation
GET /api/v1/assessments/{assessment_id}              — Single assessment with episode links
GET /api/v1/assessments/{assessment_id}/graph        — Assessment → symptom graph for visualization

``confidence`` and ``recommended_action`` are returned exactly as stored.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlmodel import Session

from healthchat.api.deps import get_current_user_id
from healthchat.db.database import get_session
from healthchat.models.health import Assessment
from healthchat.repositories.assessments import AssessmentRepository
from healthchat.repositories.episodes import EpisodeRepository
from healthchat.repositories.symptoms import SymptomRepository

router = APIRouter(prefix="/api/v1", tags=["assessments"])


class EpisodeLinkDetail(BaseModel):
    episode_id: str
    weight: float
    reasoning: str | None = None


class AssessmentDetail(BaseModel):
    id: str
    conversation_id: str
    hypothesis: str
    confidence: float
    differentials: list[str] | None = None
    reasoning: str
    recommended_action: str
    negative_finding_ids: list[str] = Field(default_factory=list)
    linked_episodes: list[EpisodeLinkDetail] = Field(default_factory=list)
    created_at: datetime


class GraphNode(BaseModel):
    id: str
    label: str
    type: Literal["diagnosis", "symptom"]
    value: int  # 0-100
    group: int


class GraphLink(BaseModel):
    source: str
    target: str
    value: int  # 0-10, link thickness


class AssessmentGraph(BaseModel):
    nodes: list[GraphNode]
    links: list[GraphLink]


def _detail(repo: AssessmentRepository, assessment: Assessment) -> AssessmentDetail:
    return AssessmentDetail(
        id=assessment.id,
        conversation_id=assessment.conversation_id,
        hypothesis=assessment.hypothesis,
        confidence=assessment.confidence,
        differentials=assessment.differentials,
        reasoning=assessment.reasoning,
        recommended_action=assessment.recommended_action,
        negative_finding_ids=list(assessment.negative_finding_ids or []),
        linked_episodes=[
            EpisodeLinkDetail(episode_id=link.episode_id, weight=link.weight, reasoning=link.reasoning)
            for link in repo.get_links(assessment.id)
        ],
        created_at=assessment.created_at,
    )


@router.get("/assessments/recent", response_model=list[AssessmentDetail])
def list_recent_assessments(
    limit: int = 10,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
) -> list[AssessmentDetail]:
    repo = AssessmentRepository(session)
    return [_detail(repo, a) for a in repo.list_recent(user_id, limit=min(limit, 50))]


@router.get("/assessments/conversation/{conversation_id}", response_model=list[AssessmentDetail])
def list_conversation_assessments(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
) -> list[AssessmentDetail]:
    repo = AssessmentRepository(session)
    return [_detail(repo, a) for a in repo.list_for_conversation(conversation_id, user_id)]


@router.get("/assessments/{assessment_id}", response_model=AssessmentDetail)
def get_assessment(
    assessment_id: str,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
) -> AssessmentDetail:
    repo = AssessmentRepository(session)
    assessment = repo.get(assessment_id, user_id=user_id)
    if assessment is None:
        raise HTTPException(status_code=404, detail="Assessment not found")
    return _detail(repo, assessment)


@router.get("/assessments/{assessment_id}/graph", response_model=AssessmentGraph)
def get_assessment_graph(
    assessment_id: str,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
) -> AssessmentGraph:
    """Assessment node linked to one node per symptom of its episodes.

    A symptom linked through several episodes keeps its highest weight.
    """
    repo = AssessmentRepository(session)
    assessment = repo.get(assessment_id, user_id=user_id)
    if assessment is None:
        raise HTTPException(status_code=404, detail="Assessment not found")

    episodes = EpisodeRepository(session)
    weights: dict[str, float] = {}
    for link in repo.get_links(assessment.id):
        episode = episodes.get(link.episode_id, user_id=user_id)
        if episode is None:
            continue
        weights[episode.symptom_id] = max(link.weight, weights.get(episode.symptom_id, 0.0))
    symptoms = SymptomRepository(session).get_many(list(weights))

    root_id = f"assessment-{assessment.id}"
    nodes = [GraphNode(
        id=root_id,
        label=assessment.hypothesis,
        type="diagnosis",
        value=round(assessment.confidence * 100),
        group=2,
    )]
    links = []
    for symptom_id, weight in weights.items():
        symptom = symptoms.get(symptom_id)
        if symptom is None:
            continue
        node_id = f"symptom-{symptom.id}"
        nodes.append(GraphNode(id=node_id, label=symptom.name, type="symptom", value=round(weight * 100), group=3))
        links.append(GraphLink(source=root_id, target=node_id, value=round(weight * 10)))
    return AssessmentGraph(nodes=nodes, links=links)
