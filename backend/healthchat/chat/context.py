"""Per-turn conversation context.

Built once per user message by ConversationContextService, then passed
explicitly to every tool and workflow step of that turn. Tools write to the
database and mirror their changes here so later steps in the same turn see
them without re-querying.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from healthchat.models.health import Assessment, Episode, NegativeFinding, Symptom


class ConversationPhase(str, Enum):
    EXPLORING = "exploring"
    ASSESSING = "assessing"
    RECOMMENDING = "recommending"


_PHASE_RANK = {
    ConversationPhase.EXPLORING: 0,
    ConversationPhase.ASSESSING: 1,
    ConversationPhase.RECOMMENDING: 2,
}


@dataclass
class ConversationContext:
    """Working set of a user's health state for one message-processing cycle."""

    user_id: str
    conversation_id: str | None = None
    active_episodes: list[Episode] = field(default_factory=list)
    active_symptoms: list[Symptom] = field(default_factory=list)
    recent_episodes_by_symptom: dict[str, Episode] = field(default_factory=dict)
    negative_findings: list[NegativeFinding] = field(default_factory=list)
    current_assessment: Assessment | None = None
    phase: ConversationPhase = ConversationPhase.EXPLORING

    def advance_phase(self, target: ConversationPhase) -> ConversationPhase:
        """Move to ``target`` unless the context is already past it."""
        if _PHASE_RANK[target] > _PHASE_RANK[self.phase]:
            self.phase = target
        return self.phase

    def find_episode(self, episode_id: str) -> Episode | None:
        for episode in self.active_episodes:
            if episode.id == episode_id:
                return episode
        return None

    def symptom_name_for(self, episode: Episode) -> str | None:
        for symptom in self.active_symptoms:
            if symptom.id == episode.symptom_id:
                return symptom.name
        for name, indexed in self.recent_episodes_by_symptom.items():
            if indexed.id == episode.id:
                return name
        return None

    def track_episode(self, symptom: Symptom, episode: Episode) -> None:
        """Add a new episode (and its symptom) to the working set."""
        if self.find_episode(episode.id) is None:
            self.active_episodes.append(episode)
        if all(s.id != symptom.id for s in self.active_symptoms):
            self.active_symptoms.append(symptom)
        self.recent_episodes_by_symptom[symptom.name] = episode

    def replace_episode(self, episode: Episode) -> None:
        """Swap in a fresher copy of an episode wherever the context holds it."""
        self.active_episodes = [episode if e.id == episode.id else e for e in self.active_episodes]
        for name, indexed in list(self.recent_episodes_by_symptom.items()):
            if indexed.id == episode.id:
                self.recent_episodes_by_symptom[name] = episode

    def active_symptom_names(self) -> list[str]:
        names = []
        for episode in self.active_episodes:
            if episode.status != "active":
                continue
            name = self.symptom_name_for(episode)
            if name and name not in names:
                names.append(name)
        return names
