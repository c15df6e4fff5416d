"""SymptomTrackerTools — symptom and episode mutations for a chat turn.

Every mutating call writes through a repository, mirrors the change into the
ConversationContext, and notifies the client. Domain failures come back as
results with ``next_recommended_action="SubmitFinalResponse"``; nothing here
raises to the workflow. A failed write rolls the session back so the rest of
the turn can still persist.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlmodel import Session

from healthchat.chat.connection import ClientConnection
from healthchat.chat.context import ConversationContext
from healthchat.models.health import Episode
from healthchat.repositories.episodes import EpisodeRepository
from healthchat.repositories.negative_findings import NegativeFindingRepository
from healthchat.repositories.symptoms import SymptomRepository
from healthchat.tools.results import (
    EpisodeListResult,
    EpisodeSummary,
    NegativeFindingResult,
    SymptomEpisodeResult,
)

logger = logging.getLogger(__name__)

UNKNOWN_SYMPTOM = "Unknown symptom"


def summarize_episode(episode: Episode, symptom_name: str | None = None) -> EpisodeSummary:
    return EpisodeSummary(
        id=episode.id,
        symptom_id=episode.symptom_id,
        symptom_name=symptom_name,
        stage=episode.stage,
        status=episode.status,
        started_at=episode.started_at,
        resolved_at=episode.resolved_at,
        severity=episode.severity,
        location=episode.location,
        frequency=episode.frequency,
        triggers=list(episode.triggers or []),
        relievers=list(episode.relievers or []),
        pattern=episode.pattern,
        timeline=list(episode.timeline or []),
    )


class SymptomTrackerTools:
    """Symptom/episode operations callable by workflows."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.symptoms = SymptomRepository(session)
        self.episodes = EpisodeRepository(session)
        self.negative_findings = NegativeFindingRepository(session)

    def _symptom_name(self, context: ConversationContext, episode: Episode) -> str:
        name = context.symptom_name_for(episode)
        if name:
            return name
        symptom = self.symptoms.get(episode.symptom_id)
        return symptom.name if symptom else UNKNOWN_SYMPTOM

    async def create_symptom_with_episode(
        self,
        context: ConversationContext,
        connection: ClientConnection,
        name: str,
        description: str | None = None,
    ) -> SymptomEpisodeResult:
        """Get-or-create the symptom and open an episode for it.

        Names are stored stripped and lower-cased. If the context already
        indexes an episode for this symptom name, that episode is returned and
        nothing new is written.
        """
        name = (name or "").strip().lower()
        if not name:
            return SymptomEpisodeResult.failure("Symptom name is required.")
        try:
            symptom = self.symptoms.get_or_create(context.user_id, name, description)

            existing = context.recent_episodes_by_symptom.get(symptom.name)
            if existing is not None:
                return SymptomEpisodeResult(
                    message=(
                        f"Found existing episode {existing.id} for {symptom.name}. "
                        "Use update_episode to add details."
                    ),
                    episode=summarize_episode(existing, symptom.name),
                    created=False,
                )

            episode = self.episodes.create(context.user_id, symptom.id)
            context.track_episode(symptom, episode)
            connection.send_symptom_added(episode.id, symptom.name, location=None)
            logger.info("Created episode %s for symptom '%s' (user %s)", episode.id, symptom.name, context.user_id)
            return SymptomEpisodeResult(
                message=f"Created episode {episode.id} for {symptom.name}.",
                episode=summarize_episode(episode, symptom.name),
                created=True,
            )
        except Exception as e:
            logger.error("create_symptom_with_episode failed for '%s': %s", name, e, exc_info=True)
            self.session.rollback()
            return SymptomEpisodeResult.failure(f"Error creating episode: {e}")

    async def update_episode(
        self,
        context: ConversationContext,
        connection: ClientConnection,
        episode_id: str,
        severity: int | None = None,
        location: str | None = None,
        frequency: str | None = None,
        triggers: list[str] | None = None,
        relievers: list[str] | None = None,
        pattern: str | None = None,
        notes: str | None = None,
    ) -> SymptomEpisodeResult:
        """Partially update an episode. Arguments left as None keep their stored value."""
        try:
            episode = self.episodes.get(episode_id, user_id=context.user_id)
            if episode is None:
                return SymptomEpisodeResult.failure(f"Episode {episode_id} not found.")

            if severity is not None:
                episode.severity = max(1, min(10, int(severity)))
            if location is not None:
                episode.location = location
            if frequency is not None:
                episode.frequency = frequency
            if triggers is not None:
                episode.triggers = list(triggers)
            if relievers is not None:
                episode.relievers = list(relievers)
            if pattern is not None:
                episode.pattern = pattern
            if severity is not None or notes:
                # JSON columns need reassignment to register as dirty
                episode.timeline = [
                    *(episode.timeline or []),
                    {
                        "date": datetime.now(timezone.utc).isoformat(),
                        "severity": episode.severity if severity is not None else None,
                        "notes": notes,
                    },
                ]
            episode.advance_stage()
            episode = self.episodes.save(episode)

            context.replace_episode(episode)
            name = self._symptom_name(context, episode)
            connection.send_symptom_updated(episode.id, name)
            return SymptomEpisodeResult(
                message=f"Updated {name} episode (stage: {episode.stage}).",
                episode=summarize_episode(episode, name),
            )
        except Exception as e:
            logger.error("update_episode failed for %s: %s", episode_id, e, exc_info=True)
            self.session.rollback()
            return SymptomEpisodeResult.failure(f"Error updating episode: {e}")

    async def link_episode_to_existing(
        self,
        context: ConversationContext,
        connection: ClientConnection,
        episode_id: str,
        related_episode_id: str,
    ) -> SymptomEpisodeResult:
        """Mark an episode as linked to an earlier one of the same user."""
        try:
            episode = self.episodes.get(episode_id, user_id=context.user_id)
            if episode is None:
                return SymptomEpisodeResult.failure(f"Episode {episode_id} not found.")
            if related_episode_id == episode_id:
                return SymptomEpisodeResult.failure("An episode cannot be linked to itself.")
            if self.episodes.get(related_episode_id, user_id=context.user_id) is None:
                return SymptomEpisodeResult.failure(f"Related episode {related_episode_id} not found.")

            name = self._symptom_name(context, episode)
            connection.send_processing(f"Linking {name} episodes")
            episode.stage = "linked"
            episode = self.episodes.save(episode)
            context.replace_episode(episode)
            connection.send_completed(f"Linked {name} episode")
            return SymptomEpisodeResult(
                message=f"Linked episode {episode.id} to {related_episode_id}.",
                episode=summarize_episode(episode, name),
            )
        except Exception as e:
            logger.error("link_episode_to_existing failed for %s: %s", episode_id, e, exc_info=True)
            self.session.rollback()
            return SymptomEpisodeResult.failure(f"Error linking episode: {e}")

    async def resolve_episode(
        self,
        context: ConversationContext,
        connection: ClientConnection,
        episode_id: str,
    ) -> SymptomEpisodeResult:
        try:
            episode = self.episodes.get(episode_id, user_id=context.user_id)
            if episode is None:
                return SymptomEpisodeResult.failure(f"Episode {episode_id} not found.")

            name = self._symptom_name(context, episode)
            episode.status = "resolved"
            episode.resolved_at = datetime.now(timezone.utc)
            episode = self.episodes.save(episode)

            context.active_episodes = [e for e in context.active_episodes if e.id != episode.id]
            if name in context.recent_episodes_by_symptom and context.recent_episodes_by_symptom[name].id == episode.id:
                del context.recent_episodes_by_symptom[name]
            connection.send_symptom_resolved(episode.id, name)
            return SymptomEpisodeResult(
                message=f"Resolved {name} episode.",
                episode=summarize_episode(episode, name),
            )
        except Exception as e:
            logger.error("resolve_episode failed for %s: %s", episode_id, e, exc_info=True)
            self.session.rollback()
            return SymptomEpisodeResult.failure(f"Error resolving episode: {e}")

    async def record_negative_finding(
        self,
        context: ConversationContext,
        connection: ClientConnection,
        symptom_name: str,
        episode_id: str | None = None,
    ) -> NegativeFindingResult:
        """Record that the user does not have ``symptom_name``."""
        try:
            connection.send_processing(f"Recording negative finding for {symptom_name}")
            finding = self.negative_findings.create(context.user_id, symptom_name, episode_id)
            context.negative_findings.append(finding)
            connection.send_completed(f"Recorded that {symptom_name} is not present")
            return NegativeFindingResult(
                message=f"Recorded that {symptom_name} is not present.",
                finding_id=finding.id,
                symptom_name=symptom_name,
            )
        except Exception as e:
            logger.error("record_negative_finding failed for '%s': %s", symptom_name, e, exc_info=True)
            self.session.rollback()
            return NegativeFindingResult.failure(f"Error recording negative finding: {e}")

    def get_active_episodes(self, context: ConversationContext) -> EpisodeListResult:
        """Active episodes currently held in the context."""
        active = [e for e in context.active_episodes if e.status == "active"]
        return EpisodeListResult(
            message=f"{len(active)} active episode(s).",
            episodes=[summarize_episode(e, context.symptom_name_for(e)) for e in active],
        )

    async def get_symptom_history(self, context: ConversationContext, symptom_name: str) -> EpisodeListResult:
        """All stored episodes of one symptom for the user, newest first."""
        try:
            episodes = self.episodes.list_for_symptom(context.user_id, symptom_name)
        except Exception as e:
            logger.error("get_symptom_history failed for '%s': %s", symptom_name, e, exc_info=True)
            self.session.rollback()
            return EpisodeListResult.failure(f"Error loading history for {symptom_name}: {e}")
        return EpisodeListResult(
            message=f"{len(episodes)} episode(s) of {symptom_name}.",
            episodes=[summarize_episode(e, symptom_name) for e in episodes],
        )

