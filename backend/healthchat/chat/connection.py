"""ClientConnection — status-event sink threaded through every tool call.

Each typed sender builds a StatusEvent, records it in ``tracked_events``
(persisted later on the assistant message), and hands it to the transport
via ``_deliver``. Delivery must not block and must not fail the caller:
``_deliver`` implementations are synchronous and any exception they raise
is caught and logged here.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from healthchat.models.status import (
    AssessmentAnalyzingEvent,
    AssessmentCompleteEvent,
    AssessmentCreatedEvent,
    AssessmentGeneratingEvent,
    CompletedEvent,
    ProcessingEvent,
    StatusEvent,
    SymptomAddedEvent,
    SymptomResolvedEvent,
    SymptomUpdatedEvent,
)

logger = logging.getLogger(__name__)


class ClientConnection(ABC):
    """Transport-agnostic base for pushing status events to one client."""

    def __init__(self, connection_id: str = "") -> None:
        self.connection_id = connection_id
        self.tracked_events: list[StatusEvent] = []

    @abstractmethod
    def _deliver(self, event: StatusEvent) -> None:
        """Hand the event to the transport without waiting on the client."""

    def send_status_update(self, event: StatusEvent) -> None:
        self.tracked_events.append(event)
        try:
            self._deliver(event)
        except Exception as e:
            logger.warning(
                "Failed to deliver %s event to connection %s: %s",
                event.type, self.connection_id or "-", e,
            )

    # === Typed senders ===

    def send_symptom_added(self, episode_id: str, symptom_name: str, location: str | None = None) -> None:
        self.send_status_update(SymptomAddedEvent(
            episode_id=episode_id, symptom_name=symptom_name, location=location,
        ))

    def send_symptom_updated(self, episode_id: str, symptom_name: str) -> None:
        self.send_status_update(SymptomUpdatedEvent(episode_id=episode_id, symptom_name=symptom_name))

    def send_symptom_resolved(self, episode_id: str, symptom_name: str) -> None:
        self.send_status_update(SymptomResolvedEvent(episode_id=episode_id, symptom_name=symptom_name))

    def send_generating_assessment(self) -> None:
        self.send_status_update(AssessmentGeneratingEvent())

    def send_analyzing_assessment(self) -> None:
        self.send_status_update(AssessmentAnalyzingEvent())

    def send_assessment_created(self, assessment_id: str, hypothesis: str, confidence: float) -> None:
        self.send_status_update(AssessmentCreatedEvent(
            assessment_id=assessment_id, hypothesis=hypothesis, confidence=confidence,
        ))

    def send_assessment_complete(self, assessment_id: str, message: str | None = None) -> None:
        self.send_status_update(AssessmentCompleteEvent(
            assessment_id=assessment_id, message=message or "Assessment completed.",
        ))

    def send_processing(self, message: str) -> None:
        self.send_status_update(ProcessingEvent(message=f"Processing: {message}"))

    def send_completed(self, message: str) -> None:
        self.send_status_update(CompletedEvent(message=f"Completed: {message}"))

    def tracked_wire_events(self) -> list[dict]:
        return [event.to_wire() for event in self.tracked_events]


class TrackingClientConnection(ClientConnection):
    """Records events without a live transport (plain request/response)."""

    def _deliver(self, event: StatusEvent) -> None:
        return None


class QueueClientConnection(ClientConnection):
    """Pushes events onto a bounded asyncio.Queue drained by a streaming response.

    A full queue drops the event for the live stream only; it is still
    tracked and persisted with the reply.
    """

    def __init__(self, connection_id: str = "", maxsize: int = 100) -> None:
        super().__init__(connection_id)
        self.queue: asyncio.Queue[StatusEvent] = asyncio.Queue(maxsize=maxsize)

    def _deliver(self, event: StatusEvent) -> None:
        self.queue.put_nowait(event)
