"""Status events pushed to the client while a chat turn runs.

Closed set of event kinds, discriminated by ``type``. Every event is both
streamed live and persisted on the assistant message, using the same wire
shape: ``{"type": ..., "timestamp": <ISO 8601>, ...camelCase fields}``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class _StatusEventBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the client wire format."""
        data = self.model_dump(mode="json", by_alias=True)
        return {"type": data.pop("type"), "timestamp": data.pop("timestamp"), **data}


class SymptomAddedEvent(_StatusEventBase):
    type: Literal["symptom-added"] = "symptom-added"
    episode_id: str
    symptom_name: str
    location: str | None = None


class SymptomUpdatedEvent(_StatusEventBase):
    type: Literal["symptom-updated"] = "symptom-updated"
    episode_id: str
    symptom_name: str


class SymptomResolvedEvent(_StatusEventBase):
    type: Literal["symptom-resolved"] = "symptom-resolved"
    episode_id: str
    symptom_name: str


class AssessmentGeneratingEvent(_StatusEventBase):
    type: Literal["assessment-generating"] = "assessment-generating"
    message: str = "Generating assessment..."


class AssessmentAnalyzingEvent(_StatusEventBase):
    type: Literal["assessment-analyzing"] = "assessment-analyzing"
    message: str = "Analyzing assessment..."


class AssessmentCreatedEvent(_StatusEventBase):
    type: Literal["assessment-created"] = "assessment-created"
    assessment_id: str
    hypothesis: str
    confidence: float


class AssessmentCompleteEvent(_StatusEventBase):
    type: Literal["assessment-complete"] = "assessment-complete"
    assessment_id: str
    message: str = "Assessment completed."


class ProcessingEvent(_StatusEventBase):
    type: Literal["processing"] = "processing"
    message: str


class CompletedEvent(_StatusEventBase):
    type: Literal["completed"] = "completed"
    message: str


StatusEvent = Annotated[
    Union[
        SymptomAddedEvent,
        SymptomUpdatedEvent,
        SymptomResolvedEvent,
        AssessmentGeneratingEvent,
        AssessmentAnalyzingEvent,
        AssessmentCreatedEvent,
        AssessmentCompleteEvent,
        ProcessingEvent,
        CompletedEvent,
    ],
    Field(discriminator="type"),
]

_status_event_adapter: TypeAdapter[StatusEvent] = TypeAdapter(StatusEvent)


def parse_status_event(data: dict[str, Any]) -> StatusEvent:
    """Rebuild a typed event from its wire form.

    Raises:
        pydantic.ValidationError: If ``type`` is unknown or fields are missing.
    """
    return _status_event_adapter.validate_python(data)


def serialize_status_events(events: list[StatusEvent]) -> list[dict[str, Any]] | None:
    """Wire form of a turn's events for persistence. None when nothing was sent."""
    if not events:
        return None
    return [event.to_wire() for event in events]
