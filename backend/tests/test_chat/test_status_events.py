"""Tests for status events, client connections and entity-change derivation."""

import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))
os.environ.setdefault("DATABASE_URL", "sqlite:///test_healthchat.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

import pytest
from pydantic import ValidationError

from healthchat.chat.connection import ClientConnection, QueueClientConnection
from healthchat.chat.orchestrator import entity_changes
from healthchat.models.status import (
    AssessmentCreatedEvent,
    AssessmentGeneratingEvent,
    SymptomAddedEvent,
    SymptomUpdatedEvent,
    parse_status_event,
    serialize_status_events,
)
from healthchat.tools.symptom_tracker import UNKNOWN_SYMPTOM


class _BrokenConnection(ClientConnection):
    def _deliver(self, event):
        raise ConnectionError("socket closed")


def test_wire_format_is_camel_case():
    event = SymptomAddedEvent(episode_id="ep-1", symptom_name="headache", location="forehead")
    wire = event.to_wire()
    assert list(wire)[:2] == ["type", "timestamp"]
    assert wire["type"] == "symptom-added"
    assert wire["episodeId"] == "ep-1"
    assert wire["symptomName"] == "headache"
    assert wire["location"] == "forehead"
    assert isinstance(wire["timestamp"], str)
    print("  PASS: Wire format")


def test_parse_round_trip_keeps_kind():
    wire = AssessmentCreatedEvent(assessment_id="a-1", hypothesis="Flu", confidence=0.8).to_wire()
    event = parse_status_event(wire)
    assert isinstance(event, AssessmentCreatedEvent)
    assert event.assessment_id == "a-1"
    assert event.confidence == 0.8
    print("  PASS: Parse restores event kind")


def test_parse_rejects_unknown_type():
    with pytest.raises(ValidationError):
        parse_status_event({"type": "symptom-exploded", "timestamp": "2026-01-01T00:00:00Z"})
    print("  PASS: Unknown event type rejected")


def test_default_messages():
    assert AssessmentGeneratingEvent().to_wire()["message"] == "Generating assessment..."
    print("  PASS: Default event messages")


def test_serialize_empty_is_none():
    assert serialize_status_events([]) is None
    events = [SymptomAddedEvent(episode_id="e", symptom_name="cough")]
    assert serialize_status_events(events)[0]["type"] == "symptom-added"
    print("  PASS: Serialize status events")


def test_delivery_failure_is_swallowed():
    connection = _BrokenConnection(connection_id="c-1")
    connection.send_symptom_added("ep-1", "fever")
    connection.send_processing("Linking episodes")
    assert [e.type for e in connection.tracked_events] == ["symptom-added", "processing"]
    assert connection.tracked_wire_events()[1]["message"] == "Processing: Linking episodes"
    print("  PASS: Delivery failure does not fail the caller")


def test_queue_connection_full_queue_still_tracks():
    async def _run():
        connection = QueueClientConnection(connection_id="c-2", maxsize=1)
        connection.send_completed("first")
        connection.send_completed("second")
        return connection

    connection = asyncio.run(_run())
    assert connection.queue.qsize() == 1
    assert connection.queue.get_nowait().message == "Completed: first"
    assert len(connection.tracked_events) == 2
    print("  PASS: Full queue drops live delivery only")


def test_entity_changes_from_events():
    events = [
        SymptomAddedEvent(episode_id="ep-1", symptom_name="headache"),
        SymptomUpdatedEvent(episode_id="ep-1", symptom_name="headache"),
        SymptomUpdatedEvent(episode_id="ep-1", symptom_name="headache"),
        SymptomAddedEvent(episode_id="ep-2", symptom_name=UNKNOWN_SYMPTOM),
        AssessmentGeneratingEvent(),
        AssessmentCreatedEvent(assessment_id="a-1", hypothesis="Migraine", confidence=0.7),
    ]
    symptoms, assessments = entity_changes(events)
    assert [(c.id, c.action, c.name) for c in symptoms] == [
        ("ep-1", "created", "headache"),
        ("ep-1", "updated", "headache"),
    ]
    assert len(assessments) == 1
    assert assessments[0].id == "a-1"
    assert assessments[0].confidence == 0.7
    print("  PASS: Entity changes derived from events")
