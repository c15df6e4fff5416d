"""Tests for HealthChatOrchestrator — routing, persistence, history, ownership."""

import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))
os.environ.setdefault("DATABASE_URL", "sqlite:///test_healthchat.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

import pytest
from sqlmodel import select

from healthchat.chat.connection import TrackingClientConnection
from healthchat.chat.orchestrator import ConversationNotFoundError, HealthChatOrchestrator
from healthchat.llm.mock_layer import MockLLMLayer, mock_tool_use
from healthchat.models.health import Assessment, Episode, Symptom
from healthchat.repositories.assessments import AssessmentRepository
from healthchat.repositories.conversations import ConversationRepository
from healthchat.repositories.symptoms import SymptomRepository
from healthchat.tools.assessment import CREATE_FAILED_ERROR
from healthchat.workflows.state import DetectedSymptoms
from healthchat.workflows.symptom_tracking import NO_SYMPTOMS_RESPONSE


def _mock() -> MockLLMLayer:
    return MockLLMLayer({
        "haiku:DetectedSymptoms": DetectedSymptoms(symptoms=["headache"]),
        "sonnet:raw": "Sorry to hear about your headache. How severe is it?",
    })


def test_first_message_creates_conversation(session, user_id):
    orchestrator = HealthChatOrchestrator(_mock(), session)
    response = asyncio.run(orchestrator.process_message(user_id, "I woke up with a pounding headache"))

    assert response.is_new_conversation
    assert response.message == "Sorry to hear about your headache. How severe is it?"
    assert [(c.action, c.name) for c in response.symptom_changes] == [("created", "headache")]
    assert response.assessment_changes == []
    assert response.status_updates[0]["type"] == "symptom-added"

    repo = ConversationRepository(session)
    conversation = repo.get(response.conversation_id, user_id)
    assert conversation.title == "I woke up with a pounding headache"
    messages = repo.list_messages(conversation.id)
    assert [m.role for m in messages] == ["user", "assistant"]
    assert messages[0].status_information is None
    assert messages[1].status_information == response.status_updates
    print("  PASS: First message creates conversation and persists turn")


def test_follow_up_uses_history_and_existing_episode(session, user_id):
    mock = _mock()
    orchestrator = HealthChatOrchestrator(mock, session)
    first = asyncio.run(orchestrator.process_message(user_id, "I have a headache"))
    second = asyncio.run(orchestrator.process_message(
        user_id, "The headache is still there", conversation_id=first.conversation_id,
    ))

    assert not second.is_new_conversation
    assert second.conversation_id == first.conversation_id
    assert second.symptom_changes == []
    assert second.status_updates == []

    reply_calls = [c for c in mock.call_log if c["method"] == "complete_raw"]
    assert [m["role"] for m in reply_calls[-1]["messages"]] == ["user", "assistant", "user"]
    assert reply_calls[-1]["messages"][-1]["content"] == "The headache is still there"

    messages = ConversationRepository(session).list_messages(first.conversation_id)
    assert len(messages) == 4
    assert messages[3].status_information is None
    print("  PASS: Follow-up reuses history and episode")


def test_assessment_request_routes_to_assessment(session, user_id, failing_llm):
    orchestrator = HealthChatOrchestrator(failing_llm, session)
    first = asyncio.run(orchestrator.process_message(user_id, "I have a headache and fever"))
    response = asyncio.run(orchestrator.process_message(
        user_id, "Can you generate an assessment?", conversation_id=first.conversation_id,
    ))

    assert len(response.assessment_changes) == 1
    change = response.assessment_changes[0]
    assert change.name == "General health concern"
    assert change.confidence == 0.7

    types = [e["type"] for e in response.status_updates]
    assert types == [
        "assessment-generating", "assessment-created", "assessment-analyzing", "assessment-complete",
    ]
    links = AssessmentRepository(session).get_links(change.id)
    assert sorted(link.weight for link in links) == [0.5, 0.5]
    print("  PASS: Assessment request routed and persisted")


def test_foreign_conversation_rejected(session, user_id):
    orchestrator = HealthChatOrchestrator(_mock(), session)
    mine = asyncio.run(orchestrator.process_message(user_id, "I have a headache"))

    with pytest.raises(ConversationNotFoundError):
        asyncio.run(orchestrator.process_message("intruder", "hi", conversation_id=mine.conversation_id))
    with pytest.raises(ConversationNotFoundError):
        asyncio.run(orchestrator.process_message(user_id, "hi", conversation_id="does-not-exist"))

    assert len(ConversationRepository(session).list_messages(mine.conversation_id)) == 2
    print("  PASS: Foreign or unknown conversation rejected")


def test_connection_receives_only_this_turn(session, user_id, failing_llm):
    connection = TrackingClientConnection()
    orchestrator = HealthChatOrchestrator(failing_llm, session)
    asyncio.run(orchestrator.process_message(user_id, "I have a cough", connection=connection))
    response = asyncio.run(orchestrator.process_message(user_id, "Now I have a fever", connection=connection))

    assert [c.name for c in response.symptom_changes] == ["fever"]
    assert len(connection.tracked_events) == 2
    print("  PASS: Response scoped to current turn's events")


# === Failed writes ===


def test_failed_episode_write_still_persists_turn(session, user_id, failing_llm, monkeypatch):
    def get_or_create_without_id(self, user_id, name, description=None):
        symptom = Symptom(user_id=user_id, name=name)
        symptom.id = None  # Episode insert then fails NOT NULL at flush
        return symptom

    monkeypatch.setattr(SymptomRepository, "get_or_create", get_or_create_without_id)
    orchestrator = HealthChatOrchestrator(failing_llm, session)
    response = asyncio.run(orchestrator.process_message(user_id, "I have a headache"))

    assert response.message == NO_SYMPTOMS_RESPONSE
    assert response.symptom_changes == []
    assert response.status_updates == []

    messages = ConversationRepository(session).list_messages(response.conversation_id)
    assert [m.role for m in messages] == ["user", "assistant"]
    assert messages[1].content == NO_SYMPTOMS_RESPONSE
    assert session.exec(select(Episode)).all() == []
    print("  PASS: Failed episode write rolled back, turn still persisted")


def test_failed_assessment_write_still_persists_turn(session, user_id, failing_llm, monkeypatch):
    orchestrator = HealthChatOrchestrator(failing_llm, session)
    first = asyncio.run(orchestrator.process_message(user_id, "I have a fever"))

    def create_with_broken_flush(self, **kwargs):
        self.session.add(Episode(user_id=kwargs["user_id"], symptom_id=None))
        self.session.commit()

    monkeypatch.setattr(AssessmentRepository, "create", create_with_broken_flush)
    response = asyncio.run(orchestrator.process_message(
        user_id, "Please create an assessment", conversation_id=first.conversation_id,
    ))

    assert response.message == f"I encountered an error creating your assessment: {CREATE_FAILED_ERROR}"
    assert response.assessment_changes == []
    assert session.exec(select(Assessment)).all() == []
    assert len(ConversationRepository(session).list_messages(first.conversation_id)) == 4
    print("  PASS: Failed assessment write rolled back, turn still persisted")


# === Follow-up tool loop ===


def test_follow_up_tools_update_episode_and_record_denial(session, user_id):
    mock = _mock()
    orchestrator = HealthChatOrchestrator(mock, session)
    first = asyncio.run(orchestrator.process_message(user_id, "I have a headache"))
    episode_id = first.symptom_changes[0].id

    mock.responses["haiku:DetectedSymptoms"] = DetectedSymptoms(symptoms=[])
    mock.responses["sonnet:tools"] = [
        mock_tool_use(
            ("update_episode", {"episode_id": episode_id, "severity": 7, "location": "behind my eyes"}),
            ("record_negative_finding", {"symptom_name": "Fever"}),
        ),
        "Thanks, I've noted that. Does anything make it better?",
    ]
    second = asyncio.run(orchestrator.process_message(
        user_id, "It's 7/10, behind my eyes. No fever though.", conversation_id=first.conversation_id,
    ))

    assert second.message == "Thanks, I've noted that. Does anything make it better?"
    assert [(c.id, c.action, c.name) for c in second.symptom_changes] == [(episode_id, "updated", "headache")]
    assert [e["type"] for e in second.status_updates] == ["symptom-updated", "processing", "completed"]

    episode = session.get(Episode, episode_id)
    assert episode.severity == 7
    assert episode.location == "behind my eyes"
    assert episode.stage == "explored"

    # Second model call carries the tool results for both calls
    tool_calls = [c for c in mock.call_log if c["method"] == "complete_raw" and c["tools"]]
    results_turn = tool_calls[-1]["messages"][-1]
    assert [block["type"] for block in results_turn["content"]] == ["tool_result", "tool_result"]
    print("  PASS: Follow-up tools update episode and record denial")
