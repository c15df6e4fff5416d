"""Tests for AssessmentTools — create (clamp, weights, defaults), update, complete."""

import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))
os.environ.setdefault("DATABASE_URL", "sqlite:///test_healthchat.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

import pytest

from healthchat.chat.context import ConversationContext, ConversationPhase
from healthchat.repositories.assessments import AssessmentRepository
from healthchat.tools.assessment import NO_CONVERSATION_ERROR, AssessmentTools, default_episode_weights
from healthchat.tools.symptom_tracker import SymptomTrackerTools


def _track(session, context, connection, *names):
    tools = SymptomTrackerTools(session)
    return [
        asyncio.run(tools.create_symptom_with_episode(context, connection, name)).episode.id
        for name in names
    ]


@pytest.mark.parametrize("given,stored", [(1.5, 1.0), (-0.2, 0.0), (0.42, 0.42)])
def test_create_clamps_confidence(session, context, connection, given, stored):
    tools = AssessmentTools(session)
    result = asyncio.run(tools.create_assessment(context, connection, "Migraine", given))
    assert result.success
    assert result.confidence == stored
    assert AssessmentRepository(session).get(result.assessment_id).confidence == stored
    print(f"  PASS: Confidence {given} stored as {stored}")


def test_create_defaults_equal_weights(session, context, connection):
    episode_ids = _track(session, context, connection, "headache", "fever")
    tools = AssessmentTools(session)
    result = asyncio.run(tools.create_assessment(context, connection, "Viral infection", 0.8))

    assert result.episode_weights == {episode_ids[0]: 0.5, episode_ids[1]: 0.5}
    links = AssessmentRepository(session).get_links(result.assessment_id)
    assert {link.episode_id: link.weight for link in links} == result.episode_weights
    print("  PASS: Equal default weights over active episodes")


def test_default_weights_empty_context(user_id):
    assert default_episode_weights(ConversationContext(user_id=user_id)) == {}
    print("  PASS: No active episodes means no links")


def test_create_requests_completion(session, context, connection):
    tools = AssessmentTools(session)
    result = asyncio.run(tools.create_assessment(
        context, connection, "Tension headache", 0.7,
        differentials=[" Migraine ", "", "Sinusitis"],
        reasoning="Band-like pain",
        recommended_action="self-care",
    ))
    assert result.next_recommended_action == "CompleteAssessment"
    assert result.recommended_action == "self-care"
    assert context.current_assessment.id == result.assessment_id
    assert context.phase == ConversationPhase.ASSESSING

    stored = AssessmentRepository(session).get(result.assessment_id)
    assert stored.differentials == ["Migraine", "Sinusitis"]
    assert stored.conversation_id == context.conversation_id

    types = [e["type"] for e in connection.tracked_wire_events()]
    assert types == ["assessment-generating", "assessment-created", "assessment-analyzing"]
    print("  PASS: Create assessment asks for completion")


def test_create_empty_differentials_stored_as_none(session, context, connection):
    tools = AssessmentTools(session)
    result = asyncio.run(tools.create_assessment(context, connection, "Cold", 0.6, differentials=[]))
    assert AssessmentRepository(session).get(result.assessment_id).differentials is None
    print("  PASS: Empty differentials stored as None")


def test_create_uses_context_negative_findings(session, context, connection):
    finding = asyncio.run(SymptomTrackerTools(session).record_negative_finding(context, connection, "fever"))
    result = asyncio.run(AssessmentTools(session).create_assessment(context, connection, "Allergy", 0.5))
    stored = AssessmentRepository(session).get(result.assessment_id)
    assert stored.negative_finding_ids == [finding.finding_id]
    print("  PASS: Negative findings attached by default")


def test_create_without_conversation(session, user_id, connection):
    context = ConversationContext(user_id=user_id)
    result = asyncio.run(AssessmentTools(session).create_assessment(context, connection, "Flu", 0.5))
    assert not result.success
    assert result.error_message == NO_CONVERSATION_ERROR
    assert result.next_recommended_action == "SubmitFinalResponse"
    assert connection.tracked_events == []
    print("  PASS: No conversation, no assessment")


def test_create_rejects_unknown_action(session, context, connection):
    result = asyncio.run(AssessmentTools(session).create_assessment(
        context, connection, "Flu", 0.5, recommended_action="wait-and-see",
    ))
    assert not result.success
    assert "wait-and-see" in result.error_message
    print("  PASS: Unknown recommended action rejected")


def test_update_assessment_partial_and_links(session, context, connection):
    episode_ids = _track(session, context, connection, "headache", "nausea")
    tools = AssessmentTools(session)
    created = asyncio.run(tools.create_assessment(context, connection, "Migraine", 0.6, reasoning="initial"))

    updated = asyncio.run(tools.update_assessment(
        context, connection, created.assessment_id,
        confidence=2.0,
        episode_weights={episode_ids[0]: 0.9},
    ))
    assert updated.success
    assert updated.confidence == 1.0
    assert updated.hypothesis == "Migraine"
    assert updated.episode_weights == {episode_ids[0]: 0.9}

    stored = AssessmentRepository(session).get(created.assessment_id)
    assert stored.reasoning == "initial"
    print("  PASS: Partial assessment update replaces links")


def test_update_unknown_assessment(session, context, connection):
    result = asyncio.run(AssessmentTools(session).update_assessment(context, connection, "nope", confidence=0.3))
    assert not result.success
    assert result.error_message == "Assessment nope not found."
    print("  PASS: Unknown assessment update fails")


def test_complete_current_assessment(session, context, connection):
    tools = AssessmentTools(session)
    created = asyncio.run(tools.create_assessment(context, connection, "Cold", 0.6))
    completed = asyncio.run(tools.complete_assessment(context, connection))

    assert completed.success
    assert completed.completed_assessment_id == created.assessment_id
    assert context.phase == ConversationPhase.RECOMMENDING
    last = connection.tracked_wire_events()[-1]
    assert last["type"] == "assessment-complete"
    assert last["assessmentId"] == created.assessment_id
    assert last["message"] == f"Assessment {created.assessment_id} completed."
    print("  PASS: Complete current assessment")


def test_complete_without_target(session, context, connection):
    result = asyncio.run(AssessmentTools(session).complete_assessment(context, connection))
    assert not result.success
    assert result.completed_assessment_id is None
    assert "No assessment found" in result.error_message
    assert context.phase == ConversationPhase.EXPLORING
    assert connection.tracked_events == []
    print("  PASS: Complete with nothing to complete")


def test_complete_without_conversation(session, user_id, connection):
    context = ConversationContext(user_id=user_id)
    result = asyncio.run(AssessmentTools(session).complete_assessment(context, connection, "a-1"))
    assert not result.success
    print("  PASS: Complete needs a conversation")


def test_phase_is_monotonic(user_id):
    context = ConversationContext(user_id=user_id)
    context.advance_phase(ConversationPhase.RECOMMENDING)
    context.advance_phase(ConversationPhase.ASSESSING)
    assert context.phase == ConversationPhase.RECOMMENDING
    print("  PASS: Phase never moves back")
