"""Tests for the chat, conversations, assessments and episodes APIs.

Uses an in-memory SQLite DB (StaticPool) shared by request sessions and the
SSE stream's own session.
"""

import json
import os
import sys
from uuid import uuid4

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))
os.environ.setdefault("DATABASE_URL", "sqlite:///test_healthchat.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlmodel import Session

from healthchat.api.v1 import chat
from healthchat.api.v1.assessments import router as assessments_router
from healthchat.api.v1.conversations import router as conversations_router
from healthchat.api.v1.episodes import router as episodes_router
from healthchat.db.database import get_session
from healthchat.llm.mock_layer import MockLLMLayer
from healthchat.repositories.conversations import ConversationRepository


@pytest.fixture
def client(engine):
    def override_get_session():
        with Session(engine) as session:
            yield session

    app = FastAPI()
    app.include_router(chat.router)
    app.include_router(conversations_router)
    app.include_router(assessments_router)
    app.include_router(episodes_router)
    app.dependency_overrides[get_session] = override_get_session

    chat.set_dependencies(
        MockLLMLayer(fail_with=RuntimeError("LLM unavailable")),
        session_factory=lambda: Session(engine),
    )
    yield TestClient(app)
    chat.set_dependencies(None)


@pytest.fixture
def headers(user_id):
    return {"X-User-Id": user_id}


def _chat(client, headers, message, conversation_id=None):
    response = client.post(
        "/api/v1/chat",
        json={"message": message, "conversation_id": conversation_id},
        headers=headers,
    )
    assert response.status_code == 200, response.text
    return response.json()


def _parse_sse(body: str) -> list[tuple[str, dict]]:
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines() if ": " in line)
        events.append((lines["event"], json.loads(lines["data"])))
    return events


# === Identity ===


def test_missing_user_header(client):
    response = client.post("/api/v1/chat", json={"message": "hi"})
    assert response.status_code == 401
    print("  PASS: Missing X-User-Id → 401")


def test_invalid_user_header(client):
    response = client.get("/api/v1/conversations", headers={"X-User-Id": "not-a-uuid"})
    assert response.status_code == 400
    print("  PASS: Non-UUID X-User-Id → 400")


# === Chat ===


def test_chat_headache_and_fever(client, headers):
    data = _chat(client, headers, "I have a headache and fever")
    assert data["is_new_conversation"] is True
    assert data["message"] == (
        "I've tracked your headache, fever. "
        "Is there anything else you'd like to tell me about these symptoms?"
    )
    assert [c["name"] for c in data["symptom_changes"]] == ["headache", "fever"]
    assert all(c["action"] == "created" for c in data["symptom_changes"])
    assert [u["type"] for u in data["status_updates"]] == ["symptom-added", "symptom-added"]
    print("  PASS: POST /chat tracks headache and fever")


def test_chat_validation(client, headers):
    assert client.post("/api/v1/chat", json={"message": ""}, headers=headers).status_code == 422
    assert client.post("/api/v1/chat", json={"message": "x" * 4001}, headers=headers).status_code == 422
    print("  PASS: Message length validated")


def test_chat_foreign_conversation(client, headers):
    data = _chat(client, headers, "I have a cough")
    other = {"X-User-Id": str(uuid4())}
    response = client.post(
        "/api/v1/chat",
        json={"message": "hello", "conversation_id": data["conversation_id"]},
        headers=other,
    )
    assert response.status_code == 404
    print("  PASS: Foreign conversation → 404")


def test_chat_without_llm(client, headers):
    chat.set_dependencies(None)
    response = client.post("/api/v1/chat", json={"message": "hi"}, headers=headers)
    assert response.status_code == 503
    print("  PASS: No LLM layer → 503")


def test_chat_stream(client, headers):
    response = client.get(
        "/api/v1/chat/stream",
        params={"message": "I have a headache and fever"},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")

    events = _parse_sse(response.text)
    names = [name for name, _ in events]
    assert names == ["status", "status", "done"]
    assert [data["symptomName"] for _, data in events[:2]] == ["headache", "fever"]
    done = events[-1][1]
    assert done["is_new_conversation"] is True
    assert len(done["symptom_changes"]) == 2

    # The streamed turn is persisted like a POST /chat turn
    detail = client.get(f"/api/v1/conversations/{done['conversation_id']}", headers=headers).json()
    assert [m["role"] for m in detail["messages"]] == ["user", "assistant"]
    assert len(detail["messages"][1]["status_information"]) == 2
    print("  PASS: SSE stream emits status events then done")


def test_conversation_replays_status_events(client, headers, engine):
    data = _chat(client, headers, "I have a headache")

    with Session(engine) as session:
        stored = ConversationRepository(session).list_messages(data["conversation_id"])[1]
        stored.status_information = [*stored.status_information, {"type": "mystery-event"}]
        session.add(stored)
        session.commit()

    detail = client.get(f"/api/v1/conversations/{data['conversation_id']}", headers=headers).json()
    replayed = detail["messages"][1]["status_information"]
    assert replayed == data["status_updates"]
    assert replayed[0]["type"] == "symptom-added"
    assert replayed[0]["symptomName"] == "headache"
    assert detail["messages"][0]["status_information"] is None
    print("  PASS: Stored status events replayed, unknown kinds dropped")


def test_chat_stream_unknown_conversation(client, headers):
    response = client.get(
        "/api/v1/chat/stream",
        params={"message": "hello", "conversation_id": "missing"},
        headers=headers,
    )
    events = _parse_sse(response.text)
    assert events == [("error", {"detail": "Conversation not found"})]
    print("  PASS: SSE stream reports unknown conversation")


# === Conversations ===


def test_conversations_crud(client, headers):
    data = _chat(client, headers, "I have a cough")
    conversation_id = data["conversation_id"]
    _chat(client, headers, "It's a dry cough", conversation_id)

    listing = client.get("/api/v1/conversations", headers=headers).json()
    assert len(listing) == 1
    assert listing[0]["title"] == "I have a cough"
    assert listing[0]["message_count"] == 4

    renamed = client.patch(
        f"/api/v1/conversations/{conversation_id}", json={"title": "Cough log"}, headers=headers,
    )
    assert renamed.status_code == 200
    assert renamed.json()["title"] == "Cough log"

    other = {"X-User-Id": str(uuid4())}
    assert client.get("/api/v1/conversations", headers=other).json() == []
    assert client.get(f"/api/v1/conversations/{conversation_id}", headers=other).status_code == 404
    print("  PASS: Conversations list, rename, ownership")


def test_delete_conversation_cascades(client, headers):
    data = _chat(client, headers, "I have a headache")
    conversation_id = data["conversation_id"]
    assessed = _chat(client, headers, "Please generate an assessment", conversation_id)
    assessment_id = assessed["assessment_changes"][0]["id"]
    assert client.get(f"/api/v1/assessments/{assessment_id}", headers=headers).status_code == 200

    response = client.delete(f"/api/v1/conversations/{conversation_id}", headers=headers)
    assert response.status_code == 204

    assert client.get(f"/api/v1/conversations/{conversation_id}", headers=headers).status_code == 404
    assert client.get(f"/api/v1/assessments/{assessment_id}", headers=headers).status_code == 404
    assert client.get(f"/api/v1/assessments/conversation/{conversation_id}", headers=headers).json() == []
    # Episodes outlive the conversation
    assert len(client.get("/api/v1/episodes/active", headers=headers).json()) == 1
    print("  PASS: Delete conversation cascades to messages and assessments")


# === Assessments & episodes ===


def test_assessment_read_endpoints(client, headers):
    data = _chat(client, headers, "I have a headache and fever")
    assessed = _chat(client, headers, "Can you generate an assessment?", data["conversation_id"])
    assessment_id = assessed["assessment_changes"][0]["id"]

    detail = client.get(f"/api/v1/assessments/{assessment_id}", headers=headers).json()
    assert detail["hypothesis"] == "General health concern"
    assert detail["confidence"] == 0.7
    assert detail["recommended_action"] == "see-gp"
    assert sorted(link["weight"] for link in detail["linked_episodes"]) == [0.5, 0.5]

    recent = client.get("/api/v1/assessments/recent", headers=headers).json()
    assert [a["id"] for a in recent] == [assessment_id]
    by_conversation = client.get(
        f"/api/v1/assessments/conversation/{data['conversation_id']}", headers=headers,
    ).json()
    assert [a["id"] for a in by_conversation] == [assessment_id]

    other = {"X-User-Id": str(uuid4())}
    assert client.get(f"/api/v1/assessments/{assessment_id}", headers=other).status_code == 404
    print("  PASS: Assessment read endpoints")


def test_assessment_graph(client, headers):
    data = _chat(client, headers, "I have a headache and fever")
    assessed = _chat(client, headers, "Can you generate an assessment?", data["conversation_id"])
    assessment_id = assessed["assessment_changes"][0]["id"]

    graph = client.get(f"/api/v1/assessments/{assessment_id}/graph", headers=headers).json()
    root = graph["nodes"][0]
    assert root == {
        "id": f"assessment-{assessment_id}",
        "label": "General health concern",
        "type": "diagnosis",
        "value": 70,
        "group": 2,
    }
    assert sorted(n["label"] for n in graph["nodes"][1:]) == ["fever", "headache"]
    assert all(n["type"] == "symptom" and n["value"] == 50 for n in graph["nodes"][1:])
    assert all(link["source"] == root["id"] and link["value"] == 5 for link in graph["links"])

    other = {"X-User-Id": str(uuid4())}
    assert client.get(f"/api/v1/assessments/{assessment_id}/graph", headers=other).status_code == 404
    print("  PASS: Assessment graph")


def test_episode_read_endpoints(client, headers):
    _chat(client, headers, "I have a headache and some nausea")

    active = client.get("/api/v1/episodes/active", headers=headers).json()
    assert {e["symptom_name"] for e in active} == {"headache", "nausea"}
    assert all(e["stage"] == "mentioned" for e in active)

    history = client.get("/api/v1/episodes/symptom/headache", headers=headers).json()
    assert len(history) == 1
    episode_id = history[0]["id"]

    single = client.get(f"/api/v1/episodes/{episode_id}", headers=headers)
    assert single.status_code == 200
    assert single.json()["symptom_name"] == "headache"
    assert client.get(f"/api/v1/episodes/{episode_id}", headers={"X-User-Id": str(uuid4())}).status_code == 404

    symptoms = client.get("/api/v1/symptoms", headers=headers).json()
    assert [s["name"] for s in symptoms] == ["headache", "nausea"]
    print("  PASS: Episode and symptom read endpoints")
