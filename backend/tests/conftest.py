"""Shared test fixtures for HealthChat backend tests."""

import os
import sys
from uuid import uuid4

import pytest

# Ensure backend is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
os.environ.setdefault("DATABASE_URL", "sqlite:///test_healthchat.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from healthchat.chat.connection import TrackingClientConnection
from healthchat.chat.context import ConversationContext
from healthchat.llm.mock_layer import MockLLMLayer

# Import all SQLModel tables so metadata is fully populated before create_all
from healthchat.models.health import (  # noqa: F401
    Assessment,
    AssessmentEpisodeLink,
    Episode,
    NegativeFinding,
    Symptom,
)
from healthchat.models.messages import ChatMessage, Conversation  # noqa: F401


@pytest.fixture
def engine():
    """Fresh in-memory SQLite DB per test. StaticPool shares one connection."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def user_id() -> str:
    return str(uuid4())


@pytest.fixture
def context(user_id) -> ConversationContext:
    """Empty context bound to a conversation."""
    return ConversationContext(user_id=user_id, conversation_id=str(uuid4()))


@pytest.fixture
def connection() -> TrackingClientConnection:
    return TrackingClientConnection(connection_id="test")


@pytest.fixture
def failing_llm() -> MockLLMLayer:
    """Every LLM call raises, so workflows take their fallback paths."""
    return MockLLMLayer(fail_with=RuntimeError("LLM unavailable"))
