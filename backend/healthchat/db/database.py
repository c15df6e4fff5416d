"""Database setup — SQLite with WAL mode via SQLModel/SQLAlchemy.

- SQLModel: Pydantic v2 + SQLAlchemy in one model class
- SQLite WAL mode: chat turns read context while other turns write
- Alembic for migrations (see backend/alembic)

Tables: symptom, episode, assessment, assessment_episode_link,
negative_finding, conversation, chat_message.
"""

from __future__ import annotations

import os

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from healthchat.config import settings


def get_database_url() -> str:
    """Get database URL, ensuring the data directory exists."""
    url = settings.database_url
    if url.startswith("sqlite:///"):
        db_path = url.replace("sqlite:///", "")
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
    return url


@event.listens_for(Engine, "connect")
def set_sqlite_wal(dbapi_connection, connection_record):
    """Enable WAL mode so context reads do not block concurrent turns."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")  # Safe with WAL
    cursor.execute("PRAGMA busy_timeout=5000")    # 5s wait on lock
    cursor.close()


engine = create_engine(
    get_database_url(),
    echo=False,
    connect_args={"check_same_thread": False},  # Required for SQLite + async
)


def create_db_and_tables():
    """Create all tables defined by SQLModel metadata."""
    # Register table models on the shared metadata
    import healthchat.models.health  # noqa: F401
    import healthchat.models.messages  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session():
    """Dependency for FastAPI endpoints."""
    with Session(engine) as session:
        yield session
