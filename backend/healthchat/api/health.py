"""Health check endpoint — LLM configuration and SQLite connectivity."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel

from healthchat.config import settings

router = APIRouter()

VERSION = "0.1.0"


class HealthStatus(BaseModel):
    status: str  # "healthy" | "degraded" | "unhealthy"
    version: str
    checks: dict[str, dict]
    dependencies: dict[str, str]  # Simplified view for frontend
    timestamp: datetime


@router.get("/health", response_model=HealthStatus)
async def health_check() -> HealthStatus:
    """Check the LLM API key and the database."""
    checks: dict[str, dict] = {}
    overall_healthy = True
    has_warning = False

    # 1. LLM API key
    api_key = settings.anthropic_api_key
    if api_key == "test":
        checks["llm_api"] = {"status": "ok", "detail": "test mode"}
    elif api_key:
        checks["llm_api"] = {"status": "ok", "detail": "API key configured"}
    else:
        checks["llm_api"] = {
            "status": "warning",
            "detail": "ANTHROPIC_API_KEY not set (replies use fallback text)",
        }
        has_warning = True

    # 2. SQLite DB
    try:
        from sqlalchemy import text

        from healthchat.db.database import engine
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
            wal = conn.execute(text("PRAGMA journal_mode")).fetchone()
            checks["database"] = {"status": "ok", "detail": f"journal_mode={wal[0]}"}
    except Exception as e:
        checks["database"] = {"status": "error", "detail": str(e)}
        overall_healthy = False

    # 3. Auth (informational)
    checks["auth"] = {
        "status": "ok" if settings.healthchat_api_key else "disabled",
        "detail": "API key required" if settings.healthchat_api_key else "set HEALTHCHAT_API_KEY to enable",
    }

    dependencies = {name: check["status"] for name, check in checks.items()}

    if overall_healthy:
        status = "degraded" if has_warning else "healthy"
    else:
        status = "unhealthy"

    return HealthStatus(
        status=status,
        version=VERSION,
        checks=checks,
        dependencies=dependencies,
        timestamp=datetime.now(timezone.utc),
    )
