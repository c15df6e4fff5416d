"""Shared FastAPI dependencies."""

from __future__ import annotations

from uuid import UUID

from fastapi import Header, HTTPException


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """User identity resolved upstream by the auth gateway.

    The gateway forwards the authenticated user as ``X-User-Id`` (a UUID).
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header.")
    try:
        return str(UUID(x_user_id))
    except ValueError:
        raise HTTPException(status_code=400, detail="X-User-Id must be a UUID.")
