"""HealthChat FastAPI Application.

Entry point for the backend server:
    uvicorn healthchat.main:app --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from healthchat.api.health import VERSION
from healthchat.api.health import router as health_router
from healthchat.api.v1.assessments import router as assessments_router
from healthchat.api.v1.chat import router as chat_router
from healthchat.api.v1.chat import set_dependencies as set_chat_dependencies
from healthchat.api.v1.conversations import router as conversations_router
from healthchat.api.v1.episodes import router as episodes_router
from healthchat.config import settings
from healthchat.db.database import create_db_and_tables
from healthchat.llm.layer import LLMLayer
from healthchat.middleware.auth import APIKeyAuthMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    create_db_and_tables()

    set_chat_dependencies(LLMLayer())
    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY not set; workflows will answer with fallback text.")
    logger.info("HealthChat backend started (v%s)", VERSION)

    yield

    set_chat_dependencies(None)


app = FastAPI(
    title="HealthChat",
    description="Symptom-tracking health chat backend",
    version=VERSION,
    lifespan=lifespan,
)

# Middleware (order matters: first added = outermost)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-User-Id"],
)
app.add_middleware(APIKeyAuthMiddleware)


# Global exception handler: internal details never leak to the client
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    if isinstance(exc, HTTPException):
        raise exc
    logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error."},
    )


# Routes
app.include_router(health_router)
app.include_router(chat_router)
app.include_router(conversations_router)
app.include_router(assessments_router)
app.include_router(episodes_router)


@app.get("/")
async def root():
    return {"name": "HealthChat", "version": VERSION, "status": "running"}
