"""Health chat API — one user message per request.

POST /api/v1/chat         — Process a message, return the full response
GET  /api/v1/chat/stream  — Same, streamed as SSE (status events, then done)

The SSE variant emits named events:
    status  — one per StatusEvent, in wire form, as tools run
    done    — the HealthChatResponse
    error   — {"detail": ...}
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlmodel import Session

from healthchat.api.deps import get_current_user_id
from healthchat.chat.connection import QueueClientConnection
from healthchat.chat.orchestrator import ConversationNotFoundError, HealthChatOrchestrator
from healthchat.config import settings
from healthchat.db.database import engine, get_session
from healthchat.models.messages import HealthChatRequest, HealthChatResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["chat"])

_llm: Any = None
_session_factory: Callable[[], Session] = lambda: Session(engine)


def set_dependencies(llm: Any, session_factory: Callable[[], Session] | None = None) -> None:
    """Wire the LLM layer (and optionally the stream's session factory). Called from main.py."""
    global _llm, _session_factory
    _llm = llm
    if session_factory is not None:
        _session_factory = session_factory


def _require_llm() -> Any:
    if _llm is None:
        raise HTTPException(status_code=503, detail="LLM layer not initialized.")
    return _llm


@router.post("/chat", response_model=HealthChatResponse)
async def chat_endpoint(
    request: HealthChatRequest,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
) -> HealthChatResponse:
    """Process one user message through the health chat workflows."""
    orchestrator = HealthChatOrchestrator(_require_llm(), session)
    try:
        return await orchestrator.process_message(user_id, request.message, request.conversation_id)
    except ConversationNotFoundError:
        raise HTTPException(status_code=404, detail="Conversation not found")


def _sse_event(event: str, data: dict) -> str:
    """Format a named SSE event."""
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


@router.get("/chat/stream")
async def chat_stream(
    message: str = Query(min_length=1, max_length=4000, description="User message"),
    conversation_id: str | None = Query(default=None, description="Continue existing conversation"),
    user_id: str = Depends(get_current_user_id),
) -> StreamingResponse:
    """SSE endpoint streaming status events while the message is processed.

    Uses GET because EventSource API only supports GET.
    """
    llm = _require_llm()

    async def event_generator():
        connection = QueueClientConnection(connection_id=user_id, maxsize=settings.stream_queue_size)
        with _session_factory() as session:
            orchestrator = HealthChatOrchestrator(llm, session)
            task = asyncio.create_task(
                orchestrator.process_message(user_id, message, conversation_id, connection)
            )
            try:
                while True:
                    getter = asyncio.ensure_future(connection.queue.get())
                    await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                    if getter.done():
                        yield _sse_event("status", getter.result().to_wire())
                        continue
                    getter.cancel()
                    break
                while not connection.queue.empty():
                    yield _sse_event("status", connection.queue.get_nowait().to_wire())

                response = task.result()
                yield _sse_event("done", response.model_dump(mode="json"))
            except ConversationNotFoundError:
                yield _sse_event("error", {"detail": "Conversation not found"})
            except Exception as e:
                logger.error("Chat stream failed for user %s: %s", user_id, e, exc_info=True)
                yield _sse_event("error", {"detail": "Failed to process message."})
            finally:
                if not task.done():
                    task.cancel()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
