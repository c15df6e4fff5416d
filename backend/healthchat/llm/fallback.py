"""LLM-call-with-fallback combinator shared by the chat workflows.

    detected, used_fallback = await with_fallback(
        lambda: detect(message),
        fallback=lambda: keyword_scan(message),
        label="symptom detection",
    )

The call runs under ``settings.llm_timeout_seconds``. Any ``Exception``
(timeout, instructor validation failure, provider error, open circuit)
is logged at WARNING and replaced by ``fallback()``. Cancellation is not an
``Exception`` and still propagates.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from healthchat.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_fallback(
    call: Callable[[], Awaitable[T]],
    fallback: Callable[[], T],
    label: str,
    timeout: float | None = None,
) -> tuple[T, bool]:
    """Await ``call()``; on failure return ``fallback()``.

    Returns:
        Tuple of (value, used_fallback).
    """
    try:
        value = await asyncio.wait_for(call(), timeout=timeout or settings.llm_timeout_seconds)
        return value, False
    except Exception as e:
        logger.warning("%s failed (%s: %s); using fallback", label, type(e).__name__, e)
        return fallback(), True
