"""LLM Layer — every workflow LLM call goes through this layer.

Uses AsyncAnthropic + Instructor for structured outputs:
- complete_structured: symptom detection, assessment extraction
- complete_raw: free-text replies to the user
- complete_with_tools: tool-use loop for the symptom follow-up reply

Each call returns an LLMResponse alongside the result so callers can log
model version, token usage and cost.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import anthropic
import instructor
from pydantic import BaseModel

from healthchat.config import MODEL_MAP, ModelTier, settings

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Metadata from an LLM call."""

    model_version: str = ""          # Exact model ID from API response
    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0
    stop_reason: str = ""
    cost: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class CircuitBreaker:
    """Simple circuit breaker for external API calls.

    States: CLOSED (normal) → OPEN (fail-fast) → HALF_OPEN (trial request).
    Opens after `failure_threshold` consecutive failures.
    Auto-resets to HALF_OPEN after `reset_timeout` seconds.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, reset_timeout: float = 60.0) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._state = self.CLOSED
        self._failure_count = 0
        self._last_failure_time: float = 0.0

    @property
    def state(self) -> str:
        if self._state == self.OPEN:
            if time.monotonic() - self._last_failure_time >= self.reset_timeout:
                self._state = self.HALF_OPEN
        return self._state

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = self.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()
        if self._failure_count >= self.failure_threshold:
            self._state = self.OPEN
            logger.warning("Circuit breaker OPEN after %d consecutive failures", self._failure_count)

    def allow_request(self) -> bool:
        return self.state in (self.CLOSED, self.HALF_OPEN)


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit breaker is open and rejecting requests."""


async def _retry_with_backoff(
    coro_factory,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    circuit_breaker: CircuitBreaker | None = None,
):
    """Retry an async call with exponential backoff.

    Only rate-limit, connection and 5xx errors are retried; anything else
    is raised immediately.

    Args:
        coro_factory: Callable that returns a new coroutine each time.
        max_retries: Maximum number of retries (0 = no retry).
        base_delay: Initial delay in seconds.
        max_delay: Maximum delay cap.
        circuit_breaker: Optional circuit breaker instance.
    """
    if circuit_breaker and not circuit_breaker.allow_request():
        raise CircuitBreakerOpenError("Circuit breaker is open. Anthropic API calls temporarily disabled.")

    last_exception = None
    for attempt in range(max_retries + 1):
        try:
            result = await coro_factory()
            if circuit_breaker:
                circuit_breaker.record_success()
            return result
        except (anthropic.RateLimitError, anthropic.APIConnectionError, anthropic.InternalServerError) as e:
            last_exception = e
            if circuit_breaker:
                circuit_breaker.record_failure()
            if attempt < max_retries:
                delay = min(base_delay * (2 ** attempt), max_delay)
                logger.warning(
                    "LLM call attempt %d/%d failed (%s), retrying in %.1fs",
                    attempt + 1, max_retries + 1, type(e).__name__, delay,
                )
                await asyncio.sleep(delay)
            else:
                raise
        except Exception:
            if circuit_breaker:
                circuit_breaker.record_failure()
            raise

    raise last_exception  # type: ignore[misc]


def response_text(message: Any) -> str:
    """Concatenate the text blocks of an Anthropic Message."""
    parts = []
    for block in getattr(message, "content", None) or []:
        if getattr(block, "type", None) == "text":
            parts.append(block.text)
    return "".join(parts).strip()


async def run_tool_loop(
    llm: Any,
    messages: list[dict],
    model_tier: ModelTier,
    system: str | list[dict],
    tools: list[dict],
    tool_executor: Any,
    max_iterations: int,
    temperature: float | None = None,
) -> tuple[list[Any], LLMResponse]:
    """Multi-turn tool_use loop over ``llm.complete_raw``.

    Each ``tool_use`` block is executed in order and answered with a
    ``tool_result`` in the next user turn.
    """
    conversation = list(messages)
    responses: list[Any] = []
    total_input = 0
    total_output = 0
    total_cached = 0
    model_version = ""

    for _ in range(max_iterations):
        response, meta = await llm.complete_raw(
            messages=conversation,
            model_tier=model_tier,
            system=system,
            tools=tools,
            temperature=temperature,
        )
        responses.append(response)
        total_input += meta.input_tokens
        total_output += meta.output_tokens
        total_cached += meta.cached_input_tokens
        model_version = meta.model_version

        if response.stop_reason != "tool_use":
            break

        tool_results = []
        for block in response.content:
            if block.type == "tool_use":
                result = await tool_executor(block.name, block.input)
                tool_results.append({
                    "type": "tool_result",
                    "tool_use_id": block.id,
                    "content": str(result),
                })

        conversation.append({"role": "assistant", "content": response.content})
        conversation.append({"role": "user", "content": tool_results})
    else:
        logger.warning("Tool loop stopped after %d iterations", max_iterations)

    aggregated = LLMResponse(
        model_version=model_version,
        input_tokens=total_input,
        output_tokens=total_output,
        cached_input_tokens=total_cached,
        stop_reason=responses[-1].stop_reason if responses else "",
        cost=llm.estimate_cost(model_tier, total_input, total_output, total_cached),
    )
    return responses, aggregated


class LLMLayer:
    """Centralized LLM access for the chat workflows.

    Includes circuit breaker and retry with exponential backoff for resilience.
    """

    def __init__(self) -> None:
        self.raw_client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
        self.client = instructor.from_anthropic(self.raw_client)
        self.circuit_breaker = CircuitBreaker(failure_threshold=5, reset_timeout=60.0)

    async def complete_structured(
        self,
        messages: list[dict],
        model_tier: ModelTier,
        response_model: type[BaseModel],
        system: str | list[dict] | None = None,
        max_tokens: int | None = None,
        max_retries: int | None = None,
        temperature: float | None = None,
    ) -> tuple[BaseModel, LLMResponse]:
        """Structured output with Pydantic validation + auto-retry.

        Args:
            messages: Conversation messages.
            model_tier: "sonnet" or "haiku".
            response_model: Pydantic model class for output validation.
            system: System prompt.
            max_tokens: Max output tokens.
            max_retries: Instructor retry count on validation failure.
            temperature: Sampling temperature (0.0 = deterministic).

        Returns:
            Tuple of (validated Pydantic model, LLMResponse metadata).
        """
        kwargs: dict[str, Any] = {
            "model": MODEL_MAP[model_tier],
            "max_tokens": max_tokens or settings.default_max_tokens,
            "messages": messages,
            "response_model": response_model,
            "max_retries": max_retries or settings.default_max_retries,
            "temperature": temperature if temperature is not None else settings.default_temperature,
        }
        if system:
            kwargs["system"] = system

        result, raw_response = await _retry_with_backoff(
            coro_factory=lambda: self.client.messages.create_with_completion(**kwargs),
            max_retries=3,
            circuit_breaker=self.circuit_breaker,
        )

        meta = self._extract_metadata(raw_response, model_tier)
        logger.debug(
            "complete_structured %s via %s: %d in / %d out tokens",
            response_model.__name__, meta.model_version, meta.input_tokens, meta.output_tokens,
        )
        return result, meta

    async def complete_raw(
        self,
        messages: list[dict],
        model_tier: ModelTier,
        system: str | list[dict] | None = None,
        max_tokens: int | None = None,
        tools: list[dict] | None = None,
        temperature: float | None = None,
    ) -> tuple[anthropic.types.Message, LLMResponse]:
        """Raw completion for free-text or tool-use replies.

        Args:
            tools: Tool definitions for tool_use.

        Returns:
            Tuple of (raw Anthropic Message, LLMResponse metadata).
        """
        kwargs: dict[str, Any] = {
            "model": MODEL_MAP[model_tier],
            "max_tokens": max_tokens or settings.default_max_tokens,
            "messages": messages,
            "temperature": temperature if temperature is not None else settings.default_temperature,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = tools

        response = await _retry_with_backoff(
            coro_factory=lambda: self.raw_client.messages.create(**kwargs),
            max_retries=3,
            circuit_breaker=self.circuit_breaker,
        )
        return response, self._extract_metadata(response, model_tier)

    async def complete_with_tools(
        self,
        messages: list[dict],
        model_tier: ModelTier,
        system: str | list[dict],
        tools: list[dict],
        tool_executor: Any,  # Callable[[str, dict], Awaitable[str]]
        max_iterations: int | None = None,
        temperature: float | None = None,
    ) -> tuple[list[anthropic.types.Message], LLMResponse]:
        """Agentic tool-use loop.

        Runs until the model answers without requesting a tool or
        max_iterations is reached.

        Args:
            tool_executor: Async callable(tool_name, tool_input) -> result.
            max_iterations: Safety limit on model calls.

        Returns:
            Tuple of (list of all model responses, aggregated LLMResponse metadata).
        """
        return await run_tool_loop(
            self, messages, model_tier, system, tools, tool_executor,
            max_iterations=max_iterations or settings.tool_max_iterations,
            temperature=temperature,
        )

    def _extract_metadata(
        self, response: anthropic.types.Message, model_tier: ModelTier
    ) -> LLMResponse:
        """Extract metadata from an Anthropic API response."""
        usage = response.usage
        input_tokens = getattr(usage, "input_tokens", 0)
        output_tokens = getattr(usage, "output_tokens", 0)
        cached = getattr(usage, "cache_read_input_tokens", 0) or 0

        return LLMResponse(
            model_version=response.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cached_input_tokens=cached,
            stop_reason=response.stop_reason or "",
            cost=self.estimate_cost(model_tier, input_tokens, output_tokens, cached),
        )

    def estimate_cost(
        self,
        model_tier: ModelTier,
        input_tokens: int,
        output_tokens: int,
        cached_input_tokens: int = 0,
    ) -> float:
        """Estimate cost for a single API call (USD per million tokens).

        - Sonnet: input $3,  output $15, cache read $0.30
        - Haiku:  input $0.80, output $4, cache read $0.08
        """
        prices = {
            "sonnet": {"input": 3.0, "output": 15.0, "cache_read": 0.30},
            "haiku": {"input": 0.80, "output": 4.0, "cache_read": 0.08},
        }
        p = prices[model_tier]
        non_cached_input = input_tokens - cached_input_tokens
        cost = (
            (non_cached_input / 1_000_000) * p["input"]
            + (cached_input_tokens / 1_000_000) * p["cache_read"]
            + (output_tokens / 1_000_000) * p["output"]
        )
        return round(cost, 6)
