"""Mock LLM Layer for testing without API calls.

Returns (result, LLMResponse) tuples matching the real LLMLayer. Set
``fail_with`` to make every call raise, which drives the workflows down
their deterministic fallback paths.

Tool-use calls read a scripted list under ``"<tier>:tools"``, one entry per
model call; once it runs out they answer with the ``"<tier>:raw"`` entry.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from healthchat.config import ModelTier
from healthchat.llm.layer import LLMResponse, run_tool_loop


class MockLLMLayer:
    """Returns predefined responses for testing.

    Usage:
        mock = MockLLMLayer({
            "haiku:DetectedSymptoms": DetectedSymptoms(symptoms=["headache"]),
            "sonnet:raw": "I've noted your headache.",
            "sonnet:tools": [mock_tool_use(("update_episode", {"episode_id": "...", "severity": 7}))],
        })
        result, meta = await mock.complete_structured(
            messages=[...],
            model_tier="haiku",
            response_model=DetectedSymptoms,
        )
    """

    def __init__(
        self,
        responses: dict[str, Any] | None = None,
        fail_with: Exception | None = None,
    ) -> None:
        self.responses = responses or {}
        self.fail_with = fail_with
        self.call_log: list[dict] = []

    def _mock_meta(self, model_tier: ModelTier) -> LLMResponse:
        return LLMResponse(
            model_version=f"mock-{model_tier}",
            input_tokens=100,
            output_tokens=50,
            stop_reason="end_turn",
            cost=0.0,
        )

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
        """Return predefined response or construct a default instance."""
        key = f"{model_tier}:{response_model.__name__}"
        self.call_log.append({
            "method": "complete_structured",
            "model_tier": model_tier,
            "response_model": response_model.__name__,
            "messages": messages,
            "system": system,
        })
        if self.fail_with is not None:
            raise self.fail_with
        result = self.responses.get(key)
        if result is None:
            result = _build_default(response_model)
        return result, self._mock_meta(model_tier)

    async def complete_raw(
        self,
        messages: list[dict],
        model_tier: ModelTier,
        system: str | list[dict] | None = None,
        max_tokens: int | None = None,
        tools: list[dict] | None = None,
        temperature: float | None = None,
    ) -> tuple[Any, LLMResponse]:
        """Return a mock raw response. String entries are wrapped as a text Message."""
        self.call_log.append({
            "method": "complete_raw",
            "model_tier": model_tier,
            "messages": list(messages),
            "system": system,
            "tools": [t["name"] for t in tools or []],
        })
        if self.fail_with is not None:
            raise self.fail_with
        scripted = self.responses.get(f"{model_tier}:tools") if tools else None
        if scripted:
            result = scripted.pop(0)
        else:
            result = self.responses.get(f"{model_tier}:raw", "Mock response")
        if isinstance(result, str):
            result = _MockMessage(text=result)
        return result, self._mock_meta(model_tier)

    async def complete_with_tools(
        self,
        messages: list[dict],
        model_tier: ModelTier,
        system: str | list[dict],
        tools: list[dict],
        tool_executor: Any,
        max_iterations: int | None = None,
        temperature: float | None = None,
    ) -> tuple[list[Any], LLMResponse]:
        """Same loop as LLMLayer, driven by the scripted responses."""
        return await run_tool_loop(
            self, messages, model_tier, system, tools, tool_executor,
            max_iterations=max_iterations or 5,
            temperature=temperature,
        )

    def calls_for(self, response_model_name: str) -> list[dict]:
        return [c for c in self.call_log if c.get("response_model") == response_model_name]

    def estimate_cost(self, model_tier: ModelTier, input_tokens: int,
                      output_tokens: int, cached_input_tokens: int = 0) -> float:
        return 0.0


def _build_default(model: type[BaseModel]) -> BaseModel:
    """Build a default instance of a Pydantic model, filling required fields."""
    try:
        return model()
    except Exception:
        pass
    defaults: dict[str, Any] = {}
    for name, field_info in model.model_fields.items():
        if not field_info.is_required():
            continue
        annotation = field_info.annotation
        origin = getattr(annotation, "__origin__", None)
        if annotation is int:
            defaults[name] = 0
        elif annotation is float:
            defaults[name] = 0.0
        elif annotation is bool:
            defaults[name] = False
        elif annotation is list or origin is list:
            defaults[name] = []
        elif annotation is dict or origin is dict:
            defaults[name] = {}
        else:
            defaults[name] = ""
    try:
        return model(**defaults)
    except Exception:
        return model.model_construct(**defaults)


def mock_tool_use(*calls: tuple[str, dict], text: str = "") -> "_MockMessage":
    """A Message asking for one tool_use per (name, input) pair."""
    message = _MockMessage(text=text)
    message.content = [_MockTextBlock(text)] if text else []
    for i, (name, tool_input) in enumerate(calls):
        message.content.append(_MockToolUseBlock(f"toolu_mock_{i}", name, tool_input))
    message.stop_reason = "tool_use"
    return message


class _MockMessage:
    """Minimal mock of anthropic.types.Message for testing."""

    def __init__(self, text: str = "Mock response"):
        self.content: list[Any] = [_MockTextBlock(text)]
        self.stop_reason = "end_turn"
        self.model = "mock-model"
        self.usage = _MockUsage()


class _MockTextBlock:
    def __init__(self, text: str):
        self.type = "text"
        self.text = text


class _MockToolUseBlock:
    def __init__(self, block_id: str, name: str, tool_input: dict):
        self.type = "tool_use"
        self.id = block_id
        self.name = name
        self.input = tool_input


class _MockUsage:
    def __init__(self):
        self.input_tokens = 100
        self.output_tokens = 50
        self.cache_read_input_tokens = 0
