"""Tool definitions and dispatcher for the symptom follow-up tool loop.

The reply step of a symptom-tracking turn runs an Anthropic tool-use loop
(``LLMLayer.complete_with_tools``). The model can refine the turn's episodes
through the definitions below; ``ToolExecutor`` routes each ``tool_use``
request to SymptomTrackerTools / AssessmentTools.

Usage:
    executor = ToolExecutor(context, connection, symptom_tools, assessment_tools)
    responses, meta = await llm.complete_with_tools(
        messages=..., model_tier="sonnet", system=...,
        tools=executor.definitions(), tool_executor=executor,
    )

Every handler returns a JSON string. Errors come back as ``{"error": ...}``
so the model can recover; the executor never raises.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from healthchat.chat.connection import ClientConnection
from healthchat.chat.context import ConversationContext
from healthchat.models.health import RECOMMENDED_ACTIONS
from healthchat.tools.assessment import AssessmentTools
from healthchat.tools.results import ToolResult
from healthchat.tools.symptom_tracker import SymptomTrackerTools

logger = logging.getLogger(__name__)

UPDATE_EPISODE_TOOL: dict = {
    "name": "update_episode",
    "description": (
        "Save details the user gave about a tracked symptom episode. Call this every time "
        "you learn severity, location, frequency, triggers, relievers or pattern. "
        "Only the fields you pass are changed."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "episode_id": {"type": "string", "description": "ID of the episode to update"},
            "severity": {"type": "integer", "minimum": 1, "maximum": 10, "description": "Severity 1-10"},
            "location": {"type": "string", "description": "Where the symptom occurs"},
            "frequency": {
                "type": "string",
                "enum": ["constant", "intermittent", "occasional"],
            },
            "triggers": {"type": "array", "items": {"type": "string"}},
            "relievers": {"type": "array", "items": {"type": "string"}},
            "pattern": {"type": "string", "description": "e.g. 'worse in the morning'"},
            "notes": {"type": "string", "description": "Free-text note for the episode timeline"},
        },
        "required": ["episode_id"],
    },
}

LINK_EPISODE_TOOL: dict = {
    "name": "link_episode_to_existing",
    "description": "Mark an episode as related to an earlier episode of the same user.",
    "input_schema": {
        "type": "object",
        "properties": {
            "episode_id": {"type": "string", "description": "ID of the episode to link"},
            "related_episode_id": {"type": "string", "description": "ID of the related episode"},
        },
        "required": ["episode_id", "related_episode_id"],
    },
}

RESOLVE_EPISODE_TOOL: dict = {
    "name": "resolve_episode",
    "description": "Mark an episode as resolved when the user says the symptom has gone away.",
    "input_schema": {
        "type": "object",
        "properties": {
            "episode_id": {"type": "string", "description": "ID of the episode to resolve"},
        },
        "required": ["episode_id"],
    },
}

RECORD_NEGATIVE_FINDING_TOOL: dict = {
    "name": "record_negative_finding",
    "description": (
        "Record that the user explicitly does NOT have a symptom (e.g. 'no fever', "
        "'I don't feel sick'). Helps rule out conditions."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "symptom_name": {"type": "string", "description": "The symptom the user does not have"},
            "episode_id": {"type": "string", "description": "Optional related episode ID"},
        },
        "required": ["symptom_name"],
    },
}

GET_ACTIVE_EPISODES_TOOL: dict = {
    "name": "get_active_episodes",
    "description": "List the user's active symptom episodes with their IDs, stages and details.",
    "input_schema": {"type": "object", "properties": {}},
}

GET_SYMPTOM_HISTORY_TOOL: dict = {
    "name": "get_symptom_history",
    "description": "List past episodes of one symptom, newest first, to understand patterns over time.",
    "input_schema": {
        "type": "object",
        "properties": {
            "symptom_name": {"type": "string", "description": "The symptom to get history for"},
        },
        "required": ["symptom_name"],
    },
}

UPDATE_ASSESSMENT_TOOL: dict = {
    "name": "update_assessment",
    "description": (
        "Refine an assessment created earlier in this conversation when new information "
        "changes the hypothesis, confidence or recommendation. A supplied episode_weights "
        "map replaces all existing episode links."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "assessment_id": {"type": "string", "description": "ID of the assessment to update"},
            "hypothesis": {"type": "string"},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
            "differentials": {"type": "array", "items": {"type": "string"}},
            "reasoning": {"type": "string"},
            "recommended_action": {"type": "string", "enum": list(RECOMMENDED_ACTIONS)},
            "episode_weights": {
                "type": "object",
                "additionalProperties": {"type": "number"},
                "description": "Episode ID to weight (0-1)",
            },
            "negative_finding_ids": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["assessment_id"],
    },
}

SYMPTOM_TOOLS: list[dict] = [
    UPDATE_EPISODE_TOOL,
    LINK_EPISODE_TOOL,
    RESOLVE_EPISODE_TOOL,
    RECORD_NEGATIVE_FINDING_TOOL,
    GET_ACTIVE_EPISODES_TOOL,
    GET_SYMPTOM_HISTORY_TOOL,
]


def _pick(tool_input: dict, *keys: str) -> dict[str, Any]:
    return {k: tool_input[k] for k in keys if tool_input.get(k) is not None}


class ToolExecutor:
    """Async callable(tool_name, tool_input) -> JSON string, bound to one turn."""

    def __init__(
        self,
        context: ConversationContext,
        connection: ClientConnection,
        symptom_tools: SymptomTrackerTools,
        assessment_tools: AssessmentTools | None = None,
    ) -> None:
        self.context = context
        self.connection = connection
        self.symptom_tools = symptom_tools
        self.assessment_tools = assessment_tools
        self.calls: list[str] = []

    def definitions(self) -> list[dict]:
        tools = list(SYMPTOM_TOOLS)
        if self.assessment_tools is not None:
            tools.append(UPDATE_ASSESSMENT_TOOL)
        return tools

    async def __call__(self, tool_name: str, tool_input: dict) -> str:
        handlers = {
            "update_episode": self._update_episode,
            "link_episode_to_existing": self._link_episode,
            "resolve_episode": self._resolve_episode,
            "record_negative_finding": self._record_negative_finding,
            "get_active_episodes": self._get_active_episodes,
            "get_symptom_history": self._get_symptom_history,
        }
        if self.assessment_tools is not None:
            handlers["update_assessment"] = self._update_assessment

        handler = handlers.get(tool_name)
        if handler is None:
            return json.dumps({"error": f"Unknown tool: {tool_name}"})

        self.calls.append(tool_name)
        try:
            result = await handler(tool_input or {})
        except Exception as e:
            logger.warning("Tool %s failed: %s", tool_name, e)
            return json.dumps({"error": str(e), "tool": tool_name})
        if not result.success:
            logger.info("Tool %s returned failure: %s", tool_name, result.error_message)
        return result.model_dump_json(exclude_none=True)

    async def _update_episode(self, tool_input: dict) -> ToolResult:
        return await self.symptom_tools.update_episode(
            self.context,
            self.connection,
            str(tool_input["episode_id"]),
            **_pick(tool_input, "severity", "location", "frequency", "triggers", "relievers", "pattern", "notes"),
        )

    async def _link_episode(self, tool_input: dict) -> ToolResult:
        return await self.symptom_tools.link_episode_to_existing(
            self.context,
            self.connection,
            str(tool_input["episode_id"]),
            str(tool_input["related_episode_id"]),
        )

    async def _resolve_episode(self, tool_input: dict) -> ToolResult:
        return await self.symptom_tools.resolve_episode(
            self.context, self.connection, str(tool_input["episode_id"]),
        )

    async def _record_negative_finding(self, tool_input: dict) -> ToolResult:
        return await self.symptom_tools.record_negative_finding(
            self.context,
            self.connection,
            str(tool_input["symptom_name"]).strip().lower(),
            episode_id=tool_input.get("episode_id"),
        )

    async def _get_active_episodes(self, tool_input: dict) -> ToolResult:
        return self.symptom_tools.get_active_episodes(self.context)

    async def _get_symptom_history(self, tool_input: dict) -> ToolResult:
        return await self.symptom_tools.get_symptom_history(
            self.context, str(tool_input["symptom_name"]).strip().lower(),
        )

    async def _update_assessment(self, tool_input: dict) -> ToolResult:
        return await self.assessment_tools.update_assessment(
            self.context,
            self.connection,
            str(tool_input["assessment_id"]),
            **_pick(
                tool_input,
                "hypothesis", "confidence", "differentials", "reasoning",
                "recommended_action", "negative_finding_ids", "episode_weights",
            ),
        )
