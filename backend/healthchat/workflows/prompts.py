"""Prompt text and message assembly for the chat workflows."""

from __future__ import annotations

SYMPTOM_DETECTION_SYSTEM = (
    "You are a healthcare assistant. Extract the names of symptoms the user says "
    "they are experiencing. Use short lower-case names (e.g. \"headache\", \"fever\"). "
    "Ignore symptoms the user says they do NOT have. Return an empty list if none are mentioned."
)

SYMPTOM_REPLY_SYSTEM = (
    "You are a helpful healthcare assistant. The user has reported symptoms. "
    "Acknowledge the symptoms you've tracked and ask follow-up questions if needed "
    "(severity, location, frequency, triggers, relievers, pattern). "
    "Be empathetic and concise. Do not diagnose."
)

SYMPTOM_TOOLS_GUIDANCE = (
    "Use the tools to save what you learn; details you only mention in text are not saved. "
    "When the user gives severity, location, frequency, triggers, relievers or a pattern for "
    "a tracked symptom, call update_episode with its episode ID. When they say a symptom has "
    "gone away, call resolve_episode. When they deny a symptom, call record_negative_finding. "
    "After the tools, answer the user in plain text."
)

ASSESSMENT_EXTRACTION_SYSTEM = (
    "You are a healthcare assistant drafting a preliminary health assessment from the "
    "symptoms a user has reported. Provide the most likely hypothesis, a confidence "
    "between 0 and 1, plausible differentials, brief reasoning, and one recommended "
    "action: self-care, see-gp, urgent-care or emergency."
)

ASSESSMENT_REPLY_SYSTEM = (
    "You are a helpful healthcare assistant. Explain the assessment below to the user "
    "in plain, calm language. State the recommended next step clearly and remind them "
    "this is not a medical diagnosis."
)

GENERAL_REPLY_SYSTEM = (
    "You are a helpful healthcare assistant tracking a user's symptoms over time. "
    "Answer the user's message concisely and empathetically."
)


def with_symptom_context(system: str, symptom_names: list[str], label: str = "Current active symptoms") -> str:
    if not symptom_names:
        return system
    return f"{system}\n\n{label}: {', '.join(symptom_names)}"


def build_messages(message: str, history: list[dict] | None = None) -> list[dict]:
    """Prior turns followed by the current user message.

    Leading assistant messages are dropped so the list starts with a user turn.
    """
    messages = [
        {"role": h["role"], "content": h["content"]}
        for h in (history or [])
        if h.get("role") in ("user", "assistant") and h.get("content")
    ]
    while messages and messages[0]["role"] != "user":
        messages.pop(0)
    if messages and messages[-1]["role"] == "user":
        messages.append({"role": "assistant", "content": "(no reply recorded)"})
    messages.append({"role": "user", "content": message})
    return messages


def with_episode_context(system: str, episodes: list[tuple[str, str, str]]) -> str:
    """Append one line per (symptom name, episode id, stage) the model may update."""
    if not episodes:
        return system
    lines = "\n".join(f"- {name}: episode {episode_id} (stage: {stage})" for name, episode_id, stage in episodes)
    return f"{system}\n\nActive episodes:\n{lines}"
