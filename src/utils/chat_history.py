"""Helpers for formatting chat history."""

from __future__ import annotations

from typing import Any, Iterable


def _field(turn: Any, name: str) -> str:
    if isinstance(turn, dict):
        return str(turn.get(name) or "").strip()
    return str(getattr(turn, name, "") or "").strip()


def format_chat_history(turns: Iterable[Any] | None, limit: int) -> str:
    """Render the last N prior turns (``role``/``content`` pairs) for prompts."""
    if not turns or limit <= 0:
        return "Chat history: None."

    cleaned = []
    for turn in turns:
        role = _field(turn, "role")
        content = _field(turn, "content")
        if not content or role.lower() == "system":
            continue
        cleaned.append((role, content))

    if not cleaned:
        return "Chat history: None."

    lines = ["Chat history:"]
    for role, content in cleaned[-limit:]:
        lines.append(f"- {role}: {content}")
    return "\n".join(lines)
