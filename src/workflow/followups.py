"""Follow-up question and related-query generation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog
from langchain_core.messages import HumanMessage

from src.workflow.prompts import FOLLOW_UP_PROMPT

logger = structlog.get_logger(__name__)

DEFAULT_FOLLOW_UP = "What would you like to know more about?"
DEFAULT_RELATED = [
    "Tell me more about this topic",
    "What are the key points?",
    "Are there any recent developments?",
    "How does this compare to alternatives?",
]
MAX_RELATED = 4


@dataclass
class FollowUps:
    follow_up: str = DEFAULT_FOLLOW_UP
    related: list[str] = field(default_factory=lambda: list(DEFAULT_RELATED))

    def to_dict(self) -> dict[str, Any]:
        return {"followUp": self.follow_up, "related": self.related}


def parse_follow_ups(text: str) -> FollowUps:
    """Parse ``FOLLOW_UP:`` / ``RELATED:`` output; missing parts get defaults."""
    follow_up = ""
    related: list[str] = []
    in_related = False

    for raw in (text or "").splitlines():
        line = raw.strip()
        if line.upper().startswith("FOLLOW_UP:"):
            follow_up = line[len("FOLLOW_UP:"):].strip()
            in_related = False
        elif line.upper().startswith("RELATED:"):
            in_related = True
            inline = line[len("RELATED:"):].strip()
            if inline:
                related.append(inline.lstrip("- ").strip())
        elif in_related and line.startswith("-"):
            item = line.lstrip("-").strip()
            if item:
                related.append(item)

    return FollowUps(
        follow_up=follow_up or DEFAULT_FOLLOW_UP,
        related=related[:MAX_RELATED] or list(DEFAULT_RELATED),
    )


class FollowUpGenerator:
    """Produce one follow-up question and a few related queries from the final answer."""

    def __init__(self, llm: Any, max_chars: int = 1000):
        self.llm = llm
        self.max_chars = max_chars

    async def generate(self, query: str, answer: str, context: str = "") -> FollowUps:
        """Never raises on model failure; returns the defaults instead."""
        prompt = FOLLOW_UP_PROMPT.format(
            query=query,
            answer=(answer or "")[: self.max_chars],
            context=(context or "")[: self.max_chars],
        )
        try:
            response = await self.llm.ainvoke([HumanMessage(content=prompt)])
        except Exception as e:
            logger.warning("followup_generation_failed", error=str(e))
            return FollowUps()

        follow_ups = parse_follow_ups(str(getattr(response, "content", response) or ""))
        logger.debug("followups_generated", related=len(follow_ups.related))
        return follow_ups
