"""Chat model wrapper that routes calls through the llm breaker and api retry."""

from __future__ import annotations

from typing import Any, Sequence

import structlog
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage

from src.resilience.circuit_breaker import CircuitBreaker
from src.resilience.errors import ErrorTracker, with_error_handling
from src.resilience.retry import RetryHandler

logger = structlog.get_logger(__name__)


class ResilientChatModel:
    """Thin facade over a BaseChatModel; exposes ``ainvoke`` and ``complete``."""

    def __init__(
        self,
        model: BaseChatModel,
        tracker: ErrorTracker,
        breaker: CircuitBreaker | None = None,
        retry: RetryHandler | None = None,
        context: str = "llm",
    ):
        self.model = model
        self.tracker = tracker
        self.breaker = breaker
        self.retry = retry
        self.context = context

    async def ainvoke(self, messages: Sequence[BaseMessage], **kwargs: Any) -> Any:
        async def call():
            return await self.model.ainvoke(list(messages), **kwargs)

        return await with_error_handling(
            call,
            context=self.context,
            tracker=self.tracker,
            breaker=self.breaker,
            retry=self.retry,
        )

    async def complete(self, messages: Sequence[BaseMessage], **kwargs: Any) -> str:
        """Invoke and return the response text."""
        response = await self.ainvoke(messages, **kwargs)
        content = getattr(response, "content", response)
        if isinstance(content, list):
            # Anthropic-style content blocks
            content = "".join(
                block.get("text", "") if isinstance(block, dict) else str(block) for block in content
            )
        return str(content or "")
