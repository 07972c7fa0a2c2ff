"""Mock chat model for offline runs."""

from __future__ import annotations

import re
from typing import Any, List, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.outputs import ChatGeneration, ChatResult

_GREETINGS = {"hi", "hello", "hey", "how are you", "good morning", "good evening", "thanks", "thank you"}
_URL = re.compile(r"https?://\S+")


class MockChatModel(BaseChatModel):
    """Minimal chat model that returns deterministic responses for each prompt kind."""

    model_name: str = "mock"

    @property
    def _llm_type(self) -> str:
        return "mock-chat"

    def _generate(
        self,
        messages: List[BaseMessage],
        stop: Optional[List[str]] = None,
        run_manager: Any = None,
        **kwargs: Any,
    ) -> ChatResult:
        content = self._compose_response(messages)
        message = AIMessage(content=content)
        return ChatResult(generations=[ChatGeneration(message=message)])

    async def _agenerate(
        self,
        messages: List[BaseMessage],
        stop: Optional[List[str]] = None,
        run_manager: Any = None,
        **kwargs: Any,
    ) -> ChatResult:
        return self._generate(messages, stop=stop, run_manager=run_manager, **kwargs)

    def _compose_response(self, messages: List[BaseMessage]) -> str:
        if not messages:
            return "Mock response."

        last_text = str(getattr(messages[-1], "content", ""))
        system_text = " ".join(str(getattr(m, "content", "")) for m in messages[:-1])
        lower = last_text.lower()

        if "search execution plan" in lower:
            return "\n".join(
                [
                    "steps: Query Analysis and Intent Understanding",
                    "steps: Web Search Execution",
                    "steps: Document Retrieval and Processing",
                    "steps: Content Relevance Reranking",
                    "steps: Final Response Generation",
                ]
            )

        if "rephrased question:" in lower:
            return self._rephrase(self._field(last_text, "Follow up question:"))

        if "research taxonomy" in lower:
            topic = self._field(last_text, "Question:")
            angles = [
                "background", "history", "current state", "expert views", "comparison",
                "technical details", "case studies", "future outlook", "criticism", "practical uses",
            ]
            return "\n".join(f"{topic} {angle}" for angle in angles)

        if "topically diverse search queries" in lower:
            topic = self._field(last_text, "Question:")
            return "\n".join(
                [f"{topic} latest developments", f"{topic} expert analysis", f"{topic} comparison", f"{topic} practical applications", f"{topic} overview"]
            )

        if "validation search queries" in lower:
            topic = self._field(last_text, "Question:")
            return "\n".join([f"{topic} evidence", f"{topic} criticism", f"{topic} recent data"])

        if "follow_up:" in lower:
            topic = self._field(last_text, "Question:")
            return (
                f"FOLLOW_UP: What are the latest developments about {topic}?\n"
                "RELATED:\n"
                f"- {topic} history\n"
                f"- {topic} examples\n"
                f"- {topic} alternatives\n"
                f"- {topic} future"
            )

        if "merged briefing" in lower:
            excerpts = re.findall(r"^(\[\d+\]) .*\n(.+)", last_text, re.MULTILINE)
            return "\n\n".join(f"{content} {marker}" for marker, content in excerpts) or "Merged mock context."

        if "describe what the search step" in lower:
            return "This step prepares information for the final answer."

        if "needs no web search" in system_text.lower():
            return "Hello! How can I help you today?"

        if "context:" in lower:
            query = self._field(last_text, "Question:")
            return f"Mock answer about {query} based on the provided sources [1]."

        return "Mock response based on provided context."

    def _field(self, text: str, label: str) -> str:
        for line in reversed(text.splitlines()):
            if line.strip().startswith(label):
                return line.strip()[len(label):].strip() or "the topic"
        return "the topic"

    def _rephrase(self, question: str) -> str:
        links = _URL.findall(question)
        normalized = question.lower().strip(" ?!.,")
        if not links and normalized in _GREETINGS:
            return "<question>\nnot_needed\n</question>"
        if links:
            cleaned = _URL.sub("", question).strip() or "summarize"
            if "summar" in cleaned.lower():
                cleaned = "summarize"
            return f"<question>\n{cleaned}\n</question>\n<links>\n" + "\n".join(links) + "\n</links>"
        return f"<question>\n{question}\n</question>"
