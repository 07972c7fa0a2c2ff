"""Single-writer event channel for orchestration runs."""

import asyncio
from typing import Any, AsyncIterator

import structlog

from src.streaming.events import EventType, OrchestratorEvent

logger = structlog.get_logger(__name__)


class StreamingGenerator:
    """Base streaming generator with async queue."""

    def __init__(self):
        self.queue: asyncio.Queue[Any | None] = asyncio.Queue()
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def add(self, data: Any) -> bool:
        """Add data to stream; returns False once the stream is finished."""
        if self._finished:
            return False
        self.queue.put_nowait(data)
        return True

    def finish(self) -> None:
        """Signal stream completion."""
        if not self._finished:
            self._finished = True
            self.queue.put_nowait(None)

    async def stream(self):
        """Async generator for streaming data."""
        while True:
            data = await self.queue.get()
            if data is None:
                break
            yield data


class EventStream(StreamingGenerator):
    """Ordered stream of OrchestratorEvent records, closed by exactly one ``end``."""

    def __init__(self, run_id: str | None = None):
        super().__init__()
        self.run_id = run_id
        self.history: list[OrchestratorEvent] = []
        self._last_progress = 0

    def emit(self, event_type: EventType, data: Any = None, metadata: dict[str, Any] | None = None) -> bool:
        event = OrchestratorEvent(type=event_type, data=data, metadata=metadata)
        if not self.add(event):
            logger.warning("event_after_end_dropped", run_id=self.run_id, type=event_type.value)
            return False
        self.history.append(event)
        return True

    @property
    def last_progress(self) -> int:
        return self._last_progress

    def emit_progress(self, step: str, message: str, details: str = "", progress: int | None = None) -> None:
        """Progress never decreases within a run."""
        value = self._last_progress if progress is None else max(self._last_progress, min(int(progress), 100))
        self._last_progress = value
        self.emit(
            EventType.PROGRESS,
            {"step": step, "message": message, "details": details, "progress": value},
        )

    def emit_plan(self, plan: dict[str, Any]) -> None:
        self.emit(EventType.PLAN, plan)

    def emit_agents(self, agents: list[dict[str, Any]]) -> None:
        self.emit(EventType.AGENTS, agents)

    def emit_agent_update(self, agent: dict[str, Any]) -> None:
        self.emit(EventType.AGENT_UPDATE, agent)

    def emit_sources(self, sources: list[dict[str, Any]], total_found: int, max_displayed: int, mode: str) -> None:
        self.emit(
            EventType.SOURCES,
            sources,
            metadata={"totalFound": total_found, "maxDisplayed": max_displayed, "mode": mode},
        )

    def emit_response(self, text: str) -> None:
        self.emit(EventType.RESPONSE, text)

    def emit_follow_ups(self, follow_up: str, related: list[str]) -> None:
        self.emit(EventType.FOLLOW_UPS, {"followUp": follow_up, "related": related})

    def emit_error(self, message: str, kind: str | None = None) -> None:
        self.emit(EventType.ERROR, message, metadata={"kind": kind} if kind else None)

    def emit_done(self, summary: dict[str, Any]) -> None:
        self.emit(EventType.DONE, summary)

    def close(self) -> None:
        """Emit the terminal ``end`` event and finish the stream. Idempotent."""
        if self.finished:
            return
        self.emit(EventType.END)
        self.finish()

    async def events(self) -> AsyncIterator[OrchestratorEvent]:
        async for event in self.stream():
            yield event
