"""Streaming module for orchestrator events."""

from src.streaming.events import EventType, OrchestratorEvent
from src.streaming.sse import EventStream, StreamingGenerator

__all__ = [
    "StreamingGenerator",
    "EventStream",
    "EventType",
    "OrchestratorEvent",
]
