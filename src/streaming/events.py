"""Typed orchestrator events."""

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Event tags on a run's stream."""

    PROGRESS = "progress"
    AGENTS = "agents"
    AGENT_UPDATE = "agentUpdate"
    PLAN = "plan"
    SOURCES = "sources"
    RESPONSE = "response"
    FOLLOW_UPS = "followUps"
    ERROR = "error"
    DONE = "done"
    END = "end"


class OrchestratorEvent(BaseModel):
    """One record on the event stream, serialized as ``{type, data, metadata?}``."""

    type: EventType
    data: Any = None
    metadata: dict[str, Any] | None = Field(default=None)

    def to_payload(self) -> dict[str, Any]:
        payload = {"type": self.type.value, "data": self.data}
        if self.metadata is not None:
            payload["metadata"] = self.metadata
        return payload

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_payload(), default=str)}\n\n"
