"""Run state for the search orchestrator.

Holds the immutable request, the plan with its steps, retrieval agents and the
per-run working set handed between graph nodes.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, TypedDict

from pydantic import BaseModel, ConfigDict, Field

from src.config.modes import ModeConfig, SearchMode
from src.resilience.errors import AnswerEngineError
from src.search.fusion import ContextChunk
from src.search.models import Document, RerankedDocument

if TYPE_CHECKING:
    from src.streaming.sse import EventStream
    from src.workflow.cancellation import RunGuard


class ChatTurn(BaseModel):
    """One prior conversation turn."""

    model_config = ConfigDict(frozen=True)

    role: str
    content: str


class SearchRequest(BaseModel):
    """Input to one orchestration run; immutable for the run's lifetime."""

    model_config = ConfigDict(frozen=True)

    query: str = Field(..., min_length=1)
    history: tuple[ChatTurn, ...] = ()
    mode: SearchMode = SearchMode.QUICK
    file_ids: tuple[str, ...] = ()
    system_instructions: str | None = None
    user_tier: str | None = None


class InvalidTransitionError(AnswerEngineError):
    """A step or agent status was asked to move backwards or out of a terminal state."""


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.FAILED)


AgentStatus = StepStatus

_ALLOWED = {
    StepStatus.PENDING: {StepStatus.RUNNING, StepStatus.FAILED},
    StepStatus.RUNNING: {StepStatus.COMPLETED, StepStatus.FAILED},
    StepStatus.COMPLETED: set(),
    StepStatus.FAILED: set(),
}


def _check_transition(owner: str, current: StepStatus, target: StepStatus) -> None:
    if target not in _ALLOWED[current]:
        raise InvalidTransitionError(f"{owner}: cannot move from {current.value} to {target.value}")


class StepKind(str, Enum):
    """What a plan step does; assigned by the plan parser."""

    QUERY_ANALYSIS = "query_analysis"
    WEB_SEARCH = "web_search"
    DOCUMENT_RETRIEVAL = "document_retrieval"
    RERANKING = "reranking"
    CONTENT_GENERATION = "content_generation"
    GENERIC = "generic"


@dataclass
class SearchStep:
    name: str
    kind: StepKind
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: StepStatus = StepStatus.PENDING
    result: Any = None
    error: str | None = None
    started_at: float | None = None
    completed_at: float | None = None

    def start(self) -> None:
        _check_transition(f"step '{self.name}'", self.status, StepStatus.RUNNING)
        self.status = StepStatus.RUNNING
        self.started_at = time.time()

    def complete(self, result: Any = None) -> None:
        _check_transition(f"step '{self.name}'", self.status, StepStatus.COMPLETED)
        self.status = StepStatus.COMPLETED
        self.result = result
        self.completed_at = time.time()

    def fail(self, error: str) -> None:
        _check_transition(f"step '{self.name}'", self.status, StepStatus.FAILED)
        self.status = StepStatus.FAILED
        self.error = error
        self.completed_at = time.time()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
        }


@dataclass
class SearchPlan:
    query: str
    steps: list[SearchStep]
    estimated_duration: float
    priority: str = "normal"

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "steps": [step.to_dict() for step in self.steps],
            "estimatedDuration": self.estimated_duration,
            "priority": self.priority,
        }

    @property
    def completed_steps(self) -> int:
        return sum(1 for step in self.steps if step.status == StepStatus.COMPLETED)


@dataclass
class SearchAgent:
    """One concurrent retrieval unit bound to a single query."""

    id: str
    query: str
    status: AgentStatus = AgentStatus.PENDING
    results: int = 0
    error: str | None = None

    def start(self) -> None:
        _check_transition(f"agent '{self.id}'", self.status, AgentStatus.RUNNING)
        self.status = AgentStatus.RUNNING

    def complete(self, results: int) -> None:
        _check_transition(f"agent '{self.id}'", self.status, AgentStatus.COMPLETED)
        self.status = AgentStatus.COMPLETED
        self.results = results

    def fail(self, error: str) -> None:
        _check_transition(f"agent '{self.id}'", self.status, AgentStatus.FAILED)
        self.status = AgentStatus.FAILED
        self.error = error

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "status": self.status.value, "query": self.query, "results": self.results}


@dataclass
class RunContext:
    """Mutable working set of one run. Only the orchestrator's own task writes to it."""

    request: SearchRequest
    mode_config: ModeConfig
    stream: "EventStream"
    guard: "RunGuard"
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: float = field(default_factory=time.monotonic)

    # query analysis
    search_query: str = ""
    queries: list[str] = field(default_factory=list)
    validation_queries: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    skip_search: bool = False

    # retrieval
    agents: list[SearchAgent] = field(default_factory=list)
    documents: list[Document] = field(default_factory=list)
    file_documents: list[Document] = field(default_factory=list)
    file_embeddings: list[list[float]] | None = None
    attachments_loaded: bool = False

    # ranking and synthesis
    sources: list[RerankedDocument] | None = None
    chunks: list[ContextChunk] = field(default_factory=list)
    context: str = ""
    answer: str = ""

    @property
    def total_found(self) -> int:
        return len(self.documents) + len(self.file_documents)

    def elapsed(self) -> float:
        return time.monotonic() - self.started_at


class OrchestratorState(TypedDict):
    """LangGraph state for one run."""

    context: RunContext
    plan: SearchPlan | None
    step_index: int
