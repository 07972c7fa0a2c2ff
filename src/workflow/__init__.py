"""Search orchestration with LangGraph."""

from src.workflow.cancellation import CancellationToken, RunDeadline, RunGuard
from src.workflow.factory import OrchestratorFactory
from src.workflow.orchestrator import SearchOrchestrator
from src.workflow.pro_search import ProSearchOrchestrator
from src.workflow.quick_search import QuickSearchOrchestrator
from src.workflow.state import (
    ChatTurn,
    SearchAgent,
    SearchPlan,
    SearchRequest,
    SearchStep,
    StepKind,
    StepStatus,
)
from src.workflow.ultra_search import UltraSearchOrchestrator

__all__ = [
    # Orchestrators
    "SearchOrchestrator",
    "QuickSearchOrchestrator",
    "ProSearchOrchestrator",
    "UltraSearchOrchestrator",
    # Factory
    "OrchestratorFactory",
    # Cancellation
    "CancellationToken",
    "RunDeadline",
    "RunGuard",
    # State
    "ChatTurn",
    "SearchRequest",
    "SearchPlan",
    "SearchStep",
    "SearchAgent",
    "StepKind",
    "StepStatus",
]
