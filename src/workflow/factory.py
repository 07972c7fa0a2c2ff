"""Orchestrator factory for creating mode-specific search orchestrators."""

from typing import Any

import structlog

from src.config.modes import MODE_CONFIGS, ModeConfig, SearchMode
from src.config.modes import get_mode_config as _mode_config
from src.resilience.services import ServiceContainer
from src.workflow.orchestrator import SearchOrchestrator
from src.workflow.pro_search import ProSearchOrchestrator
from src.workflow.quick_search import QuickSearchOrchestrator
from src.workflow.ultra_search import UltraSearchOrchestrator

logger = structlog.get_logger(__name__)

_ORCHESTRATORS: dict[SearchMode, type[SearchOrchestrator]] = {
    SearchMode.QUICK: QuickSearchOrchestrator,
    SearchMode.PRO: ProSearchOrchestrator,
    SearchMode.ULTRA: UltraSearchOrchestrator,
}

_DESCRIPTIONS = {
    SearchMode.QUICK: "Single rephrased query, fastest answers",
    SearchMode.PRO: "4-6 expanded queries searched in parallel",
    SearchMode.ULTRA: "8-12 taxonomy queries in batches with cross-validation",
}


class OrchestratorFactory:
    """Factory for creating search orchestrators based on mode."""

    def __init__(self, services: ServiceContainer):
        """
        Initialize orchestrator factory.

        Args:
            services: Process-wide services shared by all orchestrators
        """
        self.services = services

    def create(self, mode: SearchMode | str, **overrides: Any) -> SearchOrchestrator:
        """
        Create the orchestrator for a mode.

        Args:
            mode: Search mode or one of its aliases
            **overrides: ModeConfig field overrides

        Returns:
            Orchestrator instance for the mode
        """
        if not isinstance(mode, SearchMode):
            mode = SearchMode.from_string(mode)
        logger.info("Creating orchestrator", mode=mode.value)
        return _ORCHESTRATORS[mode](self.services, _mode_config(mode, **overrides))

    def get_available_modes(self) -> list[dict[str, Any]]:
        return [
            {"mode": mode.value, "description": _DESCRIPTIONS[mode], "maxSources": config.max_sources}
            for mode, config in MODE_CONFIGS.items()
        ]

    def get_mode_config(self, mode: SearchMode | str) -> ModeConfig:
        return _mode_config(mode)
