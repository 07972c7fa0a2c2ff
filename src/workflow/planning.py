"""Search plan parsing and estimation."""

from __future__ import annotations

import re

import structlog

from src.config.modes import SearchMode
from src.resilience.prioritizer import Complexity
from src.utils.text import clean_query_line, extract_block
from src.workflow.state import SearchPlan, SearchStep, StepKind

logger = structlog.get_logger(__name__)

DEFAULT_STEPS = [
    "Query Analysis and Intent Understanding",
    "Web Search Execution",
    "Document Retrieval and Processing",
    "Content Relevance Reranking",
    "Final Response Generation",
]

MAX_PLAN_STEPS = 10

# Checked in order; the first match wins
_KIND_KEYWORDS: list[tuple[StepKind, tuple[str, ...]]] = [
    (StepKind.QUERY_ANALYSIS, ("analysis", "analyze", "analyse", "intent", "understand")),
    (StepKind.RERANKING, ("rerank", "ranking", "relevance")),
    (StepKind.DOCUMENT_RETRIEVAL, ("retriev", "document", "processing", "extract")),
    (StepKind.WEB_SEARCH, ("search", "lookup")),
    (StepKind.CONTENT_GENERATION, ("generat", "response", "answer", "synthes")),
]

_BASE_DURATION = {SearchMode.QUICK: 5.0, SearchMode.PRO: 20.0, SearchMode.ULTRA: 60.0}
_COMPLEXITY_FACTOR = {"simple": 1.0, "moderate": 1.5, "complex": 2.0}

_STEP_LINE = re.compile(r"^\s*steps?\s*:\s*(.+)$", re.IGNORECASE)


def classify_step(name: str) -> StepKind:
    lowered = name.lower()
    for kind, keywords in _KIND_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return kind
    return StepKind.GENERIC


def parse_step_names(text: str) -> list[str]:
    """Read ``steps:`` lines, or list items inside a ``<steps>`` block."""
    names: list[str] = []
    for line in (text or "").splitlines():
        match = _STEP_LINE.match(line)
        if match and match.group(1).strip():
            names.append(clean_query_line(match.group(1)))

    if not names:
        block = extract_block(text, "steps")
        if block:
            names = [clean_query_line(line) for line in block.splitlines() if clean_query_line(line)]

    return [name for name in names if name][:MAX_PLAN_STEPS]


def estimate_duration(mode: SearchMode, complexity: Complexity) -> float:
    """Estimated seconds for the run."""
    return _BASE_DURATION[mode] * _COMPLEXITY_FACTOR.get(complexity, 1.0)


def priority_class(score: float) -> str:
    if score >= 0.7:
        return "high"
    if score >= 0.5:
        return "normal"
    return "low"


# Execution order of the known step kinds
STEP_ORDER = [
    StepKind.QUERY_ANALYSIS,
    StepKind.WEB_SEARCH,
    StepKind.DOCUMENT_RETRIEVAL,
    StepKind.RERANKING,
    StepKind.CONTENT_GENERATION,
]


def order_steps(steps: list[SearchStep]) -> list[SearchStep]:
    """Put known steps in execution order; generic steps keep their positions."""
    slots = [i for i, step in enumerate(steps) if step.kind != StepKind.GENERIC]
    known = sorted((steps[i] for i in slots), key=lambda step: STEP_ORDER.index(step.kind))
    ordered = list(steps)
    for slot, step in zip(slots, known):
        ordered[slot] = step
    return ordered


def _ensure_required(steps: list[SearchStep]) -> list[SearchStep]:
    """Every plan searches the web and generates a response, in dependency order."""
    kinds = [step.kind for step in steps]
    if StepKind.WEB_SEARCH not in kinds:
        steps.insert(0, SearchStep(name="Web Search Execution", kind=StepKind.WEB_SEARCH))
    if StepKind.CONTENT_GENERATION not in kinds:
        steps.append(SearchStep(name="Final Response Generation", kind=StepKind.CONTENT_GENERATION))
    return order_steps(steps)


def parse_plan(
    text: str,
    query: str,
    mode: SearchMode,
    complexity: Complexity = "moderate",
    priority: str = "normal",
) -> SearchPlan:
    """Build a SearchPlan from the planner's free text, falling back to the default steps."""
    names = parse_step_names(text)
    if not names:
        logger.warning("plan_unparseable_using_defaults", preview=(text or "")[:120])
        names = list(DEFAULT_STEPS)

    steps = _ensure_required([SearchStep(name=name, kind=classify_step(name)) for name in names])
    plan = SearchPlan(
        query=query,
        steps=steps,
        estimated_duration=estimate_duration(mode, complexity),
        priority=priority,
    )
    logger.info("plan_parsed", steps=[step.name for step in steps], priority=priority)
    return plan
