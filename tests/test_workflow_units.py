"""Tests for planning, follow-ups, run state, cancellation and the event stream."""

import asyncio
import json

import pytest

from src.config.modes import SearchMode
from src.resilience.errors import RunCancelledError, RunDeadlineExceededError
from src.streaming import EventStream, EventType
from src.utils.chat_history import format_chat_history
from src.utils.text import clean_query_line, extract_block, parse_query_lines
from src.workflow.cancellation import CancellationToken, RunDeadline, RunGuard
from src.workflow.followups import DEFAULT_FOLLOW_UP, DEFAULT_RELATED, FollowUpGenerator, parse_follow_ups
from src.workflow.planning import (
    DEFAULT_STEPS,
    MAX_PLAN_STEPS,
    classify_step,
    estimate_duration,
    parse_plan,
    parse_step_names,
    priority_class,
)
from src.workflow.state import (
    ChatTurn,
    InvalidTransitionError,
    SearchAgent,
    SearchRequest,
    SearchStep,
    StepKind,
    StepStatus,
)
from tests.mocks import MockChatModel


# Planning


def test_parse_step_lines():
    text = """Here is the plan.
steps: Query Analysis
steps: Web Search
Step: 3. Rerank results by relevance
steps: Write the final answer
"""
    assert parse_step_names(text) == [
        "Query Analysis",
        "Web Search",
        "Rerank results by relevance",
        "Write the final answer",
    ]


def test_parse_step_block():
    text = "<steps>\n1. Analyze intent\n2. Search the web\n- Generate answer\n</steps>"
    assert parse_step_names(text) == ["Analyze intent", "Search the web", "Generate answer"]


def test_parse_step_names_caps_length():
    text = "\n".join(f"steps: Search angle {i}" for i in range(20))
    assert len(parse_step_names(text)) == MAX_PLAN_STEPS


@pytest.mark.parametrize(
    "name,kind",
    [
        ("Query Analysis and Intent Understanding", StepKind.QUERY_ANALYSIS),
        ("Web Search Execution", StepKind.WEB_SEARCH),
        ("Document Retrieval and Processing", StepKind.DOCUMENT_RETRIEVAL),
        ("Content Relevance Reranking", StepKind.RERANKING),
        ("Final Response Generation", StepKind.CONTENT_GENERATION),
        ("Check publication dates", StepKind.GENERIC),
    ],
)
def test_classify_step(name, kind):
    assert classify_step(name) == kind


def test_parse_plan_falls_back_to_default_steps():
    plan = parse_plan("I cannot help with planning.", "capital of France", SearchMode.QUICK, "simple")
    assert [step.name for step in plan.steps] == DEFAULT_STEPS
    assert all(step.status == StepStatus.PENDING for step in plan.steps)
    assert plan.estimated_duration == 5.0


def test_parse_plan_adds_required_steps():
    plan = parse_plan("steps: Analyze the question\nsteps: Check publication dates", "q", SearchMode.PRO)
    kinds = [step.kind for step in plan.steps]
    assert kinds == [StepKind.QUERY_ANALYSIS, StepKind.WEB_SEARCH, StepKind.GENERIC, StepKind.CONTENT_GENERATION]


def test_parse_plan_orders_steps_by_dependency():
    text = "\n".join(
        [
            "steps: Content Relevance Reranking",
            "steps: Check publication dates",
            "steps: Final Response Generation",
            "steps: Web Search Execution",
            "steps: Query Analysis",
        ]
    )
    plan = parse_plan(text, "q", SearchMode.QUICK)

    assert [step.kind for step in plan.steps] == [
        StepKind.QUERY_ANALYSIS,
        StepKind.GENERIC,
        StepKind.WEB_SEARCH,
        StepKind.RERANKING,
        StepKind.CONTENT_GENERATION,
    ]
    assert plan.steps[1].name == "Check publication dates"


def test_estimate_duration_and_priority():
    assert estimate_duration(SearchMode.QUICK, "simple") == 5.0
    assert estimate_duration(SearchMode.PRO, "moderate") == 30.0
    assert estimate_duration(SearchMode.ULTRA, "complex") == 120.0
    assert priority_class(0.75) == "high"
    assert priority_class(0.5) == "normal"
    assert priority_class(0.2) == "low"


def test_plan_serialization():
    plan = parse_plan("", "q", SearchMode.QUICK, priority="high")
    payload = plan.to_dict()
    assert payload["priority"] == "high"
    assert payload["steps"][0]["status"] == "pending"
    assert payload["steps"][0]["kind"] == "query_analysis"
    json.dumps(payload)


# Text helpers


def test_query_line_parsing():
    text = '1. "python asyncio tutorial"\n- Python asyncio tutorial\nHere are the queries:\n* event loop internals\nab'
    assert parse_query_lines(text) == ["python asyncio tutorial", "event loop internals"]
    assert clean_query_line("  3) 'quoted query'  ") == "quoted query"
    assert extract_block("x <links>\nhttps://a.com\n</links> y", "links") == "https://a.com"
    assert extract_block("nothing", "links") is None


def test_format_chat_history():
    turns = [
        {"role": "system", "content": "ignored"},
        ChatTurn(role="user", content="What is Rust?"),
        {"role": "assistant", "content": "A systems language."},
        {"role": "user", "content": "Who made it?"},
    ]
    assert format_chat_history(turns, limit=2) == (
        "Chat history:\n- assistant: A systems language.\n- user: Who made it?"
    )
    assert format_chat_history([], limit=6) == "Chat history: None."


# Follow-ups


def test_parse_follow_ups():
    text = """FOLLOW_UP: How does Paris compare to Lyon?
RELATED:
- Population of Paris
- History of Paris
- Paris landmarks
- Paris climate
- Paris transport
"""
    parsed = parse_follow_ups(text)
    assert parsed.follow_up == "How does Paris compare to Lyon?"
    assert parsed.related == ["Population of Paris", "History of Paris", "Paris landmarks", "Paris climate"]
    assert parsed.to_dict()["followUp"] == parsed.follow_up


def test_parse_follow_ups_defaults():
    parsed = parse_follow_ups("no structure here")
    assert parsed.follow_up == DEFAULT_FOLLOW_UP
    assert parsed.related == DEFAULT_RELATED


@pytest.mark.asyncio
async def test_follow_up_generator_never_raises():
    generator = FollowUpGenerator(MockChatModel(error=ConnectionError("refused")))
    result = await generator.generate("q", "answer", "context")
    assert result.follow_up == DEFAULT_FOLLOW_UP
    assert len(result.related) == 4


@pytest.mark.asyncio
async def test_follow_up_generator_truncates_inputs():
    llm = MockChatModel(responses=["FOLLOW_UP: Next?\nRELATED:\n- One"])
    generator = FollowUpGenerator(llm, max_chars=10)
    result = await generator.generate("q", "A" * 50, "B" * 50)

    assert result.follow_up == "Next?"
    assert result.related == ["One"]
    assert "A" * 11 not in llm.prompts[0]
    assert "B" * 11 not in llm.prompts[0]


# State


def test_step_transitions():
    step = SearchStep(name="Web Search", kind=StepKind.WEB_SEARCH)
    step.start()
    step.complete({"agents": 1})
    assert step.status.is_terminal
    assert step.completed_at >= step.started_at

    with pytest.raises(InvalidTransitionError):
        step.start()
    with pytest.raises(InvalidTransitionError):
        step.fail("late")


def test_step_cannot_complete_without_starting():
    step = SearchStep(name="Answer", kind=StepKind.CONTENT_GENERATION)
    with pytest.raises(InvalidTransitionError):
        step.complete()
    step.fail("skipped")
    assert step.status == StepStatus.FAILED


def test_agent_transitions_and_serialization():
    agent = SearchAgent(id="agent-0", query="python")
    agent.start()
    agent.complete(7)
    assert agent.to_dict() == {"id": "agent-0", "status": "completed", "query": "python", "results": 7}
    with pytest.raises(InvalidTransitionError):
        agent.fail("late")


def test_search_request_validation():
    request = SearchRequest(query="hello", mode=SearchMode.PRO)
    assert request.history == ()
    with pytest.raises(ValueError):
        SearchRequest(query="")


# Cancellation


@pytest.mark.asyncio
async def test_guard_returns_result():
    guard = RunGuard()

    async def work():
        return 42

    assert await guard.run(work()) == 42


@pytest.mark.asyncio
async def test_guard_cancels_inner_work_on_token():
    token = CancellationToken()
    guard = RunGuard(token)
    cancelled = asyncio.Event()

    async def slow():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    async def cancel_soon():
        await asyncio.sleep(0.01)
        token.cancel("client disconnected")

    asyncio.create_task(cancel_soon())
    with pytest.raises(RunCancelledError):
        await guard.run(slow())
    assert cancelled.is_set()
    assert token.reason == "client disconnected"


@pytest.mark.asyncio
async def test_guard_enforces_deadline():
    guard = RunGuard(deadline=RunDeadline(0.02))
    with pytest.raises(RunDeadlineExceededError):
        await guard.run(asyncio.sleep(5))


@pytest.mark.asyncio
async def test_guard_check_fails_fast_after_cancel():
    token = CancellationToken()
    token.cancel()
    guard = RunGuard(token)

    with pytest.raises(RunCancelledError):
        guard.check()
    with pytest.raises(RunCancelledError):
        await guard.sleep(0)
    with pytest.raises(RunCancelledError):
        await guard.run(asyncio.sleep(0))


def test_deadline_with_fake_clock():
    now = [100.0]
    deadline = RunDeadline(10, clock=lambda: now[0])
    assert deadline.remaining() == 10
    now[0] = 111.0
    assert deadline.expired
    assert RunDeadline(None).remaining() is None


# Event stream


@pytest.mark.asyncio
async def test_event_stream_ends_exactly_once():
    stream = EventStream("run-1")
    stream.emit_progress("planning", "Planning", progress=10)
    stream.emit_response("answer")
    stream.close()
    stream.close()
    stream.emit_response("late")

    events = [event async for event in stream.events()]
    assert [e.type for e in events] == [EventType.PROGRESS, EventType.RESPONSE, EventType.END]


def test_progress_is_monotonic_and_capped():
    stream = EventStream()
    stream.emit_progress("a", "first", progress=40)
    stream.emit_progress("b", "second", progress=20)
    stream.emit_progress("c", "third", progress=150)
    stream.emit_progress("d", "fourth")
    assert [e.data["progress"] for e in stream.history] == [40, 40, 100, 100]


def test_event_serialization():
    stream = EventStream()
    stream.emit_sources([{"page_content": "x", "metadata": {}}], total_found=12, max_displayed=8, mode="quick")
    stream.emit_error("boom", kind="TIMEOUT")
    stream.emit_follow_ups("Next?", ["a", "b"])

    sources, error, follow_ups = [e.to_payload() for e in stream.history]
    assert sources["metadata"] == {"totalFound": 12, "maxDisplayed": 8, "mode": "quick"}
    assert error == {"type": "error", "data": "boom", "metadata": {"kind": "TIMEOUT"}}
    assert follow_ups["data"] == {"followUp": "Next?", "related": ["a", "b"]}

    sse = stream.history[1].to_sse()
    assert sse.startswith("data: ")
    assert sse.endswith("\n\n")
    assert json.loads(sse[len("data: "):])["type"] == "error"
