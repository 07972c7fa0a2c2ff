"""End-to-end tests for all search modes."""

import asyncio

import pytest

from src.config.modes import SearchMode
from src.files.store import FileSegment, InMemoryFileStore
from src.streaming import EventType
from src.workflow import CancellationToken, OrchestratorFactory
from src.workflow.state import ChatTurn, SearchAgent, SearchRequest
from tests.mocks import MockChatModel, MockScraper, MockSearchProvider, build_services


async def collect(orchestrator, request, token=None):
    return [event async for event in orchestrator.run(request, token)]


def of_type(events, event_type):
    return [event for event in events if event.type == event_type]


def assert_well_formed(events):
    types = [event.type for event in events]
    assert types[-1] == EventType.END
    assert types.count(EventType.END) == 1
    progress = [event.data["progress"] for event in of_type(events, EventType.PROGRESS)]
    assert progress == sorted(progress)


@pytest.mark.asyncio
async def test_quick_mode_streams_full_run():
    """Quick: plan, one agent, sources, answer, follow-ups, done, end."""
    services = build_services()
    orchestrator = OrchestratorFactory(services).create("quick")

    events = await collect(orchestrator, SearchRequest(query="capital of France"))

    assert_well_formed(events)
    types = [event.type for event in events]
    assert types.index(EventType.PLAN) < types.index(EventType.AGENTS) < types.index(EventType.SOURCES)
    assert types.index(EventType.SOURCES) < types.index(EventType.RESPONSE) < types.index(EventType.FOLLOW_UPS)
    assert types[-2] == EventType.DONE
    assert not of_type(events, EventType.ERROR)

    plan = of_type(events, EventType.PLAN)[0].data
    assert len(plan["steps"]) == 5

    agents = of_type(events, EventType.AGENTS)[0].data
    assert [agent["id"] for agent in agents] == ["quick-agent-0"]
    assert of_type(events, EventType.AGENT_UPDATE)[-1].data["status"] == "completed"

    sources = of_type(events, EventType.SOURCES)[0]
    assert 0 < len(sources.data) <= 8
    assert sources.metadata == {"totalFound": 10, "maxDisplayed": 8, "mode": "quick"}
    assert all(source["metadata"]["relevance_score"] >= 0.5 for source in sources.data)

    assert of_type(events, EventType.RESPONSE)[0].data.startswith("Mock answer about capital of France")
    follow_ups = of_type(events, EventType.FOLLOW_UPS)[0].data
    assert follow_ups["followUp"]
    assert len(follow_ups["related"]) == 4

    done = of_type(events, EventType.DONE)[0].data
    assert done["mode"] == "quick"
    assert done["stepsCompleted"] == 5
    assert done["queries"] == ["capital of France"]
    assert of_type(events, EventType.PROGRESS)[-1].data["progress"] == 100


@pytest.mark.asyncio
async def test_quick_mode_skips_search_for_greetings():
    search = MockSearchProvider()
    services = build_services(search=search)
    orchestrator = OrchestratorFactory(services).create(SearchMode.QUICK)

    events = await collect(orchestrator, SearchRequest(query="hello"))

    assert_well_formed(events)
    assert search.search_count == 0
    assert of_type(events, EventType.SOURCES)[0].data == []
    assert of_type(events, EventType.RESPONSE)[0].data == "Hello! How can I help you today?"


@pytest.mark.asyncio
async def test_quick_mode_fetches_user_links():
    search = MockSearchProvider()
    scraper = MockScraper()
    services = build_services(search=search, scraper=scraper)
    orchestrator = OrchestratorFactory(services).create("quick")

    events = await collect(orchestrator, SearchRequest(query="Summarize https://docs.python.org"))

    assert_well_formed(events)
    assert scraper.scraped == ["https://docs.python.org"]
    assert search.search_count == 0
    sources = of_type(events, EventType.SOURCES)[0].data
    assert [source["metadata"]["url"] for source in sources] == ["https://docs.python.org"]


@pytest.mark.asyncio
async def test_repeated_runs_reuse_fetched_links_and_plan():
    llm = MockChatModel(
        rules=[
            ("search execution plan", "steps: Web Search Execution\nsteps: Final Response Generation"),
            ("rephrased question:", "<question>\nsummarize\n</question>\n<links>\nhttps://docs.python.org\n</links>"),
        ],
        responses=["A short summary of the page."],
    )
    scraper = MockScraper()
    services = build_services(llm=llm, search=MockSearchProvider(), scraper=scraper)
    orchestrator = OrchestratorFactory(services).create("quick")
    request = SearchRequest(query="Summarize https://docs.python.org")

    first = await collect(orchestrator, request)
    second = await collect(orchestrator, request)

    assert_well_formed(first)
    assert_well_formed(second)
    assert scraper.scraped == ["https://docs.python.org"]
    assert sum("search execution plan" in prompt for prompt in llm.prompts) == 1
    plans = [[step["name"] for step in of_type(events, EventType.PLAN)[0].data["steps"]] for events in (first, second)]
    assert plans[0] == plans[1]
    regions = services.cache.stats()["regions"]
    assert regions["api"]["entries"] == 1
    assert regions["global"]["entries"] == 1


@pytest.mark.asyncio
async def test_quick_mode_survives_failed_search():
    search = MockSearchProvider(failing_queries=["capital"])
    services = build_services(search=search)
    orchestrator = OrchestratorFactory(services).create("quick")

    events = await collect(orchestrator, SearchRequest(query="capital of France"))

    assert_well_formed(events)
    updates = of_type(events, EventType.AGENT_UPDATE)
    assert updates[-1].data["status"] == "failed"
    assert of_type(events, EventType.SOURCES)[0].data == []
    assert of_type(events, EventType.RESPONSE)
    assert of_type(events, EventType.DONE)
    assert services.tracker.stats()["agent.search:SERVICE_UNAVAILABLE"]["count"] >= 1


@pytest.mark.asyncio
async def test_quick_mode_blends_attachments_with_web_results():
    files = InMemoryFileStore(
        {
            "report": [
                FileSegment(file_id="report", title="report.pdf", text="The capital of France is Paris."),
                FileSegment(file_id="report", title="report.pdf", text="France borders Spain and Germany."),
            ]
        }
    )
    services = build_services(files=files)
    orchestrator = OrchestratorFactory(services).create("quick", rerank_threshold=0.1)

    events = await collect(orchestrator, SearchRequest(query="capital of France", file_ids=("report",)))

    assert_well_formed(events)
    sources = of_type(events, EventType.SOURCES)[0].data
    assert any(source["metadata"]["url"] == "File" for source in sources)
    assert any(source["metadata"]["url"] != "File" for source in sources)
    assert len(sources) <= 8


@pytest.mark.asyncio
async def test_pro_mode_fans_out_four_to_six_agents():
    search = MockSearchProvider()
    services = build_services(search=search)
    orchestrator = OrchestratorFactory(services).create("pro")

    request = SearchRequest(
        query="What is Python?",
        mode=SearchMode.PRO,
        history=(ChatTurn(role="user", content="Tell me about languages"),),
    )
    events = await collect(orchestrator, request)

    assert_well_formed(events)
    agents = of_type(events, EventType.AGENTS)[0].data
    assert 4 <= len(agents) <= 6
    assert all(agent["id"].startswith("pro-agent-") for agent in agents)
    assert search.search_count == len(agents)
    assert sorted(search.queries) == sorted(agent["query"] for agent in agents)
    assert all(options.time_range == "year" for options in search.options)

    sources = of_type(events, EventType.SOURCES)[0]
    assert sources.metadata["mode"] == "pro"
    assert sources.metadata["maxDisplayed"] == 15
    # Every agent returned the same three pages
    assert len(sources.data) <= 3

    done = of_type(events, EventType.DONE)[0].data
    assert done["mode"] == "pro"
    assert len(done["queries"]) == len(agents)


@pytest.mark.asyncio
async def test_pro_mode_pads_queries_when_expansion_fails():
    llm = MockChatModel(
        rules=[
            ("search execution plan", "steps: Web Search Execution\nsteps: Final Response Generation"),
            ("topically diverse", ConnectionError("model offline")),
            ("follow_up:", "FOLLOW_UP: More?\nRELATED:\n- a"),
            ("merged briefing", "Merged context."),
        ],
        responses=["Final answer [1]."],
    )
    search = MockSearchProvider()
    services = build_services(llm=llm, search=search)
    orchestrator = OrchestratorFactory(services).create("pro")

    events = await collect(orchestrator, SearchRequest(query="rust ownership", mode=SearchMode.PRO))

    assert_well_formed(events)
    assert len(search.queries) == 4
    assert "rust ownership latest developments" in search.queries
    assert of_type(events, EventType.RESPONSE)[0].data == "Final answer [1]."


@pytest.mark.asyncio
async def test_out_of_order_plan_still_ranks_search_results():
    llm = MockChatModel(
        rules=[
            (
                "search execution plan",
                "steps: Content Relevance Reranking\nsteps: Web Search Execution\nsteps: Final Response Generation",
            ),
            ("topically diverse", ConnectionError("model offline")),
            ("follow_up:", "FOLLOW_UP: More?\nRELATED:\n- a"),
            ("merged briefing", "Merged context."),
        ],
        responses=["Final answer [1]."],
    )
    services = build_services(llm=llm, search=MockSearchProvider())
    orchestrator = OrchestratorFactory(services).create("pro", rerank_threshold=0.0)

    events = await collect(orchestrator, SearchRequest(query="python docs", mode=SearchMode.PRO))

    assert_well_formed(events)
    plan = of_type(events, EventType.PLAN)[0].data
    assert [step["kind"] for step in plan["steps"]] == ["web_search", "reranking", "content_generation"]

    sources = of_type(events, EventType.SOURCES)
    assert len(sources) == 1
    assert sources[0].data
    assert sources[0].metadata["totalFound"] > 0


@pytest.mark.asyncio
async def test_ultra_mode_batches_agents_and_cross_validates():
    search = MockSearchProvider(delay=0.01)
    services = build_services(search=search, ultra_parallel_agents=4)
    orchestrator = OrchestratorFactory(services).create("ultra")

    events = await collect(orchestrator, SearchRequest(query="quantum computing", mode=SearchMode.ULTRA))

    assert_well_formed(events)
    assert search.max_in_flight <= 4

    rosters = of_type(events, EventType.AGENTS)
    primary = rosters[0].data
    assert 8 <= len(primary) <= 12
    assert all(agent["id"].startswith("agent-") for agent in primary)

    full_roster = rosters[-1].data
    validation = [agent for agent in full_roster if agent["id"].startswith("validation-agent-")]
    assert 3 <= len(validation) <= 5
    assert len(full_roster) == len(primary) + len(validation)
    assert search.search_count == len(full_roster)
    assert all("arxiv" in options.engines for options in search.options)

    steps = [event.data["step"] for event in of_type(events, EventType.PROGRESS)]
    assert "cross_validation" in steps

    sources = of_type(events, EventType.SOURCES)[0]
    assert sources.metadata["mode"] == "ultra"
    assert sources.metadata["maxDisplayed"] == 50

    done = of_type(events, EventType.DONE)[0].data
    assert done["mode"] == "ultra"
    assert len(done["queries"]) == len(full_roster)


def ultra_context(agent_states):
    orchestrator = OrchestratorFactory(build_services(ultra_replanning_interval=0.01)).create("ultra")
    ctx = orchestrator._new_context(SearchRequest(query="quantum computing", mode=SearchMode.ULTRA), None)
    for i, state in enumerate(agent_states):
        agent = SearchAgent(id=f"agent-{i}", query=f"q{i}")
        agent.start()
        if state == "completed":
            agent.complete(3)
        elif state == "failed":
            agent.fail("backend down")
        ctx.agents.append(agent)
    return orchestrator, ctx


def test_replanning_ignores_failed_agents():
    orchestrator, ctx = ultra_context(["failed"] * 8 + ["running"] * 2)

    assert orchestrator._replanning_check(ctx) is False
    assert not [e for e in ctx.stream.history if e.type == EventType.PROGRESS]


def test_replanning_reports_progress_and_stops_at_ratio():
    orchestrator, ctx = ultra_context(["completed"] * 7 + ["failed"] * 3)
    assert orchestrator._replanning_check(ctx) is False

    progress = [e.data for e in ctx.stream.history if e.type == EventType.PROGRESS]
    assert progress[0]["step"] == "dynamic_replan"
    assert progress[0]["details"] == "7 agents completed, 3 failed"
    assert progress[0]["progress"] == 77

    orchestrator, ctx = ultra_context(["completed"] * 8 + ["failed"] * 2)
    assert orchestrator._replanning_check(ctx) is True


@pytest.mark.asyncio
async def test_replanning_monitor_stops_once_agents_complete():
    orchestrator, ctx = ultra_context(["completed"] * 9 + ["running"])

    await asyncio.wait_for(orchestrator._replanning_monitor(ctx), timeout=2)

    steps = [e.data["step"] for e in ctx.stream.history if e.type == EventType.PROGRESS]
    assert steps == ["dynamic_replan"]


@pytest.mark.asyncio
async def test_step_failure_emits_error_then_end():
    llm = MockChatModel(
        rules=[
            ("search execution plan", "steps: Web Search Execution\nsteps: Final Response Generation"),
            ("rephrased question", "<question>\nwhat is python\n</question>"),
            ("merged briefing", "Merged context."),
            ("context:", ConnectionError("model connection reset")),
        ]
    )
    services = build_services(llm=llm, search=MockSearchProvider())
    orchestrator = OrchestratorFactory(services).create("quick")

    events = await collect(orchestrator, SearchRequest(query="what is python"))

    assert_well_formed(events)
    assert [event.type for event in events[-2:]] == [EventType.ERROR, EventType.END]
    error = events[-2]
    assert error.metadata == {"kind": "CONNECTION"}
    assert not of_type(events, EventType.DONE)
    assert not of_type(events, EventType.RESPONSE)
    assert services.tracker.stats()["step.content_generation:CONNECTION"]["count"] == 1


@pytest.mark.asyncio
async def test_planning_failure_emits_error_then_end():
    services = build_services(llm=MockChatModel(error=TimeoutError("planner timed out")))
    orchestrator = OrchestratorFactory(services).create("quick")

    events = await collect(orchestrator, SearchRequest(query="anything"))

    assert [event.type for event in events] == [EventType.PROGRESS, EventType.ERROR, EventType.END]
    assert events[1].metadata == {"kind": "TIMEOUT"}
    assert events[1].data == "A request timed out while processing your search."


@pytest.mark.asyncio
async def test_cancellation_ends_stream():
    search = MockSearchProvider(delay=5)
    services = build_services(search=search)
    orchestrator = OrchestratorFactory(services).create("quick")
    token = CancellationToken()

    events = []
    async for event in orchestrator.run(SearchRequest(query="capital of France"), token):
        events.append(event)
        if event.type == EventType.AGENTS:
            token.cancel("user pressed stop")

    assert_well_formed(events)
    assert events[-2].type == EventType.ERROR
    assert events[-2].data == "The search was cancelled."
    assert not of_type(events, EventType.DONE)
    assert search.in_flight == 0


@pytest.mark.asyncio
async def test_deadline_stops_run():
    services = build_services(search=MockSearchProvider(delay=5), run_deadline_seconds=0.2)
    orchestrator = OrchestratorFactory(services).create("pro")

    events = await asyncio.wait_for(collect(orchestrator, SearchRequest(query="slow topic")), timeout=3)

    assert_well_formed(events)
    assert events[-2].type == EventType.ERROR
    assert events[-2].metadata == {"kind": "TIMEOUT"}


@pytest.mark.asyncio
async def test_closing_consumer_cancels_run():
    search = MockSearchProvider(delay=5)
    services = build_services(search=search)
    orchestrator = OrchestratorFactory(services).create("quick")
    token = CancellationToken()

    events = orchestrator.run(SearchRequest(query="capital of France"), token)
    async for event in events:
        if event.type == EventType.AGENTS:
            break
    await events.aclose()

    assert token.cancelled
    await asyncio.sleep(0)
    assert search.in_flight == 0


def test_factory_lists_modes():
    factory = OrchestratorFactory(build_services())
    modes = factory.get_available_modes()
    assert [mode["mode"] for mode in modes] == ["quick", "pro", "ultra"]
    assert [mode["maxSources"] for mode in modes] == [8, 15, 50]
    assert factory.create("deep_research").mode == SearchMode.ULTRA
    assert factory.create("balanced").mode == SearchMode.PRO
    assert factory.create("unknown").mode == SearchMode.QUICK
