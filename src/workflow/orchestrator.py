"""Search orchestrator: the plan/execute skeleton shared by every search mode.

The run is a LangGraph state machine::

    plan -> execute_step (one node visit per plan step) -> finalize

Each step is dispatched on its ``StepKind``. Mode strategies subclass
``SearchOrchestrator`` and implement ``analyze_query`` and ``search_web``;
everything else (attachments, reranking, fusion, answer synthesis, follow-ups
and event emission) lives here.
"""

from __future__ import annotations

import asyncio
import hashlib
import uuid
from typing import Any, AsyncIterator, Awaitable, Callable

import structlog
from langchain_core.messages import HumanMessage, SystemMessage
from langgraph.graph import END, StateGraph

from src.config.modes import ModeConfig, SearchMode, get_mode_config
from src.resilience.cache import GLOBAL_REGION
from src.resilience.errors import (
    AnswerEngineError,
    PlanningError,
    RunCancelledError,
    RunDeadlineExceededError,
    StepExecutionError,
    classify_error,
    user_message,
)
from src.resilience.prioritizer import PriorityWorkQueue, analyze_query_complexity
from src.resilience.services import ServiceContainer
from src.search.fusion import ContextualFusion, FusionConfig, format_context
from src.search.models import Document, RerankedDocument, SearchOptions
from src.search.reranker import HybridReranker, positional_ranking
from src.streaming.events import OrchestratorEvent
from src.streaming.sse import EventStream
from src.utils.chat_history import format_chat_history
from src.utils.date import get_current_date
from src.workflow.cancellation import CancellationToken, RunDeadline, RunGuard
from src.workflow.followups import FollowUpGenerator
from src.workflow.planning import parse_plan, priority_class
from src.workflow.prompts import (
    ANSWER_SYSTEM_PROMPT,
    ANSWER_USER_PROMPT,
    CONVERSATIONAL_SYSTEM_PROMPT,
    GENERIC_STEP_PROMPT,
    PLANNING_PROMPT,
)
from src.workflow.state import (
    OrchestratorState,
    RunContext,
    SearchAgent,
    SearchRequest,
    SearchStep,
    StepKind,
)

logger = structlog.get_logger(__name__)

_RUN_STOPPERS = (RunCancelledError, RunDeadlineExceededError)

StepHandler = Callable[[RunContext, SearchStep], Awaitable[dict[str, Any]]]


def dedupe_documents(documents: list[Document]) -> list[Document]:
    """Drop empty documents and repeated URLs, keeping the first occurrence."""
    seen: set[str] = set()
    unique: list[Document] = []
    for doc in documents:
        if not doc.page_content.strip():
            continue
        key = doc.url if not doc.is_file else f"{doc.url}:{doc.page_content[:64]}"
        if key in seen:
            continue
        seen.add(key)
        unique.append(doc)
    return unique


def format_source_index(sources: list[RerankedDocument]) -> str:
    return "\n".join(
        f"[{idx}] {item.document.title or 'Untitled'} ({item.document.url})"
        for idx, item in enumerate(sources, start=1)
    )


class SearchOrchestrator:
    """Shared planning/execution/event-emission skeleton."""

    mode: SearchMode = SearchMode.QUICK

    def __init__(self, services: ServiceContainer, mode_config: ModeConfig | None = None):
        """
        Initialize the orchestrator.

        Args:
            services: Process-wide services (LLMs, search, caches, breakers)
            mode_config: Ranking and fusion knobs; defaults to the mode's config
        """
        self.services = services
        self.settings = services.settings
        self.mode_config = mode_config or get_mode_config(self.mode)
        self.reranker = HybridReranker(services.embeddings)
        self.fusion = ContextualFusion(FusionConfig.from_mode(self.mode_config))
        self.followups = FollowUpGenerator(services.chat_llm)
        self._handlers: dict[StepKind, StepHandler] = {
            StepKind.QUERY_ANALYSIS: self._run_query_analysis,
            StepKind.WEB_SEARCH: self._run_web_search,
            StepKind.DOCUMENT_RETRIEVAL: self._run_document_retrieval,
            StepKind.RERANKING: self._run_reranking,
            StepKind.CONTENT_GENERATION: self._run_content_generation,
            StepKind.GENERIC: self._run_generic,
        }
        self.graph = self._build_graph()

    # ------------------------------------------------------------ strategy hooks

    async def analyze_query(self, ctx: RunContext) -> None:
        """Fill ``ctx.search_query`` and ``ctx.queries`` (or set ``ctx.skip_search``)."""
        raise NotImplementedError

    async def search_web(self, ctx: RunContext) -> None:
        """Run retrieval agents for ``ctx.queries`` and append to ``ctx.documents``."""
        raise NotImplementedError

    # ------------------------------------------------------------------- graph

    def _build_graph(self):
        """Build the LangGraph workflow."""
        workflow = StateGraph(OrchestratorState)

        workflow.add_node("plan", self._plan_node)
        workflow.add_node("execute_step", self._execute_step_node)
        workflow.add_node("finalize", self._finalize_node)

        workflow.set_entry_point("plan")
        routes = {"execute": "execute_step", "finalize": "finalize"}
        workflow.add_conditional_edges("plan", self._route_next_step, routes)
        workflow.add_conditional_edges("execute_step", self._route_next_step, routes)
        workflow.add_edge("finalize", END)

        return workflow.compile()

    def _route_next_step(self, state: OrchestratorState) -> str:
        plan = state.get("plan")
        if plan is not None and state.get("step_index", 0) < len(plan.steps):
            return "execute"
        return "finalize"

    async def _plan_node(self, state: OrchestratorState) -> dict:
        ctx = state["context"]
        request = ctx.request
        ctx.stream.emit_progress("planning", "Planning search strategy", f"Mode: {self.mode.value}", 10)

        complexity = analyze_query_complexity(request.query)
        score = self.services.prioritizer.score(request.query, user_tier=request.user_tier)
        prompt = PLANNING_PROMPT.format(
            query=request.query,
            mode=self.mode.value,
            system_instructions=request.system_instructions or "None",
        )
        try:
            text = await ctx.guard.run(self._plan_text(prompt))
        except _RUN_STOPPERS:
            raise
        except Exception as e:
            raise PlanningError(f"Search planning failed: {e}") from e

        plan = parse_plan(text, request.query, self.mode, complexity, priority_class(score))
        ctx.stream.emit_plan(plan.to_dict())
        ctx.stream.emit_progress("planning", "Search plan ready", f"{len(plan.steps)} steps", 20)
        return {"plan": plan, "step_index": 0}

    async def _plan_text(self, prompt: str) -> str:
        """Planner output is shared by identical planning prompts."""
        key = f"plan:{self.mode.value}:{hashlib.sha1(prompt.encode()).hexdigest()}"
        return await self.services.cache.get_or_set(
            GLOBAL_REGION, key, lambda: self.services.planning_llm.complete([HumanMessage(content=prompt)])
        )

    def _step_progress(self, index: int, total: int) -> int:
        """Steps are spread over 30..70."""
        return 30 + int(40 * index / max(total, 1))

    async def _execute_step_node(self, state: OrchestratorState) -> dict:
        ctx = state["context"]
        plan = state["plan"]
        index = state["step_index"]
        step = plan.steps[index]
        total = len(plan.steps)

        ctx.guard.check()
        step.start()
        ctx.stream.emit_progress(
            step.kind.value, f"Running: {step.name}", f"Step {index + 1} of {total}", self._step_progress(index, total)
        )
        logger.info("step_started", step=step.name, kind=step.kind.value, index=index)

        try:
            result = await self._handlers[step.kind](ctx, step)
        except (*_RUN_STOPPERS, asyncio.CancelledError) as e:
            step.fail(str(e) or type(e).__name__)
            raise
        except Exception as e:
            self.services.tracker.track(e, f"step.{step.kind.value}")
            step.fail(str(e))
            ctx.stream.emit_progress(step.kind.value, f"Failed: {step.name}", str(e))
            logger.error("step_failed", step=step.name, error=str(e))
            raise StepExecutionError(step.name, str(e)) from e

        step.complete(result)
        ctx.stream.emit_progress(
            step.kind.value,
            f"Completed: {step.name}",
            ", ".join(f"{key}={value}" for key, value in result.items()),
            self._step_progress(index + 1, total),
        )
        return {"step_index": index + 1}

    async def _finalize_node(self, state: OrchestratorState) -> dict:
        ctx = state["context"]
        plan = state["plan"]

        if ctx.answer:
            ctx.stream.emit_progress("completing", "Generating follow-up questions", "", 95)
            follow_ups = await ctx.guard.run(
                self.followups.generate(ctx.request.query, ctx.answer, ctx.context)
            )
            ctx.stream.emit_follow_ups(follow_ups.follow_up, follow_ups.related)

        ctx.stream.emit_progress("complete", "Search complete", "", 100)
        ctx.stream.emit_done(
            {
                "mode": self.mode.value,
                "stepsCompleted": plan.completed_steps if plan else 0,
                "sources": len(ctx.sources or []),
                "duration": round(ctx.elapsed(), 3),
                "queries": ctx.queries + ctx.validation_queries,
            }
        )
        return {"step_index": state["step_index"]}

    # ------------------------------------------------------------ step handlers

    async def _run_query_analysis(self, ctx: RunContext, step: SearchStep) -> dict[str, Any]:
        if not ctx.queries and not ctx.skip_search:
            await self.analyze_query(ctx)
        return {"queries": len(ctx.queries), "skipSearch": ctx.skip_search}

    async def _run_web_search(self, ctx: RunContext, step: SearchStep) -> dict[str, Any]:
        if not ctx.queries and not ctx.skip_search:
            # Plan had no analysis step ahead of the search
            await self.analyze_query(ctx)
        if ctx.skip_search:
            return {"skipped": True}
        if ctx.agents:
            return {"documents": len(ctx.documents), "agents": len(ctx.agents)}

        ctx.stream.emit_progress("search", "Searching the web", f"{len(ctx.queries)} queries", 30)
        await self.search_web(ctx)
        return {"documents": len(ctx.documents), "agents": len(ctx.agents)}

    async def _run_document_retrieval(self, ctx: RunContext, step: SearchStep) -> dict[str, Any]:
        await self._load_attachments(ctx)
        ctx.documents = dedupe_documents(ctx.documents)
        return {"documents": len(ctx.documents), "attachments": len(ctx.file_documents)}

    async def _run_reranking(self, ctx: RunContext, step: SearchStep) -> dict[str, Any]:
        await self._ensure_sources(ctx)
        return {"sources": len(ctx.sources or [])}

    async def _run_content_generation(self, ctx: RunContext, step: SearchStep) -> dict[str, Any]:
        if ctx.answer:
            return {"skipped": True}
        await self._ensure_sources(ctx)
        request = ctx.request
        history = format_chat_history(request.history, self.settings.chat_history_limit)
        instructions = request.system_instructions or ""

        if ctx.skip_search and not ctx.sources:
            messages = [
                SystemMessage(content=CONVERSATIONAL_SYSTEM_PROMPT.format(system_instructions=instructions)),
                HumanMessage(content=f"{history}\n\n{request.query}"),
            ]
        else:
            ctx.stream.emit_progress("processing", "Processing sources", f"{len(ctx.sources)} sources", 75)
            ctx.context = await self._build_context(ctx)
            ctx.stream.emit_progress("generating", "Generating response", "", 85)
            messages = [
                SystemMessage(
                    content=ANSWER_SYSTEM_PROMPT.format(system_instructions=instructions, date=get_current_date())
                ),
                HumanMessage(
                    content=ANSWER_USER_PROMPT.format(chat_history=history, context=ctx.context, query=request.query)
                ),
            ]

        answer = await ctx.guard.run(self.services.chat_llm.complete(messages))
        ctx.answer = answer.strip()
        if not ctx.answer:
            raise AnswerEngineError("The language model returned an empty response")
        ctx.stream.emit_response(ctx.answer)
        return {"answerLength": len(ctx.answer)}

    async def _run_generic(self, ctx: RunContext, step: SearchStep) -> dict[str, Any]:
        prompt = GENERIC_STEP_PROMPT.format(step=step.name, query=ctx.request.query)
        try:
            description = await ctx.guard.run(self.services.chat_llm.complete([HumanMessage(content=prompt)]))
        except _RUN_STOPPERS:
            raise
        except Exception as e:
            logger.warning("generic_step_description_failed", step=step.name, error=str(e))
            description = ""
        return {"description": description.strip() or f"Executed '{step.name}' for the query."}

    # ----------------------------------------------------------------- helpers

    async def _load_attachments(self, ctx: RunContext) -> None:
        if ctx.attachments_loaded:
            return
        ctx.attachments_loaded = True
        if not ctx.request.file_ids:
            return

        segments = await ctx.guard.run(self.services.files.load(list(ctx.request.file_ids)))
        ctx.file_documents = [segment.to_document() for segment in segments]
        if segments and all(segment.embedding for segment in segments):
            ctx.file_embeddings = [segment.embedding for segment in segments]
        logger.info("attachments_ready", segments=len(segments), precomputed=ctx.file_embeddings is not None)

    async def _ensure_sources(self, ctx: RunContext) -> None:
        """Select and emit the sources once per run."""
        if ctx.sources is not None:
            return
        await self._load_attachments(ctx)

        if ctx.skip_search and not ctx.file_documents:
            ctx.sources = []
        else:
            query = ctx.search_query or ctx.request.query
            try:
                ctx.sources = await ctx.guard.run(
                    self.reranker.select_sources(
                        query,
                        dedupe_documents(ctx.documents),
                        self.mode_config,
                        file_documents=ctx.file_documents,
                        file_embeddings=ctx.file_embeddings,
                    )
                )
            except _RUN_STOPPERS:
                raise
            except Exception as e:
                self.services.tracker.track(e, "rerank")
                logger.warning("source_selection_failed_using_raw_slice", error=str(e))
                raw = dedupe_documents(ctx.file_documents + ctx.documents)
                ctx.sources = positional_ranking(raw[: self.mode_config.max_sources])

        ctx.stream.emit_sources(
            [item.as_source() for item in ctx.sources],
            total_found=ctx.total_found,
            max_displayed=self.mode_config.max_sources,
            mode=self.mode.value,
        )

    async def _build_context(self, ctx: RunContext) -> str:
        sources = ctx.sources or []
        query = ctx.search_query or ctx.request.query
        try:
            ctx.chunks = self.fusion.create_chunks(query, sources)
        except Exception as e:
            self.services.tracker.track(e, "fusion")
            logger.warning("chunking_failed", error=str(e))
            ctx.chunks = []

        if not ctx.chunks:
            return format_context(sources, self.mode_config.context_max_chars)

        merged = await ctx.guard.run(
            self.fusion.merge_into_unified_context(query, ctx.chunks, self.services.chat_llm)
        )
        return f"{merged}\n\nSources:\n{format_source_index(sources)}"

    def _search_options(self, **overrides: Any) -> SearchOptions:
        options = {"max_results": self.mode_config.results_per_query}
        options.update(overrides)
        return SearchOptions(**options)

    def _prioritized(self, ctx: RunContext, agents: list[SearchAgent]) -> list[SearchAgent]:
        """Order agents by query priority; equal scores keep their original order."""
        queue: PriorityWorkQueue[SearchAgent] = PriorityWorkQueue(self.services.prioritizer)
        for agent in agents:
            queue.put_query(agent.query, agent, user_tier=ctx.request.user_tier)
        ordered = []
        while not queue.empty():
            ordered.append(queue.get_nowait())
        return ordered

    async def _run_agent(
        self,
        ctx: RunContext,
        agent: SearchAgent,
        options: SearchOptions,
        degraded_fallback: bool = False,
    ) -> list[Document]:
        """Run one retrieval agent. A failed agent contributes no documents."""
        agent.start()
        ctx.stream.emit_agent_update(agent.to_dict())
        search = self.services.search
        try:
            if degraded_fallback:
                response = await search.search_with_fallback(agent.query, options)
            else:
                response = await search.search(agent.query, options)
        except _RUN_STOPPERS:
            raise
        except Exception as e:
            self.services.tracker.track(e, "agent.search")
            agent.fail(str(e))
            ctx.stream.emit_agent_update(agent.to_dict())
            logger.warning("agent_failed", agent=agent.id, query=agent.query, error=str(e))
            return []

        documents = search.to_documents(response.results)
        agent.complete(len(documents))
        ctx.stream.emit_agent_update(agent.to_dict())
        logger.debug("agent_completed", agent=agent.id, results=len(documents))
        return documents

    async def _run_agents(
        self,
        ctx: RunContext,
        agents: list[SearchAgent],
        options: SearchOptions,
        launch_delay: float = 0.0,
        degraded_fallback: bool = False,
    ) -> list[Document]:
        """Launch agents (optionally staggered) and join them with an all-complete barrier."""
        tasks: list[asyncio.Task] = []
        try:
            for n, agent in enumerate(agents):
                if n and launch_delay:
                    await ctx.guard.sleep(launch_delay)
                tasks.append(asyncio.create_task(self._run_agent(ctx, agent, options, degraded_fallback)))
            results = await ctx.guard.run(asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        documents: list[Document] = []
        for batch in results:
            documents.extend(batch)
        return documents

    # --------------------------------------------------------------------- run

    def _new_context(self, request: SearchRequest, token: CancellationToken | None) -> RunContext:
        run_id = uuid.uuid4().hex
        guard = RunGuard(token or CancellationToken(), RunDeadline(self.settings.run_deadline_seconds))
        return RunContext(
            request=request,
            mode_config=self.mode_config,
            stream=EventStream(run_id),
            guard=guard,
            run_id=run_id,
        )

    async def _execute(self, ctx: RunContext) -> None:
        structlog.contextvars.bind_contextvars(run_id=ctx.run_id, mode=self.mode.value)
        logger.info("run_started", query=ctx.request.query[:120])
        try:
            await self.graph.ainvoke(
                {"context": ctx, "plan": None, "step_index": 0},
                config={"recursion_limit": 50},
            )
            logger.info("run_completed", duration=round(ctx.elapsed(), 3))
        except asyncio.CancelledError:
            logger.info("run_task_cancelled")
            raise
        except Exception as e:
            if not isinstance(e, StepExecutionError):
                self.services.tracker.track(e, f"run.{self.mode.value}")
            logger.error("run_failed", error=str(e), error_type=type(e).__name__)
            ctx.stream.emit_error(user_message(e), classify_error(e).value)
        finally:
            ctx.stream.close()
            structlog.contextvars.unbind_contextvars("run_id", "mode")

    async def run(
        self, request: SearchRequest, token: CancellationToken | None = None
    ) -> AsyncIterator[OrchestratorEvent]:
        """
        Execute one run and yield its events in order; ``end`` is always last.

        Closing the iterator early cancels the run.
        """
        ctx = self._new_context(request, token)
        task = asyncio.create_task(self._execute(ctx))
        try:
            async for event in ctx.stream.events():
                yield event
            await task
        finally:
            if not task.done():
                ctx.guard.token.cancel("consumer went away")
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

    def plan_and_execute(
        self, request: SearchRequest, token: CancellationToken | None = None
    ) -> AsyncIterator[OrchestratorEvent]:
        return self.run(request, token)
