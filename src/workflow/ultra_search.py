"""Ultra mode: taxonomy-wide fan-out in batches, then a cross-validation round."""

from __future__ import annotations

import asyncio

import structlog
from langchain_core.messages import HumanMessage

from src.config.modes import SearchMode
from src.resilience.errors import RunCancelledError, RunDeadlineExceededError
from src.search.models import Document, SearchOptions
from src.utils.text import parse_query_lines
from src.workflow.orchestrator import dedupe_documents
from src.workflow.pro_search import ProSearchOrchestrator, fit_query_count
from src.workflow.prompts import CROSS_VALIDATION_PROMPT, ULTRA_EXPANSION_PROMPT
from src.workflow.state import AgentStatus, RunContext, SearchAgent

logger = structlog.get_logger(__name__)

ULTRA_MIN_QUERIES = 8
ULTRA_MAX_QUERIES = 12
VALIDATION_MIN_QUERIES = 3
VALIDATION_MAX_QUERIES = 5

ULTRA_ENGINES = [
    "google",
    "bing",
    "duckduckgo",
    "startpage",
    "searx",
    "semantic scholar",
    "arxiv",
    "pubmed",
    "wikipedia",
]

ULTRA_TAXONOMY_TEMPLATES = [
    "{query} background and fundamentals",
    "{query} history and evolution",
    "{query} current state",
    "{query} expert opinions",
    "{query} comparison with alternatives",
    "{query} technical details",
    "{query} case studies and examples",
    "{query} future trends and implications",
    "{query} criticism and limitations",
    "{query} related fields",
    "{query} practical applications",
    "{query} open questions and research gaps",
]

VALIDATION_TEMPLATES = [
    "{query} evidence and data",
    "{query} criticism and counterarguments",
    "{query} latest research findings",
    "{query} conflicting reports",
    "{query} expert consensus",
]

CROSS_VALIDATION_DOCS = 20
FINDING_SUMMARY_CHARS = 200


def batched(items: list, size: int) -> list[list]:
    size = max(1, size)
    return [items[i : i + size] for i in range(0, len(items), size)]


class UltraSearchOrchestrator(ProSearchOrchestrator):
    """Widest fan-out with cross-validation and replanning telemetry."""

    mode = SearchMode.ULTRA

    async def analyze_query(self, ctx: RunContext) -> None:
        generated = await self._expand(ctx, ULTRA_EXPANSION_PROMPT)
        ctx.search_query = ctx.request.query
        ctx.queries = fit_query_count(
            generated, ctx.request.query, ULTRA_TAXONOMY_TEMPLATES, ULTRA_MIN_QUERIES, ULTRA_MAX_QUERIES
        )
        logger.info("queries_expanded", generated=len(generated), used=len(ctx.queries))

    async def search_web(self, ctx: RunContext) -> None:
        agents = [SearchAgent(id=f"agent-{i}", query=query) for i, query in enumerate(ctx.queries)]
        ctx.agents = agents
        ctx.stream.emit_agents([agent.to_dict() for agent in agents])
        options = self._search_options(engines=ULTRA_ENGINES)

        monitor = asyncio.create_task(self._replanning_monitor(ctx))
        try:
            ctx.documents.extend(await self._run_batches(ctx, self._prioritized(ctx, agents), options))
            if self.settings.ultra_cross_validation:
                await self._cross_validate(ctx, options)
        finally:
            monitor.cancel()
            await asyncio.gather(monitor, return_exceptions=True)

    async def _run_batches(self, ctx: RunContext, agents: list[SearchAgent], options: SearchOptions) -> list[Document]:
        """Run agents in parallel batches no larger than the configured limit."""
        documents: list[Document] = []
        for n, batch in enumerate(batched(agents, self.settings.ultra_parallel_agents)):
            if n:
                await ctx.guard.sleep(self.settings.ultra_batch_pause)
            logger.info("batch_started", batch=n, size=len(batch))
            documents.extend(await self._run_agents(ctx, batch, options))
        return documents

    async def _cross_validate(self, ctx: RunContext, options: SearchOptions) -> None:
        """Look for contradictions and gaps, then search 3-5 validation queries."""
        findings = "\n".join(
            f"- {doc.title}: {doc.page_content[:FINDING_SUMMARY_CHARS]}"
            for doc in dedupe_documents(ctx.documents)[:CROSS_VALIDATION_DOCS]
        )
        prompt = CROSS_VALIDATION_PROMPT.format(query=ctx.request.query, findings=findings or "No findings yet.")
        try:
            text = await ctx.guard.run(self.services.chat_llm.complete([HumanMessage(content=prompt)]))
        except (RunCancelledError, RunDeadlineExceededError):
            raise
        except Exception as e:
            logger.warning("cross_validation_analysis_failed_using_templates", error=str(e))
            text = ""

        ctx.validation_queries = fit_query_count(
            parse_query_lines(text),
            ctx.request.query,
            VALIDATION_TEMPLATES,
            VALIDATION_MIN_QUERIES,
            VALIDATION_MAX_QUERIES,
        )
        agents = [
            SearchAgent(id=f"validation-agent-{i}", query=query) for i, query in enumerate(ctx.validation_queries)
        ]
        ctx.agents.extend(agents)
        ctx.stream.emit_progress(
            "cross_validation", "Cross-validating findings", f"{len(agents)} validation queries"
        )
        ctx.stream.emit_agents([agent.to_dict() for agent in ctx.agents])

        documents = await self._run_batches(ctx, agents, options)
        ctx.documents.extend(documents)
        logger.info("cross_validation_completed", queries=len(agents), documents=len(documents))

    def _replanning_check(self, ctx: RunContext) -> bool:
        """Report agent progress; True once enough agents have completed to stop checking."""
        total = len(ctx.agents)
        completed = sum(1 for agent in ctx.agents if agent.status == AgentStatus.COMPLETED)
        failed = sum(1 for agent in ctx.agents if agent.status == AgentStatus.FAILED)
        logger.info("replanning_check", completed=completed, failed=failed, total=total)
        if completed:
            ctx.stream.emit_progress(
                "dynamic_replan",
                "Analyzing progress and adapting strategy",
                f"{completed} agents completed, {failed} failed",
                min(95, int(60 + completed / total * 25)),
            )
        return total > 0 and completed >= total * self.settings.ultra_replanning_stop_ratio

    async def _replanning_monitor(self, ctx: RunContext) -> None:
        """Telemetry only: never changes the executing plan."""
        while True:
            await asyncio.sleep(self.settings.ultra_replanning_interval)
            if self._replanning_check(ctx):
                logger.info("replanning_monitor_stopped")
                return
