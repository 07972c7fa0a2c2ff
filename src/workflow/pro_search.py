"""Pro mode: 4-6 expanded queries, one agent each."""

from __future__ import annotations

import structlog
from langchain_core.messages import HumanMessage

from src.config.modes import SearchMode
from src.resilience.errors import RunCancelledError, RunDeadlineExceededError
from src.utils.chat_history import format_chat_history
from src.utils.text import parse_query_lines
from src.workflow.orchestrator import SearchOrchestrator
from src.workflow.prompts import PRO_EXPANSION_PROMPT
from src.workflow.state import RunContext, SearchAgent

logger = structlog.get_logger(__name__)

PRO_MIN_QUERIES = 4
PRO_MAX_QUERIES = 6

PRO_QUERY_TEMPLATES = [
    "{query} latest developments",
    "{query} expert analysis",
    "{query} comparison and alternatives",
    "{query} practical applications",
    "{query} overview",
    "{query} case studies",
]


def fit_query_count(
    generated: list[str], query: str, templates: list[str], minimum: int, maximum: int
) -> list[str]:
    """Pad with templated queries up to ``minimum`` and trim to ``maximum``."""
    queries: list[str] = []
    seen: set[str] = set()
    for candidate in generated + [template.format(query=query) for template in templates]:
        if len(queries) >= maximum:
            break
        if candidate in generated or len(queries) < minimum:
            key = candidate.lower()
            if key not in seen:
                seen.add(key)
                queries.append(candidate)
    return queries


class ProSearchOrchestrator(SearchOrchestrator):
    """Topically diverse fan-out with a recall-oriented rerank threshold."""

    mode = SearchMode.PRO

    async def _expand(self, ctx: RunContext, template: str) -> list[str]:
        request = ctx.request
        prompt = template.format(
            chat_history=format_chat_history(request.history, self.settings.chat_history_limit),
            query=request.query,
        )
        try:
            text = await ctx.guard.run(self.services.chat_llm.complete([HumanMessage(content=prompt)]))
        except (RunCancelledError, RunDeadlineExceededError):
            raise
        except Exception as e:
            logger.warning("query_expansion_failed_using_templates", error=str(e))
            return []
        return parse_query_lines(text)

    async def analyze_query(self, ctx: RunContext) -> None:
        generated = await self._expand(ctx, PRO_EXPANSION_PROMPT)
        ctx.search_query = ctx.request.query
        ctx.queries = fit_query_count(
            generated, ctx.request.query, PRO_QUERY_TEMPLATES, PRO_MIN_QUERIES, PRO_MAX_QUERIES
        )
        logger.info("queries_expanded", generated=len(generated), used=len(ctx.queries))

    async def search_web(self, ctx: RunContext) -> None:
        agents = [SearchAgent(id=f"pro-agent-{i}", query=query) for i, query in enumerate(ctx.queries)]
        ctx.agents = agents
        ctx.stream.emit_agents([agent.to_dict() for agent in agents])

        documents = await self._run_agents(
            ctx,
            self._prioritized(ctx, agents),
            self._search_options(time_range="year"),
            launch_delay=self.settings.pro_search_delay,
        )
        ctx.documents.extend(documents)
