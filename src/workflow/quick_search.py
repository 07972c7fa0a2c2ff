"""Quick mode: one rephrased query, one agent, minimum latency."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog
from langchain_core.messages import HumanMessage

from src.config.modes import SearchMode
from src.resilience.cache import API_REGION
from src.resilience.errors import RunCancelledError, RunDeadlineExceededError
from src.search.models import Document
from src.utils.chat_history import format_chat_history
from src.utils.text import extract_block
from src.workflow.orchestrator import SearchOrchestrator
from src.workflow.prompts import REPHRASE_PROMPT
from src.workflow.state import RunContext, SearchAgent

logger = structlog.get_logger(__name__)

NOT_NEEDED = "not_needed"
SUMMARIZE = "summarize"


@dataclass
class Rephrased:
    question: str
    links: list[str] = field(default_factory=list)

    @property
    def not_needed(self) -> bool:
        return self.question.strip().lower() == NOT_NEEDED


def parse_rephrase(text: str, fallback: str) -> Rephrased:
    """Read the ``<question>`` and ``<links>`` blocks of the rephrase output."""
    question = extract_block(text, "question")
    if question is None:
        question = (text or "").strip()
    links_block = extract_block(text, "links") or ""
    links = [line.strip() for line in links_block.splitlines() if line.strip().startswith("http")]
    return Rephrased(question=question or fallback, links=links)


class QuickSearchOrchestrator(SearchOrchestrator):
    """Single rephrased query with a high rerank threshold."""

    mode = SearchMode.QUICK

    async def analyze_query(self, ctx: RunContext) -> None:
        request = ctx.request
        prompt = REPHRASE_PROMPT.format(
            chat_history=format_chat_history(request.history, self.settings.chat_history_limit),
            query=request.query,
        )
        try:
            text = await ctx.guard.run(self.services.chat_llm.complete([HumanMessage(content=prompt)]))
        except (RunCancelledError, RunDeadlineExceededError):
            raise
        except Exception as e:
            logger.warning("rephrase_failed_using_original_query", error=str(e))
            text = ""

        rephrased = parse_rephrase(text, request.query)
        if rephrased.not_needed and not rephrased.links:
            ctx.skip_search = True
            ctx.search_query = request.query
            logger.info("search_not_needed")
            return

        ctx.search_query = rephrased.question
        ctx.queries = [rephrased.question]
        ctx.links = rephrased.links
        logger.info("query_rephrased", question=rephrased.question[:120], links=len(rephrased.links))

    async def search_web(self, ctx: RunContext) -> None:
        agent = SearchAgent(id="quick-agent-0", query=ctx.search_query)
        ctx.agents = [agent]
        ctx.stream.emit_agents([agent.to_dict()])

        if ctx.links:
            documents = await self._fetch_links(ctx, agent)
        else:
            documents = await self._run_agents(ctx, [agent], self._search_options(), degraded_fallback=True)
        ctx.documents.extend(documents)

    async def _fetch_links(self, ctx: RunContext, agent: SearchAgent) -> list[Document]:
        """Fetch user-supplied links directly instead of searching."""
        agent.start()
        ctx.stream.emit_agent_update(agent.to_dict())

        documents: list[Document] = []
        for link in ctx.links:
            try:
                documents.append(await ctx.guard.run(self._fetch_link(link)))
            except (RunCancelledError, RunDeadlineExceededError):
                raise
            except Exception as e:
                self.services.tracker.track(e, "quick.fetch_link")
                logger.warning("link_fetch_failed", url=link, error=str(e))

        agent.complete(len(documents))
        ctx.stream.emit_agent_update(agent.to_dict())
        return documents

    async def _fetch_link(self, url: str) -> Document:
        """Fetched pages are reused for a while across runs."""
        return await self.services.cache.get_or_set(
            API_REGION, f"link:{url}", lambda: self.services.scraper.scrape_as_document(url)
        )
