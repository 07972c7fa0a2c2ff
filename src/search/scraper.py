"""Fetch user-supplied links and turn them into answer context."""

import re

import aiohttp
import structlog
from bs4 import BeautifulSoup
from markdownify import markdownify

from src.search.models import Document, ScrapedContent

logger = structlog.get_logger(__name__)

# Tags that never carry readable page text
NOISE_TAGS = ["script", "style", "nav", "header", "footer", "aside", "noscript", "form", "iframe"]


class WebScraper:
    """Fetch pages linked from a query and render their main content."""

    def __init__(
        self,
        timeout: int = 30,
        max_chars: int = 20000,
        session: aiohttp.ClientSession | None = None,
    ):
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_chars = max_chars
        self.headers = {"User-Agent": "Mozilla/5.0 (compatible; AnswerEngine/1.0)"}
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers=self.headers)
        return self._session

    async def fetch(self, url: str) -> ScrapedContent:
        """Download a page and extract its title and readable content.

        Raises:
            aiohttp.ClientError: when the page cannot be fetched or returns an error status
        """
        async with self._get_session().get(url) as response:
            response.raise_for_status()
            html = await response.text()
        page = extract_page(html, url, self.max_chars)
        logger.debug("link_fetched", url=url, chars=len(page.content))
        return page

    async def scrape_as_document(self, url: str) -> Document:
        page = await self.fetch(url)
        return Document(
            page_content=page.markdown or page.content,
            metadata={"title": page.title, "url": url, "source": url},
        )

    async def aclose(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()


def extract_page(html: str, url: str, max_chars: int = 20000) -> ScrapedContent:
    """Reduce an HTML page to its title, plain text and markdown body."""
    soup = BeautifulSoup(html, "html.parser")
    title = page_title(soup) or url

    for tag in soup(NOISE_TAGS):
        tag.decompose()
    body = soup.find("article") or soup.find("main") or soup.body or soup

    text = re.sub(r"\s+", " ", body.get_text(separator=" ", strip=True)).strip()
    markdown = markdownify(str(body), heading_style="ATX", bullets="-")
    markdown = re.sub(r"\n{3,}", "\n\n", markdown).strip()

    return ScrapedContent(url=url, title=title, content=text[:max_chars], markdown=markdown[:max_chars] or None)


def page_title(soup: BeautifulSoup) -> str:
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    og_title = soup.find("meta", property="og:title")
    if og_title and og_title.get("content"):
        return og_title["content"].strip()
    heading = soup.find("h1")
    return heading.get_text(strip=True) if heading else ""
