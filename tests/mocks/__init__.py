"""Mock objects for testing."""

from tests.mocks.mock_llm import MockChatModel, MockMessage
from tests.mocks.mock_scraper import MockScraper
from tests.mocks.mock_search import MockSearchProvider
from tests.mocks.services import build_services, make_settings

__all__ = [
    "MockChatModel",
    "MockMessage",
    "MockSearchProvider",
    "MockScraper",
    "build_services",
    "make_settings",
]
