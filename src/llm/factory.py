"""Build the chat models used for planning, expansion and answer synthesis."""

from __future__ import annotations

from typing import Callable

import structlog
from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI

from src.config.settings import Settings
from src.llm.mock import MockChatModel

logger = structlog.get_logger(__name__)

OPENROUTER_HEADERS = {
    "HTTP-Referer": "https://github.com/answer-engine",
    "X-Title": "Answer Engine",
}


def parse_model_spec(spec: str) -> tuple[str, str]:
    """Split ``provider:model``; a bare model name is an OpenAI-compatible model."""
    provider, sep, model_name = spec.partition(":")
    if not sep:
        return "openai", spec
    provider = provider.strip().lower()
    return ("anthropic" if provider == "claude" else provider), model_name.strip()


def _openai_model(model_name: str, settings: Settings, max_tokens: int, temperature: float) -> BaseChatModel:
    if not settings.openai_api_key:
        raise ValueError("OpenAI API key not configured")
    extra: dict = {}
    if settings.openai_base_url:
        extra["base_url"] = settings.openai_base_url
        if "openrouter.ai" in settings.openai_base_url:
            extra["default_headers"] = OPENROUTER_HEADERS
    # Retries are applied by ResilientChatModel
    return ChatOpenAI(
        model=model_name,
        api_key=settings.openai_api_key,
        max_tokens=max_tokens,
        temperature=temperature,
        max_retries=0,
        **extra,
    )


def _anthropic_model(model_name: str, settings: Settings, max_tokens: int, temperature: float) -> BaseChatModel:
    if not settings.anthropic_api_key:
        raise ValueError("Anthropic API key not configured")
    return ChatAnthropic(
        model=model_name,
        api_key=settings.anthropic_api_key,
        max_tokens=max_tokens,
        temperature=temperature,
        max_retries=0,
    )


BUILDERS: dict[str, Callable[[str, Settings, int, float], BaseChatModel]] = {
    "openai": _openai_model,
    "anthropic": _anthropic_model,
}


def create_chat_model(
    model_str: str,
    settings: Settings,
    max_tokens: int,
    temperature: float = 0.7,
) -> BaseChatModel:
    """Create a chat model from a ``provider:model`` string.

    ``llm_mode=mock`` (or a ``mock`` model string) returns the offline model regardless of provider.

    Raises:
        ValueError: unknown provider or missing API key
    """
    if settings.llm_mode == "mock" or model_str.startswith("mock"):
        logger.info("using_mock_llm", requested=model_str)
        return MockChatModel()

    provider, model_name = parse_model_spec(model_str)
    builder = BUILDERS.get(provider)
    if builder is None:
        raise ValueError(f"Unsupported LLM provider: {provider}")

    logger.debug("creating_chat_model", provider=provider, model=model_name, max_tokens=max_tokens)
    return builder(model_name, settings, max_tokens, temperature)
