"""Application settings with environment variable support."""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Settings
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(default=False, description="Render log lines as JSON instead of console text")

    # Embedding Settings
    embedding_provider: Literal["openai", "mock"] = Field(
        default="openai", description="Embedding provider"
    )
    embedding_dimension: int = Field(default=1536, description="Embedding vector dimension")

    # OpenAI (chat + embeddings)
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_base_url: Optional[str] = Field(
        default=None, description="OpenAI API base URL (for OpenRouter or any OpenAI-compatible API)"
    )
    openai_embedding_model: str = Field(default="text-embedding-3-small", description="OpenAI embedding model")

    # Anthropic (for Claude models)
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API key")

    # Search Settings
    search_provider: Literal["searxng", "mock"] = Field(default="searxng", description="Search provider")

    # SearXNG
    searxng_instance_url: str = Field(default="http://localhost:8080", description="SearXNG instance URL")
    searxng_language: str = Field(default="en", description="SearXNG search language")
    searxng_safesearch: int = Field(default=0, description="SearXNG safe search level")
    searxng_max_results: int = Field(default=20, description="Default max results per SearXNG query")
    searxng_timeouts: list[float] = Field(
        default=[5.0, 8.0, 12.0], description="Per-attempt request timeouts in seconds"
    )
    searxng_cache_ttl: float = Field(default=300.0, description="Local SearXNG result cache TTL in seconds")
    searxng_fallback_engines: str = Field(default="google,bing", description="Engines used by the degraded fallback")
    searxng_fallback_max_results: int = Field(default=20, description="Result cap for the degraded fallback")
    searxng_health_timeout: float = Field(default=5.0, description="Health probe timeout in seconds")

    # Web Scraper Settings
    scraper_timeout: int = Field(default=30, description="Web scraper timeout in seconds")

    # Attachments
    uploads_dir: str = Field(default="./uploads", description="Directory holding extracted attachment data")

    # LLM Settings
    llm_mode: Literal["live", "mock"] = Field(default="live", description="LLM mode: live or mock")
    chat_model: str = Field(default="openai:gpt-4o-mini", description="Chat model for answers and expansion")
    chat_model_max_tokens: int = Field(default=2048, description="Chat model max tokens")
    planning_model: str = Field(default="openai:gpt-4o-mini", description="Model used for search planning")
    planning_model_max_tokens: int = Field(default=512, description="Planning model max tokens")

    # Circuit breakers
    searxng_breaker_threshold: int = Field(default=5, description="SearXNG failures before opening")
    searxng_breaker_recovery: float = Field(default=30.0, description="SearXNG breaker recovery timeout (s)")
    llm_breaker_threshold: int = Field(default=3, description="LLM failures before opening")
    llm_breaker_recovery: float = Field(default=60.0, description="LLM breaker recovery timeout (s)")
    embedding_breaker_threshold: int = Field(default=3, description="Embedding failures before opening")
    embedding_breaker_recovery: float = Field(default=45.0, description="Embedding breaker recovery timeout (s)")

    # Retry policies
    search_retry_attempts: int = Field(default=3, description="Search retry attempts")
    search_retry_base_delay: float = Field(default=1.0, description="Search retry base delay (s)")
    search_retry_max_delay: float = Field(default=10.0, description="Search retry max delay (s)")
    search_retry_multiplier: float = Field(default=2.0, description="Search retry backoff multiplier")
    api_retry_attempts: int = Field(default=2, description="API retry attempts")
    api_retry_base_delay: float = Field(default=0.5, description="API retry base delay (s)")
    api_retry_max_delay: float = Field(default=5.0, description="API retry max delay (s)")
    api_retry_multiplier: float = Field(default=1.5, description="API retry backoff multiplier")

    # Cache regions (entries, bytes, seconds)
    cache_global_max_entries: int = Field(default=500)
    cache_global_max_size: int = Field(default=50 * 1024 * 1024)
    cache_global_ttl: float = Field(default=15 * 60)
    cache_search_max_entries: int = Field(default=200)
    cache_search_max_size: int = Field(default=20 * 1024 * 1024)
    cache_search_ttl: float = Field(default=5 * 60)
    cache_embedding_max_entries: int = Field(default=1000)
    cache_embedding_max_size: int = Field(default=100 * 1024 * 1024)
    cache_embedding_ttl: float = Field(default=60 * 60)
    cache_api_max_entries: int = Field(default=100)
    cache_api_max_size: int = Field(default=10 * 1024 * 1024)
    cache_api_ttl: float = Field(default=10 * 60)

    # Connection pool
    max_concurrent_searches: int = Field(default=10, description="Concurrent outbound searches")
    pool_idle_timeout: float = Field(default=30.0, description="Idle connection slot timeout (s)")
    pool_acquire_timeout: float = Field(default=30.0, description="Max wait for a connection slot (s)")

    # Run control
    run_deadline_seconds: float = Field(default=300.0, description="Overall deadline for one orchestration run")
    pro_search_delay: float = Field(default=0.5, description="Delay between Pro agent launches (s)")
    ultra_parallel_agents: int = Field(default=12, description="Ultra agents per parallel batch")
    ultra_batch_pause: float = Field(default=1.0, description="Pause between Ultra batches (s)")
    ultra_replanning_interval: float = Field(default=45.0, description="Ultra replanning check interval (s)")
    ultra_replanning_stop_ratio: float = Field(default=0.8, description="Agent completion ratio that stops replanning")
    ultra_cross_validation: bool = Field(default=True, description="Run the Ultra cross-validation round")

    # Prompt context
    chat_history_limit: int = Field(default=6, description="Chat messages to include in prompts")
    debug_mode: bool = Field(default=False, description="Enable debug logging")

    @property
    def fallback_engines(self) -> list[str]:
        """Engines for the degraded SearXNG fallback."""
        return [item.strip() for item in self.searxng_fallback_engines.split(",") if item.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
