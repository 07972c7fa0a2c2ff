"""Run the answer engine API server: ``python -m src``."""

import structlog
import uvicorn

from src.config.logging_config import configure_logging
from src.config.settings import get_settings

logger = structlog.get_logger(__name__)


def main():
    """Start the FastAPI server."""
    settings = get_settings()
    configure_logging(
        debug_mode=settings.debug_mode,
        log_level=None if settings.debug_mode else settings.log_level,
        json_logs=settings.log_json,
    )

    logger.info(
        "Starting answer engine",
        host=settings.api_host,
        port=settings.api_port,
        search_provider=settings.search_provider,
        llm_mode=settings.llm_mode,
    )
    uvicorn.run(
        "src.api.app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
