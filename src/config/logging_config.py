"""Logging configuration for the application.

structlog renders every line; run-scoped fields (run_id, mode) are bound through
structlog contextvars by the orchestrator, so every line emitted during a run
carries them.
"""

import logging
import sys

import structlog

NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "asyncio", "aiohttp", "openai", "anthropic")


def resolve_level(debug_mode: bool, log_level: str | None) -> int:
    if log_level:
        level = logging.getLevelName(log_level.upper())
        return level if isinstance(level, int) else logging.INFO
    return logging.DEBUG if debug_mode else logging.INFO


def configure_logging(debug_mode: bool = False, log_level: str | None = None, json_logs: bool = False):
    """Configure structlog and standard logging.

    Args:
        debug_mode: Enable debug logging if True
        log_level: Explicit level name, overrides debug_mode when given
        json_logs: Emit one JSON object per line instead of console output
    """
    level = resolve_level(debug_mode, log_level)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
    ]
    if json_logs:
        processors += [
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors += [
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
            structlog.dev.set_exc_info,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(
                colors=sys.stdout.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
