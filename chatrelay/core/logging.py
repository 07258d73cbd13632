import logging
import sys

import structlog

from chatrelay.core.config import Environment, settings


def setup_logging() -> None:
    """
    Configure structlog once for the whole process.
    JSON lines in production (for log shippers), pretty console output everywhere else.
    """
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    if settings.ENVIRONMENT == Environment.PRODUCTION:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


setup_logging()

# usage: logger.info("event_name", key=value)
logger = structlog.get_logger(settings.PROJECT_NAME)
