"""
Structured logging configuration
"""
import structlog
import logging
import sys

from flyer_engine.config import settings


def setup_logging(json_output: bool = True, level: int = logging.INFO):
    """Configure structlog on top of stdlib logging.

    JSON lines in production, a readable console renderer while debugging.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger("flyer_engine")


# Global logger instance
logger = setup_logging(
    json_output=not settings.DEBUG,
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
)
