"""
Logging Configuration

Structured logging setup using structlog for consistent, JSON-formatted logs
throughout the crawler.
"""

import logging
import sys
from typing import Optional

import structlog
from structlog.stdlib import LoggerFactory
from pythonjsonlogger import jsonlogger

from job_crawler.core.config import get_settings


def configure_logging(
    level: Optional[str] = None,
    debug: Optional[bool] = None,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure structured logging for the crawler.

    Args:
        level: Log level name, defaults to ``LOG_LEVEL``
        debug: Pretty console output instead of JSON, defaults to ``DEBUG``
        log_file: Optional path for a JSON log file, defaults to ``LOG_FILE``
    """
    settings = get_settings()
    level = (level or settings.LOG_LEVEL).upper()
    debug = settings.DEBUG if debug is None else debug
    log_file = log_file or settings.LOG_FILE

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.contextvars.merge_contextvars,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if debug
            else structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level, logging.INFO),
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            jsonlogger.JsonFormatter(
                "%(asctime)s %(name)s %(levelname)s %(message)s"
            )
        )
        logging.getLogger().addHandler(file_handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        structlog.stdlib.BoundLogger: Configured logger instance
    """
    return structlog.get_logger(name)


def log_scraping_activity(
    action: str,
    url: Optional[str] = None,
    kind: Optional[str] = None,
    **kwargs
) -> None:
    """
    Log crawl activity for a single task.

    Args:
        action: Action being performed (fetch, retry, saved, abandoned, ...)
        url: URL being crawled
        kind: Task kind (listing or detail)
        **kwargs: Additional crawl data
    """
    logger = get_logger("scraping")
    logger.info(
        "Scraping activity",
        action=action,
        url=url,
        kind=kind,
        **kwargs
    )
