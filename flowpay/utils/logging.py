"""Structured logging setup."""

import logging
import sys

import structlog
from pythonjsonlogger import jsonlogger

from flowpay.config import get_settings

# Per-request chatter; the executor logs one line per outcome instead.
QUIET_LOGGERS = ("httpx", "httpcore", "web3", "urllib3", "sqlalchemy.engine")


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    return logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_logging(level: str | None = None) -> None:
    """Route stdlib and structlog output to stdout.

    Args:
        level: Overrides FLOWPAY_LOG_LEVEL when given.
    """
    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    log_level = getattr(logging, level_name)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_build_formatter(settings.log_format))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.getLogger(__name__).debug(
        f"Logging configured: level={level_name}, format={settings.log_format}"
    )
