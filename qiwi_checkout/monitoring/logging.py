"""
Structured logging configuration.

structlog renders every event as one JSON document; the stdlib root logger
wraps it with python-json-logger so that library loggers (uvicorn,
SQLAlchemy, httpx) share the same stdout stream and format.
"""
import logging
import sys
from typing import Any, Callable, Dict, List

import structlog
from pythonjsonlogger import jsonlogger

from qiwi_checkout.config import Settings

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

EventDict = Dict[str, Any]


def app_context_processor(settings: Settings) -> Callable[[Any, str, EventDict], EventDict]:
    """
    Build a processor stamping application name and environment on events.

    Args:
        settings: Application settings

    Returns:
        Callable: structlog processor
    """
    app_name = settings.app_name
    app_env = settings.app_env

    def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("app_name", app_name)
        event_dict.setdefault("app_env", app_env)
        return event_dict

    return add_app_context


def build_processors(settings: Settings) -> List[Any]:
    """structlog processor chain, ending with the JSON renderer."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        app_context_processor(settings),
        structlog.processors.JSONRenderer(),
    ]


def _configure_root_logger(settings: Settings) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    # SQL statements only when database_echo is on
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )


def setup_logging(settings: Settings) -> None:
    """
    Configure structlog and the stdlib root logger.

    Safe to call more than once; each call replaces the previous handlers.

    Args:
        settings: Application settings (log level, app name, environment)
    """
    structlog.configure(
        processors=build_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configure_root_logger(settings)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
        sql_echo=settings.database_echo,
    )
