"""
Structured logging for the shop API.

Every event is a structlog event name plus key/value fields, rendered as JSON
(or as coloured console lines when DEBUG is on). Request middleware binds
request_id, method and path through contextvars, and every event carries the
app name and environment.
"""
import logging
import sys
from typing import Any, Dict, List, Optional

import structlog
from pythonjsonlogger import jsonlogger

from config import Settings, get_settings

_app_context: Dict[str, str] = {}

# Libraries that log every query or connection at INFO
QUIET_LOGGERS = ("httpx", "aiosqlite", "asyncpg", "uvicorn.access")


def add_app_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Stamp app_name and app_env onto every event."""
    for key, value in _app_context.items():
        event_dict.setdefault(key, value)
    return event_dict


def _processors(debug: bool) -> List[Any]:
    renderer = structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_app_context,
        renderer,
    ]


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Safe to call more than once (each app instance calls it); the root
    handler is replaced, not duplicated.

    Args:
        settings: Settings (defaults to get_settings())
    """
    settings = settings or get_settings()
    _app_context.update(app_name=settings.app_name, app_env=settings.app_env)

    structlog.configure(
        processors=_processors(settings.debug),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(settings.log_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
        renderer="console" if settings.debug else "json",
    )
