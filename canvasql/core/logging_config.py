"""Structured logging configuration via structlog.

Context bound through structlog.contextvars is merged into every log line:
request_id (ObservabilityMiddleware), flow_id and operator (flow_context(),
bound by the flow store, the flow executor and the compile route).
Wraps stdlib logging so existing logging.getLogger(__name__) calls get structured output.
"""

import logging
import sys
from contextlib import AbstractContextManager

import structlog

from canvasql.core.config import settings


def flow_context(flow_id: str | None = None, operator=None) -> AbstractContextManager:
    """Bind flow_id/operator to every log line emitted inside the block.

    Arguments left as None are not bound, so an outer binding stays visible.
    """
    bound = {}
    if flow_id is not None:
        bound["flow_id"] = flow_id
    if operator is not None:
        bound["operator"] = getattr(operator, "value", operator)
    return structlog.contextvars.bound_contextvars(**bound)


def clip_sql(logger, method_name: str, event_dict: dict) -> dict:
    """Shorten a generated ``sql`` field to settings.log_sql_max_chars."""
    sql = event_dict.get("sql")
    limit = settings.log_sql_max_chars
    if isinstance(sql, str) and len(sql) > limit:
        event_dict["sql"] = sql[:limit] + f"... [{len(sql) - limit} chars clipped]"
    return event_dict


def configure_logging() -> None:
    """Configure structlog as the logging backend. Call once at app startup."""
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        clip_sql,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.app_env == "development":
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level.upper())

    # Quiet noisy libraries
    logging.getLogger("sqlglot").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
