"""
Logging configuration for MCP Kit.

Both structlog loggers and plain ``logging`` loggers end up in one handler
that renders through structlog, so ``extra={...}`` fields on stdlib records
show up as keys next to the event just like structlog keyword arguments.
"""

import logging
import sys
from typing import List, Optional, TextIO, Union

import structlog

from mcp_kit.core.config import Settings, get_settings


def _shared_processors() -> List[structlog.types.Processor]:
    return [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def setup_logging(settings: Optional[Settings] = None, stream: Optional[TextIO] = None) -> None:
    """
    Setup structured logging for the application.

    The stdio transport owns stdout for protocol traffic, so logs default to
    stderr there and to stdout for the HTTP transport.
    """
    settings = settings or get_settings()
    if stream is None:
        stream = sys.stderr if settings.TRANSPORT == "stdio" else sys.stdout

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[*_shared_processors(), structlog.stdlib.ExtraAdder()],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _get_renderer(settings),
        ],
    )
    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper()))

    # uvicorn installs its own handlers; route its records through ours
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = []
        uvicorn_logger.propagate = True


def _get_renderer(settings: Settings) -> Union[structlog.processors.JSONRenderer, structlog.dev.ConsoleRenderer]:
    """Get the appropriate log renderer based on configuration."""
    if settings.LOG_FORMAT.lower() == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
