"""structlog setup for the relay process.

Relay modules log through ``structlog.get_logger()``; uvicorn and httpx
log through the stdlib. Both end up in one stdout handler with the same
renderer, so a request line from uvicorn and a ``sync_completed`` event
look alike in the output.
"""

from __future__ import annotations

import logging
import sys

import structlog

# Per-request chatter from these libraries drowns out relay events at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

# uvicorn installs its own handlers on these; they should propagate to root instead.
_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _pre_chain() -> list[structlog.types.Processor]:
    """Processors applied to structlog events and foreign stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def _renderer_chain(json: bool) -> list[structlog.types.Processor]:
    if json:
        # Tracebacks as structured data keep one JSON object per line.
        return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer()]


def _route_library_loggers(root_level: int) -> None:
    for name in _UVICORN_LOGGERS:
        library_logger = logging.getLogger(name)
        library_logger.handlers.clear()
        library_logger.propagate = True
    if root_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging(*, json: bool = True, level: str = "INFO") -> None:
    """Send structlog events and stdlib records to stdout through one renderer.

    *json* picks JSON lines (production) over the coloured console
    renderer (local development). *level* is a case-insensitive level
    name applied to the root logger; above DEBUG the HTTP client and
    access-log loggers are raised to WARNING.
    """
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *_renderer_chain(json),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    _route_library_loggers(root.level)
