"""Structured logging setup using structlog.

JSON output keeps Japanese subjects and merchant names unescaped, and
every line is decoded to text first so byte values from IMAP responses
render cleanly.  Loggers are bound per mailbox by the service, not here.
"""

from __future__ import annotations

import logging
import sys

import structlog

# Health-probe access lines would otherwise drown the ingest events.
_NOISY_LOGGERS = ("uvicorn.access", "asyncio")


def setup_logging(*, json: bool = True, level: str = "INFO") -> None:
    """Configure structlog for the ingestion process.

    Parameters
    ----------
    json:
        If *True* (the default), output JSON lines.  Non-ASCII text
        (subjects, merchant names) is written as-is rather than escaped.
        If *False*, use a human-friendly console renderer.
    level:
        Root log level name (e.g. ``"DEBUG"``, ``"INFO"``).
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(
            ensure_ascii=False,
        )
    else:
        renderer = structlog.dev.ConsoleRenderer()

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
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
