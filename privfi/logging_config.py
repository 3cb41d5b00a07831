"""
Logging for the privfi proxy.

The phase queue, deposit ledger and retention sweep log through stdlib
loggers under `privfi.*`; escalations and request logs go through
structlog. Both end up on one stdout handler: JSON lines in production,
a colored console at DEBUG.
"""

import logging
import sys
from typing import Optional

import structlog

from .config import settings

# Loggers that carry swap state transitions and fund movements
SERVICE_LOGGERS = ("privfi.queue", "privfi.ledger", "privfi.retention", "escalation")

# Per-request and per-poll chatter from the server and the RPC/signer clients
QUIET_LOGGERS = ("uvicorn.access", "httpcore", "httpx")


def setup_logging(log_level: Optional[str] = None) -> None:
    """Install the stdout handler and structlog pipeline.

    Args:
        log_level: Override log level (default: from settings.log_level)
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    console = level == logging.DEBUG

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if console:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        # Fund recovery failures log with exc_info; keep tracebacks inside the JSON line
        shared_processors.append(structlog.processors.format_exc_info)
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
    root.setLevel(level)

    # Pinned so a later change to the root level cannot silence them
    for name in SERVICE_LOGGERS:
        logging.getLogger(name).setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
