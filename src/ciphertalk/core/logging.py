# CipherTalk: Logging Setup
#
# structlog is configured on top of the standard library so that both
# ``structlog.get_logger(...)`` event logs (session, relay) and plain
# ``logging.getLogger(__name__)`` loggers (crypto layers) share one handler
# and one renderer.
#
# Security:
#   - Never log key material or plaintext; fingerprints and identities only.

import logging
import sys
from typing import Optional, TextIO

import structlog


def configure_logging(
    level: str = "INFO",
    json: bool = False,
    stream: Optional[TextIO] = None,
) -> None:
    """Configure structlog + stdlib logging for the process.

    Safe to call more than once; later calls replace the root handler.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ...).
        json: Render JSON lines instead of the human-readable console format.
        stream: Output stream (default: stderr).
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if getattr(existing, "_ciphertalk_handler", False):
            root_logger.removeHandler(existing)
    handler._ciphertalk_handler = True
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
