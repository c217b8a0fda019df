"""Structured logging with structlog.

Event names follow ``component.event`` (``batch.chunk_done``,
``tracker.snapshot_written``) with context passed as key/value pairs.
Credentials such as cron secrets or session cookies are never logged: any
field whose name is, or ends in, a sensitive word is masked.

Modules grab a logger at import time with ``get_logger``; until something
calls ``configure_logging`` the environment decides the level and format
(``GRINDBOARD_LOG_LEVEL``, ``GRINDBOARD_LOG_FORMAT``). The CLI reconfigures
from ``config.yaml`` with ``force=True``.
"""

from __future__ import annotations

import logging
import os
import sys
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import structlog


_CONFIGURED = False
_OWN_HANDLERS: list[logging.Handler] = []

_SENSITIVE_WORDS = (
    "password", "secret", "token", "api_key", "authorization",
    "cookie", "session", "csrftoken",
)
_MASK = "***REDACTED***"


def _is_sensitive(key: str) -> bool:
    key = key.lower()
    return any(key == w or key.endswith("_" + w) for w in _SENSITIVE_WORDS)


def _redact_processor(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Mask sensitive fields in log events."""
    for key in event_dict:
        if _is_sensitive(key):
            event_dict[key] = _MASK
    return event_dict


def _renderer(fmt: str) -> structlog.types.Processor:
    if fmt == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=fmt == "console" and sys.stderr.isatty())


def _install_handlers(log_level: int, log_file: str | None) -> list[logging.Handler]:
    root = logging.getLogger()
    for handler in _OWN_HANDLERS:
        root.removeHandler(handler)
        handler.close()
    _OWN_HANDLERS.clear()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(path)))

    root.setLevel(log_level)
    for handler in handlers:
        handler.setLevel(log_level)
        root.addHandler(handler)
    _OWN_HANDLERS.extend(handlers)
    return handlers


def configure_logging(
    level: str = "INFO",
    fmt: str = "json",
    log_file: str | None = None,
    *,
    force: bool = False,
) -> None:
    """Route structlog through stdlib logging with the given level and renderer.

    ``fmt`` is ``json`` or ``console``; anything else renders plain
    uncoloured key/value lines. A second call is ignored unless ``force``.
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _redact_processor,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=_renderer(fmt),
        foreign_pre_chain=pre_chain,
    )
    for handler in _install_handlers(log_level, log_file):
        handler.setFormatter(formatter)

    _CONFIGURED = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog bound logger, configuring from the environment once."""
    if not _CONFIGURED:
        configure_logging(
            level=os.environ.get("GRINDBOARD_LOG_LEVEL", "INFO"),
            fmt=os.environ.get("GRINDBOARD_LOG_FORMAT", "console"),
        )
    return structlog.get_logger(name)


@contextmanager
def run_context(kind: str, **extra: str) -> Iterator[str]:
    """Bind a fresh ``run_id`` (and ``run_kind``) to every log line in the block."""
    run_id = uuid.uuid4().hex[:12]
    with structlog.contextvars.bound_contextvars(run_id=run_id, run_kind=kind, **extra):
        yield run_id
