"""SheetGuard — Structured logging configuration.

structlog renders every record, including those of third-party libraries
routed through the stdlib ``logging`` module.  Records carry:
    - timestamp (ISO-8601), level and logger name
    - request_id and stage of the pipeline run in progress, when bound

Raw model output can be arbitrarily large, so long string values are clipped
before rendering.  Output goes to stderr, keeping stdout free for
``sheetguard parse --json``.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Longest string value rendered as-is.
MAX_VALUE_CHARS = 500

_request_id: ContextVar[str | None] = ContextVar("sheetguard_request_id", default=None)
_stage: ContextVar[str | None] = ContextVar("sheetguard_stage", default=None)


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------


def bind_request_context(request_id: str | None = None, stage: str | None = None) -> None:
    """Attach the current run's identifiers to every record of this task."""
    if request_id is not None:
        _request_id.set(request_id)
    if stage is not None:
        _stage.set(stage)


def clear_request_context() -> None:
    _request_id.set(None)
    _stage.set(None)


@contextmanager
def pipeline_stage(stage: str) -> Iterator[None]:
    """Bind *stage* for the duration of the block, then restore the previous one."""
    token = _stage.set(stage)
    try:
        yield
    finally:
        _stage.reset(token)


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------


def _add_request_context(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    # Explicit keyword arguments win over the bound context.
    request_id = _request_id.get()
    if request_id is not None:
        event_dict.setdefault("request_id", request_id)
    stage = _stage.get()
    if stage is not None:
        event_dict.setdefault("stage", stage)
    return event_dict


def _clip_long_values(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    for key, value in event_dict.items():
        if key != "event" and isinstance(value, str) and len(value) > MAX_VALUE_CHARS:
            event_dict[key] = f"{value[:MAX_VALUE_CHARS]}…(+{len(value) - MAX_VALUE_CHARS} chars)"
    return event_dict


def _drop_color_message(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    """uvicorn duplicates its message under ``color_message``."""
    event_dict.pop("color_message", None)
    return event_dict


def _renderer(format: str, stream: TextIO) -> Processor:
    if format == "json":
        return structlog.processors.JSONRenderer(serializer=_dumps)
    return structlog.dev.ConsoleRenderer(colors=stream.isatty())


def _dumps(obj: Any, **kwargs: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str, **kwargs)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def configure_logging(
    level: str = "info",
    format: str = "console",
    log_file: str | None = None,
    *,
    stream: TextIO | None = None,
) -> None:
    """Route structlog and stdlib logging through one formatter.

    Safe to call more than once: each call replaces the root handlers.

    Args:
        level:    debug, info, warning, error or critical.
        format:   ``"console"`` (human-readable) or ``"json"`` (one object per line).
        log_file: Also append records to this file.
        stream:   Console stream.  Defaults to ``sys.stderr``.
    """
    stream = stream or sys.stderr
    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_request_context,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _drop_color_message,
        _clip_long_values,
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(format, stream),
        ],
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(stream)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(level.upper())

    # Per-request chatter from the HTTP stack.
    for name in ("uvicorn.access", "httpx", "httpcore", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named after the calling module.

    Usage::

        log = get_logger(__name__)
        log.info("pipeline_completed", source="direct", duration_ms=3.1)
    """
    return structlog.get_logger(name)
