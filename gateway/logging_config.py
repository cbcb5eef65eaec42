"""structlog setup shared by gateway code and the stdlib loggers it runs beside.

Gateway modules log through structlog; uvicorn logs through stdlib
``logging``. Both end up in one handler with one renderer, so a deployment
reads a single JSON (or console) stream.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog
from structlog.types import EventDict, Processor

# uvicorn's own loggers; their handlers are replaced by the root handler
_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error")

# ANSI-coloured duplicate of the message that uvicorn attaches as an extra
_UVICORN_NOISE = ("color_message",)


def _rename_logger_to_module(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Rename 'logger' key to 'module' for structured log field consistency."""
    if "logger" in event_dict:
        event_dict["module"] = event_dict.pop("logger")
    return event_dict


def _drop_uvicorn_noise(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    for key in _UVICORN_NOISE:
        event_dict.pop(key, None)
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _rename_logger_to_module,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(json_format: bool) -> Processor:
    if json_format:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def _foreign_pre_chain() -> list[Processor]:
    """Processors for records that did not come through structlog."""
    return [
        *_shared_processors(),
        # keep values passed as ``extra=`` by stdlib callers
        structlog.stdlib.ExtraAdder(),
        _drop_uvicorn_noise,
    ]


def setup_logging(
    log_level: str = "info",
    json_format: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Route structlog and stdlib logging through one handler on ``stream`` (stdout by default)."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_foreign_pre_chain(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(json_format),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True
    # the gateway's logging stage records requests itself
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
