"""structlog wiring for the relay process.

Every stdlib record (uvicorn, httpx and our own structlog events) ends up
in one ``ProcessorFormatter``.  Emission runs on a ``QueueListener``
thread so blocking stream writes stay off the event loop while segments
are being relayed.

Uvicorn access lines contain the full request line, including the ``h``
header overlay token; ``redact_overlay_tokens`` masks it before rendering.
"""

from __future__ import annotations

import atexit
import copy
import logging
import logging.config
import queue
import re
import sys
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener
from typing import Any, Optional

import structlog

from hlsrelay.infrastructure.config.schema import AppConfig

log = structlog.get_logger(__name__)

_TOKEN_RE = re.compile(r"([?&]h=)[^&\s\"]+")
_REDACTED = "***"

# Logged per upstream request; only useful when debugging a CDN.
_CHATTY_LOGGERS = ("httpx", "httpcore")
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def redact_overlay_tokens(
    _: Any, __: Any, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Mask ``h=<token>`` query values in the rendered event text."""
    event = event_dict.get("event")
    if isinstance(event, str) and "h=" in event:
        event_dict["event"] = _TOKEN_RE.sub(rf"\g<1>{_REDACTED}", event)
    return event_dict


def _drop_color_message(_: Any, __: Any, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.pop("color_message", None)
    return event_dict


def _stamp_foreign_record(_: Any, __: Any, event_dict: dict[str, Any]) -> dict[str, Any]:
    # Record creation time, not the time the listener thread formats it.
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        event_dict["timestamp"] = created.isoformat().replace("+00:00", "Z")
    return event_dict


def _foreign_pre_chain() -> list[structlog.typing.Processor]:
    return [
        _drop_color_message,
        redact_overlay_tokens,
        structlog.contextvars.merge_contextvars,
        _stamp_foreign_record,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
    ]


def _renderer(config: AppConfig) -> structlog.typing.Processor:
    if config.log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def _processor_formatter(config: AppConfig) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_foreign_pre_chain(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(config),
        ],
    )


def logger_levels(level: str) -> dict[str, str]:
    """Per-logger levels: server loggers follow *level*, HTTP client logs
    stay at WARNING unless DEBUG is requested."""
    chatty = "DEBUG" if level == "DEBUG" else "WARNING"
    levels = {name: level for name in _SERVER_LOGGERS}
    levels.update({name: chatty for name in _CHATTY_LOGGERS})
    return levels


def build_logging_config(config: AppConfig) -> dict[str, Any]:
    """Uvicorn-compatible ``dictConfig`` rendering everything through structlog."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structlog": {
                "()": structlog.stdlib.ProcessorFormatter,
                "foreign_pre_chain": _foreign_pre_chain(),
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    _renderer(config),
                ],
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "structlog",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            name: {"level": lvl, "handlers": [], "propagate": True}
            for name, lvl in logger_levels(config.log_level).items()
        },
        "root": {"handlers": ["default"], "level": config.log_level},
    }


class _LevelBand(logging.Filter):
    """Pass records with ``low <= levelno <= high``."""

    def __init__(self, low: int, high: int) -> None:
        super().__init__()
        self._low = low
        self._high = high

    def filter(self, record: logging.LogRecord) -> bool:
        return self._low <= record.levelno <= self._high


class _EventDictQueueHandler(QueueHandler):
    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The base class would stringify record.msg; ProcessorFormatter
        # needs the structlog event dict intact.
        return copy.copy(record)


_LISTENER: Optional[QueueListener] = None


def _stop_listener() -> None:
    global _LISTENER
    if _LISTENER is not None:
        try:
            _LISTENER.stop()
        finally:
            _LISTENER = None


def _start_queued_emission(config: AppConfig) -> None:
    """Route the root logger through a queue; WARNING and below go to
    stdout, ERROR and above to stderr."""
    global _LISTENER
    _stop_listener()

    formatter = _processor_formatter(config)

    stdout_handler = logging.StreamHandler(stream=sys.stdout)
    stdout_handler.setFormatter(formatter)
    stdout_handler.addFilter(_LevelBand(logging.NOTSET, logging.WARNING))

    stderr_handler = logging.StreamHandler(stream=sys.stderr)
    stderr_handler.setFormatter(formatter)
    stderr_handler.addFilter(_LevelBand(logging.ERROR, logging.CRITICAL))

    records: queue.Queue[logging.LogRecord] = queue.Queue()

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_EventDictQueueHandler(records))
    root.setLevel(config.log_level)

    for name in list(logging.root.manager.loggerDict):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.propagate = True
    for name, level in logger_levels(config.log_level).items():
        logging.getLogger(name).setLevel(level)

    _LISTENER = QueueListener(
        records, stdout_handler, stderr_handler, respect_handler_level=True
    )
    _LISTENER.start()
    atexit.register(_stop_listener)


def configure_logging(config: AppConfig) -> dict[str, Any]:
    """Configure structlog and stdlib logging for *config*.

    Returns the ``dictConfig`` handed to uvicorn so its own loggers are
    rendered the same way.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    cfg = build_logging_config(config)
    logging.config.dictConfig(cfg)
    _start_queued_emission(config)

    log.info(
        "logging_configured", log_format=config.log_format, log_level=config.log_level
    )
    return cfg
