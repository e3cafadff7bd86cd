"""Structured logging for CircleKeeper.

Every record may carry a ``context`` dict. The relationship ids that
thread through the engine (owner_id, session_id, contact_id) are bound
once per operation and then ride along on each record:

    from circlekeeper.core.logging import get_logger, setup_logging

    setup_logging()  # Call once at startup
    logger = get_logger(__name__)

    log = logger.bind(owner_id="alice", session_id=7)
    log.info("Review item handled", contact_id=12, action="keep")

File logs are one JSON object per line with the bound ids lifted to the
top level; console lines lead with them in a fixed order.
"""

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

ROOT_LOGGER_NAME = "circlekeeper"

# Ids lifted out of the context, in display order
ID_FIELDS = ("owner_id", "session_id", "contact_id")

_RESERVED_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})


def _split_context(context: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    ids = {key: context[key] for key in ID_FIELDS if key in context}
    rest = {key: value for key, value in context.items() if key not in ids}
    return ids, rest


class JSONFormatter(logging.Formatter):
    """One JSON object per record, owner/session/contact ids top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }

        ids, rest = _split_context(getattr(record, "context", None) or {})
        log_data.update(ids)
        if rest:
            log_data["context"] = rest

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable console line: time, level, logger, ids, message, extras."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%H:%M:%S")
        level = record.levelname[:4]

        ids, rest = _split_context(getattr(record, "context", None) or {})
        prefix = " ".join(f"{key.removesuffix('_id')}={value}" for key, value in ids.items())
        message = record.getMessage()
        if prefix:
            message = f"({prefix}) {message}"
        if rest:
            message += f" [{', '.join(f'{k}={v}' for k, v in rest.items())}]"

        return f"{timestamp} {level:4s} {record.name}: {message}"


class ContextLogger(logging.LoggerAdapter):
    """Logger that merges bound ids and keyword fields into ``context``.

    Keyword arguments other than the ones ``logging`` itself accepts
    become context fields; None values are dropped.
    """

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        fields = {key: kwargs.pop(key) for key in list(kwargs) if key not in _RESERVED_KWARGS}
        extra = dict(kwargs.get("extra") or {})
        context = dict(self.extra or {})
        context.update(extra.get("context") or {})
        context.update(fields)
        extra["context"] = {key: value for key, value in context.items() if value is not None}
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **fields: Any) -> "ContextLogger":
        """New logger carrying these fields on top of the current ones."""
        merged = dict(self.extra or {})
        merged.update({key: value for key, value in fields.items() if value is not None})
        return ContextLogger(self.logger, merged)


_logging_initialized = False


def setup_logging(
    log_dir: Optional[Path] = None,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> None:
    """Initialize logging system.

    Call once at application startup. Library code never calls this;
    without it records simply propagate to whatever the host configured.

    Args:
        log_dir: Directory for log files. Defaults to ~/.circlekeeper/logs
        console_level: Minimum level for console output (default: INFO)
        file_level: Minimum level for file output (default: DEBUG)
    """
    global _logging_initialized

    if _logging_initialized:
        return

    if log_dir is None:
        log_dir = Path.home() / ".circlekeeper" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(ConsoleFormatter())
    root_logger.addHandler(console_handler)

    file_handler = RotatingFileHandler(
        log_dir / "circlekeeper.log",
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(JSONFormatter())
    root_logger.addHandler(file_handler)

    _logging_initialized = True
    get_logger(ROOT_LOGGER_NAME).info("Logging initialized", log_dir=str(log_dir))


def get_logger(name: str) -> ContextLogger:
    """Context logger under the circlekeeper namespace.

    Args:
        name: Module name (typically __name__)
    """
    prefix = f"{ROOT_LOGGER_NAME}."
    if name.startswith(prefix):
        name = name[len(prefix):]
    if name == ROOT_LOGGER_NAME:
        return ContextLogger(logging.getLogger(ROOT_LOGGER_NAME), {})
    return ContextLogger(logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}"), {})
