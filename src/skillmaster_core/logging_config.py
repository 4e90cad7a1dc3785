"""Loguru sinks for the tutor core.

Every record carries ``conversation_id`` and ``label`` extras (``-`` when
unbound), so turn and upstream-request logs can be followed across retries.
Quota and upstream events are additionally tagged with ``event`` and can be
routed to a separate usage audit trail.
"""

import sys
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

AUDIT_EVENTS = frozenset({
    "quota_consumed",
    "quota_denied",
    "upstream_retry",
    "upstream_failure",
    "turn_completed",
})

_DEFAULT_EXTRA = {"conversation_id": "-", "label": "-", "event": None}

_CONSOLE_FORMAT = (
    "<level>{level:<8}</level> | <cyan>{extra[label]}</cyan> "
    "<dim>{extra[conversation_id]}</dim> - <level>{message}</level>"
)
_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | conv={extra[conversation_id]} "
    "req={extra[label]} | {name}:{function}:{line} - {message}"
)


def request_logger(label: str, *, conversation_id: str | None = None):
    """Logger bound to one upstream request (and its conversation, if any)."""
    return logger.bind(label=label, conversation_id=conversation_id or "-")


def audit(event: str, **fields: Any):
    return logger.bind(event=event, **fields)


def _is_audit_record(record) -> bool:
    return record["extra"].get("event") in AUDIT_EVENTS


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    def register(self, level: str) -> None:
        logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT)

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


class FileLogConsumer:
    def __init__(self, path: str = "skillmaster.log", rotation: str = "10 MB", retention: int = 3):
        self._path = path
        self._rotation = rotation
        self._retention = retention

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self._path,
            level=level,
            format=_FILE_FORMAT,
            rotation=self._rotation,
            retention=self._retention,
        )

    def describe(self, level: str) -> str:
        return f"file ({self._path}, {level})"


class JsonLogConsumer:
    """All records as JSON lines, extras included."""

    def __init__(self, path: str = "skillmaster.jsonl", rotation: str = "10 MB", retention: int = 3):
        self._path = path
        self._rotation = rotation
        self._retention = retention

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(self._path, level=level, serialize=True, rotation=self._rotation, retention=self._retention)

    def describe(self, level: str) -> str:
        return f"json ({self._path}, {level})"


class UsageAuditLogConsumer:
    """Only quota and upstream events, as JSON lines, for usage reporting."""

    def __init__(self, path: str = "skillmaster-usage.jsonl", rotation: str = "1 day", retention: str = "90 days"):
        self._path = path
        self._rotation = rotation
        self._retention = retention

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self._path,
            level=level,
            serialize=True,
            filter=_is_audit_record,
            rotation=self._rotation,
            retention=self._retention,
        )

    def describe(self, level: str) -> str:
        return f"usage audit ({self._path}, {level})"


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
    "json": JsonLogConsumer,
    "audit": UsageAuditLogConsumer,
}

_DEFAULT_CONSUMERS = [
    {"type": "console", "level": "WARNING"},
    {"type": "file", "path": "skillmaster.log"},
    {"type": "audit", "level": "DEBUG"},
]


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Configure logging sinks. Returns a description of each registered consumer."""
    logger.remove()
    logger.configure(extra=_DEFAULT_EXTRA)

    descriptions: list[str] = []
    for config in consumers if consumers is not None else _DEFAULT_CONSUMERS:
        sink_type = config.get("type", "")
        cls = _CONSUMER_TYPES.get(sink_type)
        if cls is None:
            logger.warning(f"Unknown log consumer type: {sink_type!r}")
            continue

        kwargs = {k: v for k, v in config.items() if k not in ("type", "level")}
        sink_level = config.get("level", level)
        consumer = cls(**kwargs)
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    return descriptions
