"""Audit logging helpers.

Every decision and side effect is emitted as an `(event_type, payload)` audit
event into an explicit sink that callers pass down. There is no process-wide
logger: tests hand in a `MemoryAuditSink`, the CLI a `ConsoleAuditSink`.

Payloads must stay JSON-safe and must never carry credentials or raw exchange
response bodies.
"""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, List, Optional, Protocol, TextIO

from termcolor import colored


def utc_now() -> datetime:
    """UTC timestamp helper."""
    return datetime.now(timezone.utc)


def jsonify(value: Any) -> Any:
    """Best-effort conversion to JSON-safe types."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple, set, frozenset)):
        return [jsonify(v) for v in value]
    if isinstance(value, dict):
        return {str(k): jsonify(v) for k, v in value.items()}
    if hasattr(value, "model_dump"):
        return jsonify(value.model_dump(mode="json"))
    return str(value)


class AuditLevel(IntEnum):
    debug = 10
    info = 20
    warning = 30
    error = 40

    @classmethod
    def parse(cls, name: str) -> "AuditLevel":
        try:
            return cls[name.strip().lower()]
        except KeyError as e:
            raise ValueError(f"Unknown audit level: {name}") from e


@dataclass(frozen=True)
class AuditContext:
    run_id: Optional[str] = None
    subaccount_id: Optional[str] = None

    def bind(self, **kwargs: Any) -> "AuditContext":
        return replace(self, **kwargs)


@dataclass(frozen=True)
class AuditEvent:
    event_type: str
    level: AuditLevel
    payload: Dict[str, Any]
    run_id: Optional[str] = None
    subaccount_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)


class AuditSink(Protocol):
    def emit(self, event: AuditEvent) -> None: ...


class AuditLog:
    """Context-bound front end over a sink; this is what components hold."""

    def __init__(self, sink: AuditSink, ctx: Optional[AuditContext] = None):
        self.sink = sink
        self.ctx = ctx or AuditContext()

    def bind(self, **kwargs: Any) -> "AuditLog":
        return AuditLog(self.sink, self.ctx.bind(**kwargs))

    def log(
        self,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        level: AuditLevel = AuditLevel.info,
    ) -> None:
        self.sink.emit(
            AuditEvent(
                event_type=event_type,
                level=level,
                payload=jsonify(payload or {}),
                run_id=self.ctx.run_id,
                subaccount_id=self.ctx.subaccount_id,
            )
        )

    def debug(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self.log(event_type, payload, level=AuditLevel.debug)

    def info(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self.log(event_type, payload, level=AuditLevel.info)

    def warning(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self.log(event_type, payload, level=AuditLevel.warning)

    def error(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self.log(event_type, payload, level=AuditLevel.error)


class MemoryAuditSink:
    """Keeps every event in memory."""

    def __init__(self) -> None:
        self.events: List[AuditEvent] = []

    def emit(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[AuditEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def at_least(self, level: AuditLevel) -> List[AuditEvent]:
        return [e for e in self.events if e.level >= level]


_LEVEL_COLORS = {
    AuditLevel.debug: "dark_grey",
    AuditLevel.info: "cyan",
    AuditLevel.warning: "yellow",
    AuditLevel.error: "red",
}


class ConsoleAuditSink:
    """One line per event, colored by level."""

    def __init__(
        self,
        *,
        min_level: AuditLevel = AuditLevel.info,
        stream: Optional[TextIO] = None,
        color: bool = True,
    ):
        self.min_level = min_level
        self.stream = stream or sys.stdout
        self.color = color

    def emit(self, event: AuditEvent) -> None:
        if event.level < self.min_level:
            return
        label = event.level.name.upper()
        if self.color:
            label = colored(label, _LEVEL_COLORS[event.level])
        scope = f" [{event.subaccount_id}]" if event.subaccount_id else ""
        body = json.dumps(event.payload, sort_keys=True, default=str) if event.payload else ""
        line = f"[{event.timestamp.isoformat()}] {label}{scope} {event.event_type}"
        if body:
            line += f" | {body}"
        print(line, file=self.stream)


class FanoutAuditSink:
    def __init__(self, *sinks: AuditSink):
        self.sinks = list(sinks)

    def emit(self, event: AuditEvent) -> None:
        for s in self.sinks:
            s.emit(event)


__all__ = [
    "AuditContext",
    "AuditEvent",
    "AuditLevel",
    "AuditLog",
    "AuditSink",
    "ConsoleAuditSink",
    "FanoutAuditSink",
    "MemoryAuditSink",
    "jsonify",
    "utc_now",
]
