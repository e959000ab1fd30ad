"""Tracing and observability data models."""

from contextvars import ContextVar
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class TraceEventType(str, Enum):
    """Kinds of HTTP trace events."""

    START = "http.request.start"
    COMPLETE = "http.request.complete"
    ERROR = "http.request.error"


@dataclass
class TraceContext:
    """Correlation data shared by every step of one logical operation."""

    trace_id: str
    start_time: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class TraceEvent:
    """A single HTTP observation within a trace."""

    trace_id: str
    event_type: TraceEventType
    timestamp: datetime
    url: str
    method: str
    status: int | None = None
    duration: float | None = None  # milliseconds
    error: str | None = None
    headers: dict[str, str] | None = None
    body: Any = None
    cache_hit: bool | None = None
    retry_count: int | None = None
    class_name: str | None = None
    method_name: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["event_type"] = self.event_type.value
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class TraceResult(Generic[T]):
    """Outcome of Tracer.trace()."""

    result: T
    trace_id: str
    duration: float  # milliseconds
    events: list[TraceEvent]


@dataclass
class TraceInfo:
    """A completed trace as kept in history."""

    trace_id: str
    start_time: datetime
    end_time: datetime
    duration: float  # milliseconds
    events: list[TraceEvent]
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self, include_events: bool = True) -> dict:
        data = {
            "trace_id": self.trace_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration": self.duration,
            "metadata": self.metadata,
            "error": self.error,
            "event_count": len(self.events),
        }
        if include_events:
            data["events"] = [e.to_dict() for e in self.events]
        return data


# Ambient trace context. Tasks inherit it at creation, so anything deferred
# through the request queue must carry a captured TraceContext and restore it
# with Tracer.run_with_context().
current_context: ContextVar[TraceContext | None] = ContextVar(
    "fetchcore_trace_context", default=None
)
