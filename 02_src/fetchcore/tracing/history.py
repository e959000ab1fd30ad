"""Bounded store of completed traces."""

from collections import OrderedDict
from datetime import datetime
from typing import Any

from ..models import TraceEvent, TraceInfo


class TraceHistory:
    """Completed traces keyed by id; oldest evicted first once full."""

    def __init__(self, max_size: int = 1000):
        self._max_size = max_size
        self._traces: "OrderedDict[str, TraceInfo]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._traces)

    @property
    def max_size(self) -> int:
        return self._max_size

    def add(self, info: TraceInfo) -> None:
        self._traces[info.trace_id] = info
        self._traces.move_to_end(info.trace_id)
        self._trim()

    def set_max_size(self, size: int) -> None:
        """Change the bound, trimming immediately if needed."""
        self._max_size = size
        self._trim()

    def _trim(self) -> None:
        while len(self._traces) > self._max_size:
            self._traces.popitem(last=False)

    def get(self, trace_id: str) -> TraceInfo | None:
        return self._traces.get(trace_id)

    def events(self, trace_id: str) -> list[TraceEvent]:
        info = self._traces.get(trace_id)
        return info.events if info else []

    def ids(self) -> list[str]:
        return list(self._traces.keys())

    def all(self) -> list[TraceInfo]:
        return list(self._traces.values())

    def by_time_range(self, start: datetime, end: datetime) -> list[TraceInfo]:
        """Traces that started and ended within [start, end]."""
        return [
            info
            for info in self._traces.values()
            if info.start_time >= start and info.end_time <= end
        ]

    def by_metadata(self, metadata: dict[str, Any]) -> list[TraceInfo]:
        """Traces whose metadata contains every given key/value pair."""
        return [
            info
            for info in self._traces.values()
            if info.metadata
            and all(info.metadata.get(k) == v for k, v in metadata.items())
        ]

    def clear(self) -> None:
        self._traces.clear()
