"""Trace context propagation and HTTP trace events."""

import asyncio
import functools
import inspect
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol, TypeVar

from ..logging_config import get_logger
from ..models import TraceContext, TraceEvent, TraceEventType, TraceInfo, TraceResult
from ..models.tracing import current_context as _current_context
from .history import TraceHistory

logger = get_logger(__name__)

T = TypeVar("T")

TraceListener = Callable[[TraceEvent], Any]


async def _call(fn: Callable[[], Any]) -> Any:
    result = fn()
    if inspect.isawaitable(result):
        result = await result
    return result


class ITracer(Protocol):
    """Correlates HTTP activity with the logical operation that caused it."""

    async def trace(
        self, fn: Callable[[], Awaitable[T]], metadata: dict | None = None
    ) -> TraceResult[T]:
        """Run fn under a new trace context and collect its events."""
        ...

    def get_context(self) -> TraceContext | None:
        """The active trace context, if any."""
        ...

    async def run_with_context(
        self, context: TraceContext | None, fn: Callable[[], Awaitable[T]]
    ) -> T:
        """Run fn with a previously captured context re-established."""
        ...

    def emit_event(
        self,
        event_type: TraceEventType,
        url: str,
        method: str,
        context: TraceContext | None = None,
        **fields: Any,
    ) -> TraceEvent | None:
        """Record an event against the active or explicit context."""
        ...


class Tracer:
    """Trace manager: ambient context, per-trace buffers, listeners, history."""

    def __init__(self, max_history_size: int = 1000, buffer_linger_seconds: float = 1.0):
        self._buffers: dict[str, list[TraceEvent]] = {}
        self._history = TraceHistory(max_history_size)
        self._buffer_linger = buffer_linger_seconds
        self._listeners: dict[str | None, list[TraceListener]] = {}
        self._listener_tasks: set[asyncio.Future] = set()

    @property
    def history(self) -> TraceHistory:
        return self._history

    async def trace(
        self, fn: Callable[[], Awaitable[T]], metadata: dict | None = None
    ) -> TraceResult[T]:
        """Run fn under a new trace context and collect its events.

        The trace is archived in history whether fn succeeds or raises.
        """
        trace_id = str(uuid.uuid4())
        start_time = datetime.now(timezone.utc)
        started = time.perf_counter()
        context = TraceContext(
            trace_id=trace_id, start_time=start_time, metadata=dict(metadata or {})
        )

        self._buffers[trace_id] = []
        token = _current_context.set(context)
        error: str | None = None
        try:
            result = await _call(fn)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            raise
        finally:
            _current_context.reset(token)
            duration = (time.perf_counter() - started) * 1000
            events = list(self._buffers.get(trace_id, []))
            self._history.add(
                TraceInfo(
                    trace_id=trace_id,
                    start_time=start_time,
                    end_time=datetime.now(timezone.utc),
                    duration=duration,
                    events=events,
                    metadata=context.metadata,
                    error=error,
                )
            )
            self._release_buffer(trace_id)

        return TraceResult(result=result, trace_id=trace_id, duration=duration, events=events)

    def _release_buffer(self, trace_id: str) -> None:
        if self._buffer_linger <= 0:
            self._buffers.pop(trace_id, None)
            return
        asyncio.get_running_loop().call_later(
            self._buffer_linger, self._buffers.pop, trace_id, None
        )

    def get_context(self) -> TraceContext | None:
        """The active trace context, if any."""
        return _current_context.get()

    def is_tracing(self) -> bool:
        return _current_context.get() is not None

    async def run_with_context(
        self, context: TraceContext | None, fn: Callable[[], Awaitable[T]]
    ) -> T:
        """Run fn with a previously captured context re-established."""
        if context is None:
            return await _call(fn)

        token = _current_context.set(context)
        try:
            return await _call(fn)
        finally:
            _current_context.reset(token)

    def emit_event(
        self,
        event_type: TraceEventType,
        url: str,
        method: str,
        context: TraceContext | None = None,
        **fields: Any,
    ) -> TraceEvent | None:
        """Record an event against the active or explicit context.

        Outside any trace this is a no-op and returns None.
        """
        context = context or self.get_context()
        if context is None:
            return None

        event = TraceEvent(
            trace_id=context.trace_id,
            event_type=TraceEventType(event_type),
            timestamp=datetime.now(timezone.utc),
            url=url,
            method=method,
            **fields,
        )

        buffer = self._buffers.get(context.trace_id)
        if buffer is not None:
            buffer.append(event)

        for listener in self._listeners.get(None, []) + self._listeners.get(
            event.event_type.value, []
        ):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._listener_tasks.add(task)
                    task.add_done_callback(self._listener_done)
            except Exception:
                logger.exception("Trace listener %r failed", listener)

        return event

    def _listener_done(self, task: asyncio.Future) -> None:
        self._listener_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async trace listener failed", exc_info=task.exception())

    # Listeners

    def on(self, event_type: TraceEventType | str | None, listener: TraceListener) -> None:
        """Listen to one event type, or to every event when event_type is None."""
        key = TraceEventType(event_type).value if event_type is not None else None
        self._listeners.setdefault(key, []).append(listener)

    def on_http(self, listener: TraceListener) -> None:
        self.on(None, listener)

    def on_start(self, listener: TraceListener) -> None:
        self.on(TraceEventType.START, listener)

    def on_complete(self, listener: TraceListener) -> None:
        self.on(TraceEventType.COMPLETE, listener)

    def on_error(self, listener: TraceListener) -> None:
        self.on(TraceEventType.ERROR, listener)

    def off(self, listener: TraceListener) -> None:
        for listeners in self._listeners.values():
            while listener in listeners:
                listeners.remove(listener)

    def cleanup(self) -> None:
        """Remove all listeners, buffers and history."""
        self._listeners.clear()
        self._buffers.clear()
        self._history.clear()

    # History

    def get_trace(self, trace_id: str) -> TraceInfo | None:
        return self._history.get(trace_id)

    def get_trace_events(self, trace_id: str) -> list[TraceEvent]:
        return self._history.events(trace_id)

    def get_all_trace_ids(self) -> list[str]:
        return self._history.ids()

    def get_all_traces(self) -> list[TraceInfo]:
        return self._history.all()

    def get_traces_by_time_range(self, start: datetime, end: datetime) -> list[TraceInfo]:
        return self._history.by_time_range(start, end)

    def get_traces_by_metadata(self, metadata: dict[str, Any]) -> list[TraceInfo]:
        return self._history.by_metadata(metadata)

    def clear_history(self) -> None:
        self._history.clear()

    def set_max_history_size(self, size: int) -> None:
        self._history.set_max_size(size)

    @property
    def history_size(self) -> int:
        return len(self._history)


def traced(**metadata: Any):
    """Method decorator: run the call inside a trace unless one is active.

    The tracer is taken from the instance's ``tracer`` attribute (set by
    Application.attach). Without one the method runs untraced.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            tracer: Tracer | None = getattr(self, "tracer", None)
            if tracer is None or tracer.is_tracing():
                return await func(self, *args, **kwargs)

            result = await tracer.trace(
                lambda: func(self, *args, **kwargs),
                {"method": func.__name__, **metadata},
            )
            return result.result

        return wrapper

    return decorator
