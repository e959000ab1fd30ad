"""Queue processor: dispatches due requests through broadcast, cache, network."""

import asyncio
import inspect
import time
from typing import Any, Protocol

import httpx

from ..cache import ICacheStore
from ..config import Settings
from ..errors import HTTPStatusError, ResponseValidationError
from ..injection import Injector
from ..logging_config import get_logger
from ..models import HTTPRequest, RequestEntry, TraceEventType
from ..tracing import Tracer
from .queue import RequestQueue, calculate_backoff_delay
from .transport import IHttpTransport

logger = get_logger(__name__)

EVENT_REQUEST = "httpRequest"
EVENT_RESPONSE = "httpResponse"
EVENT_ERROR = "httpError"

_MISS = object()
TRACE_BODY_LIMIT = 1000


def build_event(name: str, entry: RequestEntry, request: HTTPRequest) -> dict[str, Any]:
    """Event record matched by injection filters."""
    url = httpx.URL(request.url)
    query = url.query.decode("ascii", errors="replace")
    return {
        "eventName": name,
        "method": request.method,
        "url": request.url,
        "body": request.body,
        "tags": list(request.tags),
        "protocol": f"{url.scheme}:",
        "host": url.netloc.decode("ascii", errors="replace"),
        "hostname": url.host,
        "pathname": url.path,
        "search": f"?{query}" if query else "",
        "hash": f"#{url.fragment}" if url.fragment else "",
        "className": entry.class_name,
        "methodName": entry.method_name,
    }


class IQueueProcessor(Protocol):
    """Background consumer of the request queue."""

    async def start(self) -> None:
        """Start the dispatch loop."""
        ...

    async def stop(self) -> None:
        """Stop the loop after in-flight entries finish."""
        ...

    async def process_next(self) -> bool:
        """Dispatch the head entry if due. Returns whether one was processed."""
        ...


class QueueProcessor:
    """Single dequeuer with a global inter-dispatch throttle.

    Entries are dequeued one at a time, strictly by earliest execution time.
    Each dequeued entry runs in its own task so that injection handlers can
    await nested requests without blocking the loop.
    """

    def __init__(
        self,
        queue: RequestQueue,
        cache: ICacheStore,
        tracer: Tracer,
        injector: Injector,
        transport: IHttpTransport,
        settings: Settings | None = None,
    ):
        self._queue = queue
        self._cache = cache
        self._tracer = tracer
        self._injector = injector
        self._transport = transport
        self._settings = settings or Settings()
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._inflight: set[asyncio.Task] = set()

    @property
    def queue(self) -> RequestQueue:
        return self._queue

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def __len__(self) -> int:
        return len(self._queue)

    def clear(self) -> int:
        """Drop every pending entry."""
        return self._queue.clear()

    async def start(self) -> None:
        """Start the dispatch loop."""
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info("Queue processor started")

    async def stop(self) -> None:
        """Stop the loop after in-flight entries finish."""
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        logger.info("Queue processor stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            entry = self._queue.pop_due()
            if entry is None:
                await self._sleep(self._settings.idle_delay_seconds)
                continue

            task = asyncio.create_task(self._guarded(entry))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            await self._sleep(self._settings.dispatch_delay_seconds)

    async def _sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def process_next(self) -> bool:
        """Dispatch the head entry if due. Returns whether one was processed."""
        entry = self._queue.pop_due()
        if entry is None:
            return False
        await self._guarded(entry)
        return True

    async def drain(self, max_steps: int = 1000) -> int:
        """Process due entries until none is left; returns how many ran."""
        steps = 0
        while steps < max_steps and await self.process_next():
            steps += 1
        return steps

    async def _guarded(self, entry: RequestEntry) -> None:
        try:
            await self.process_entry(entry)
        except Exception as e:
            logger.exception(
                "Unhandled error processing %s %s",
                entry.request.method,
                entry.request.url,
            )
            self._reject(entry, e)

    async def process_entry(self, entry: RequestEntry) -> None:
        """Run one attempt of entry under its captured trace context."""
        await self._tracer.run_with_context(
            entry.trace_context, lambda: self._dispatch(entry)
        )

    async def _dispatch(self, entry: RequestEntry) -> None:
        request = entry.request
        logger.debug(
            "Processing HTTP request: %s %s (attempt %d)",
            request.method,
            request.url,
            entry.retry_attempt + 1,
        )
        self._emit(TraceEventType.START, entry, request)

        # each attempt works on its own copy so rewrites are not compounded
        attempt = request.clone()
        started = time.perf_counter()
        try:
            await self._broadcast(EVENT_REQUEST, entry, attempt)

            cached = _MISS
            if attempt.cache_key:
                cached = await self._cache.get(attempt.cache_key, _MISS)

            if cached is not _MISS:
                attempt.response = _cached_response(attempt, cached)
                cache_hit = True
            else:
                attempt.response = await self._transport.send(attempt)
                cache_hit = False
                if not attempt.response.is_success:
                    raise HTTPStatusError(
                        attempt.method,
                        attempt.url,
                        attempt.response.status_code,
                        attempt.response.reason_phrase,
                    )
                await self._store(attempt)

            if not cache_hit:
                await self._run_callbacks(entry, attempt)
            await self._broadcast(EVENT_RESPONSE, entry, attempt)
            self._validate(entry, attempt)
        except ResponseValidationError as e:
            await self._fail(entry, attempt, e, started)
            logger.error(
                "HTTP response rejected: %s %s: %s", attempt.method, attempt.url, e
            )
            self._reject(entry, e)
            return
        except Exception as e:
            await self._fail(entry, attempt, e, started)
            self._retry_or_reject(entry, e)
            return

        duration = (time.perf_counter() - started) * 1000
        self._emit(
            TraceEventType.COMPLETE,
            entry,
            attempt,
            status=attempt.response.status_code,
            duration=duration,
            cache_hit=cache_hit,
            **_response_fields(attempt.response),
        )
        logger.info(
            "HTTP request completed: %s %s (%s%s)",
            attempt.method,
            attempt.url,
            attempt.response.status_code,
            ", cached" if cache_hit else "",
        )
        if not entry.future.done():
            entry.future.set_result(attempt)

    async def _broadcast(self, name: str, entry: RequestEntry, request: HTTPRequest) -> None:
        await self._injector.broadcast(
            entry.instance,
            build_event(name, entry, request),
            request,
            include_global=True,
        )

    async def _store(self, request: HTTPRequest) -> None:
        if not request.cache_key or request.cache_ttl_seconds is None:
            return
        ttl = request.cache_ttl_seconds
        if callable(ttl):
            ttl = ttl(request.response)
        if ttl and ttl > 0:
            await self._cache.set(request.cache_key, request.response.text, ttl)

    async def _run_callbacks(self, entry: RequestEntry, request: HTTPRequest) -> None:
        callbacks = (
            (request.on_json, request.json),
            (request.on_text, request.text),
            (request.on_bytes, lambda: request.content),
        )
        for callback, read in callbacks:
            if callback is None:
                continue
            try:
                result = callback(read())
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Response callback failed for %s", entry.method_name)

    @staticmethod
    def _validate(entry: RequestEntry, request: HTTPRequest) -> None:
        if entry.validator is None:
            return
        try:
            data = request.json()
        except ValueError as e:
            raise ResponseValidationError(entry.method_name, [f"invalid JSON: {e}"]) from e
        errors = entry.validator.validate(data)
        if errors:
            raise ResponseValidationError(entry.method_name, errors)

    async def _fail(
        self, entry: RequestEntry, request: HTTPRequest, error: Exception, started: float
    ) -> None:
        self._emit(
            TraceEventType.ERROR,
            entry,
            request,
            status=request.response.status_code if request.response is not None else None,
            duration=(time.perf_counter() - started) * 1000,
            error=str(error),
            **_response_fields(request.response),
        )
        try:
            await self._broadcast(EVENT_ERROR, entry, request)
        except Exception as e:
            logger.error("Error broadcast failed for %s %s: %s", request.method, request.url, e)

    def _retry_or_reject(self, entry: RequestEntry, error: Exception) -> None:
        request = entry.request
        if request.retries > 0:
            request.retries -= 1
            s = self._settings
            delay = calculate_backoff_delay(
                entry.retry_attempt,
                base_delay=s.retry_base_delay_seconds,
                multiplier=s.retry_backoff_multiplier,
                max_delay=s.retry_max_delay_seconds,
                jitter_factor=s.retry_jitter_factor,
            )
            entry.retry_attempt += 1
            request.earliest_execute = self._queue.now() + delay
            logger.warning(
                "HTTP request failed, retrying in %.2fs (attempt %d, %d retries left): %s %s: %s",
                delay,
                entry.retry_attempt + 1,
                request.retries,
                request.method,
                request.url,
                error,
            )
            self._queue.push(entry)
            return

        logger.error(
            "HTTP request failed, no retries left: %s %s: %s",
            request.method,
            request.url,
            error,
        )
        self._reject(entry, error)

    @staticmethod
    def _reject(entry: RequestEntry, error: Exception) -> None:
        if not entry.future.done():
            entry.future.set_exception(error)

    def _emit(
        self,
        event_type: TraceEventType,
        entry: RequestEntry,
        request: HTTPRequest,
        **fields: Any,
    ) -> None:
        self._tracer.emit_event(
            event_type,
            request.url,
            request.method,
            retry_count=entry.retry_attempt,
            class_name=entry.class_name,
            method_name=entry.method_name,
            **fields,
        )


def _response_fields(response: httpx.Response | None) -> dict[str, Any]:
    if response is None:
        return {}
    return {"headers": dict(response.headers), "body": response.text[:TRACE_BODY_LIMIT]}


def _cached_response(request: HTTPRequest, body: Any) -> httpx.Response:
    text = body if isinstance(body, str) else str(body)
    return httpx.Response(
        200,
        text=text,
        request=httpx.Request(request.method, request.build_url()),
    )
