"""Request builder and the @http method wrapper.

A method decorated with @http returns a request description (an HTTPRequest
or a mapping with at least ``method`` and ``url``). Calling it queues the
request on the instance's RequestBuilder and hands back a future that the
queue processor resolves with the completed HTTPRequest::

    class Example:
        @http(cache_seconds=60, retries=2)
        def get_data(self):
            return {"method": "GET", "url": "https://example.com/data"}

    resp = await example.get_data()
    data = resp.json()
"""

import asyncio
import functools
import hashlib
import inspect
import types
from typing import Any, Callable, Protocol

import httpx

from ..logging_config import get_logger
from ..models import HTTPParameter, HTTPRequest, RequestEntry
from ..tracing import Tracer
from .queue import RequestQueue
from .registry import HttpRegistry, default_registry
from .validation import ResponseValidator

logger = get_logger(__name__)

CacheKeyOption = str | Callable[..., str]
RetriesOption = int | Callable[[Any], int]
CacheSecondsOption = int | Callable[[httpx.Response], int]


def class_identity(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


class IRequestBuilder(Protocol):
    """Turns intercepted calls into queue entries."""

    def submit(
        self,
        http_method: "HttpMethod",
        instance: Any,
        result: Any,
        args: tuple = (),
        kwargs: dict | None = None,
    ) -> asyncio.Future:
        """Queue the request described by result; return its future."""
        ...


class RequestBuilder:
    """Builds RequestEntry objects and pushes them onto the queue."""

    def __init__(self, queue: RequestQueue, tracer: Tracer):
        self._queue = queue
        self._tracer = tracer

    @property
    def queue(self) -> RequestQueue:
        return self._queue

    @property
    def tracer(self) -> Tracer:
        return self._tracer

    def submit(
        self,
        http_method: "HttpMethod",
        instance: Any,
        result: Any,
        args: tuple = (),
        kwargs: dict | None = None,
    ) -> asyncio.Future:
        """Queue the request described by result; return its future.

        Raises MalformedRequestError (nothing queued) when result lacks a
        method or url.
        """
        kwargs = kwargs or {}
        request = HTTPRequest.from_value(result, http_method.name)
        request.owner = class_identity(type(instance))
        request.cache_key = self._cache_key(http_method, instance, request, args, kwargs)

        if http_method.retries is not None:
            retries = http_method.retries
            request.retries = retries(instance) if callable(retries) else retries

        if http_method.cache_seconds is not None:
            request.cache_ttl_seconds = http_method.cache_seconds

        if http_method.delay_ms is not None:
            request.earliest_execute = self._queue.now() + http_method.delay_ms / 1000

        future = asyncio.get_running_loop().create_future()
        entry = RequestEntry(
            instance=instance,
            method_name=http_method.name,
            request=request,
            future=future,
            args=args,
            kwargs=kwargs,
            trace_context=self._tracer.get_context(),
            validator=http_method.validator,
        )
        self._queue.push(entry)

        logger.debug(
            "HTTP request queued: %s %s (method: %s)",
            request.method,
            request.url,
            http_method.name,
        )
        return future

    @staticmethod
    def _cache_key(
        http_method: "HttpMethod",
        instance: Any,
        request: HTTPRequest,
        args: tuple,
        kwargs: dict,
    ) -> str:
        option = http_method.cache_key
        if option is None:
            return request.generate_cache_key()

        key = option(instance, *args, **kwargs) if callable(option) else option
        in_str = f"{request.owner}:{key}"
        return hashlib.sha256(in_str.encode("utf-8")).hexdigest()


class HttpMethod:
    """Wrapper object for an intercepted method.

    Registers itself in the HttpRegistry under (owner class, name) when the
    owning class is created. Sync methods return the request future directly;
    async methods return a coroutine that awaits it.
    """

    def __init__(
        self,
        func: Callable[..., Any],
        *,
        retries: RetriesOption | None = None,
        cache_key: CacheKeyOption | None = None,
        delay_ms: int | None = None,
        cache_seconds: CacheSecondsOption | None = None,
        parameters: list[HTTPParameter] | None = None,
        validate_response: Any = None,
        registry: HttpRegistry | None = None,
    ):
        functools.update_wrapper(self, func)
        self.func = func
        self.name = func.__name__
        self.owner: type | None = None
        self.retries = retries
        self.cache_key = cache_key
        self.delay_ms = delay_ms
        self.cache_seconds = cache_seconds
        self.parameters = list(parameters or [])
        self.validator = (
            ResponseValidator(validate_response) if validate_response is not None else None
        )
        self._registry = registry or default_registry
        self._is_async = inspect.iscoroutinefunction(func)

    def __set_name__(self, owner: type, name: str) -> None:
        self.owner = owner
        self.name = name
        self._registry.register(owner, name, self)

    def __get__(self, instance: Any, owner: type | None = None):
        if instance is None:
            return self
        return types.MethodType(self, instance)

    def __call__(self, instance: Any, *args: Any, **kwargs: Any):
        builder = _builder_for(instance)
        if self._is_async:
            return self._call_async(builder, instance, args, kwargs)

        result = self.func(instance, *args, **kwargs)
        return builder.submit(self, instance, result, args, kwargs)

    async def _call_async(
        self, builder: RequestBuilder, instance: Any, args: tuple, kwargs: dict
    ) -> HTTPRequest:
        result = await self.func(instance, *args, **kwargs)
        return await builder.submit(self, instance, result, args, kwargs)


def _builder_for(instance: Any) -> RequestBuilder:
    builder = getattr(instance, "http_builder", None)
    if builder is None:
        raise RuntimeError(
            f"{type(instance).__name__} has no http_builder; "
            "attach it with Application.attach() first"
        )
    return builder


def http(
    func: Callable[..., Any] | None = None,
    *,
    retries: RetriesOption | None = None,
    cache_key: CacheKeyOption | None = None,
    delay_ms: int | None = None,
    cache_seconds: CacheSecondsOption | None = None,
    parameters: list[HTTPParameter] | None = None,
    validate_response: Any = None,
    registry: HttpRegistry | None = None,
):
    """Decorator turning a request-describing method into a queued HTTP call.

    Args:
        retries: Retries allowed after the first attempt, or a callable
            taking the instance and returning that number.
        cache_key: Fixed cache key, or a callable (instance, *args, **kwargs)
            returning one. Defaults to a hash of the request itself.
        delay_ms: Earliest execution delay after queuing.
        cache_seconds: TTL for caching successful responses, or a callable
            deriving it from the httpx.Response. No caching when unset.
        parameters: Argument metadata exposed through the registry.
        validate_response: JSON-Schema mapping, or pydantic model or type, the JSON
            body must match.
        registry: Registry to record the method in (default: process-wide).
    """

    def decorator(f: Callable[..., Any]) -> HttpMethod:
        return HttpMethod(
            f,
            retries=retries,
            cache_key=cache_key,
            delay_ms=delay_ms,
            cache_seconds=cache_seconds,
            parameters=parameters,
            validate_response=validate_response,
            registry=registry,
        )

    if func is not None:
        return decorator(func)
    return decorator
