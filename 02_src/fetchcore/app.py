"""Application bootstrap and lifecycle management."""

from typing import Any, Awaitable, Callable, Protocol, TypeVar

import httpx

from . import reuse
from .cache import CacheStore, ICacheStore
from .config import Settings, resolve_db_path
from .http import (
    HttpRegistry,
    HttpTransport,
    IHttpTransport,
    ProxyInjector,
    QueueProcessor,
    RequestBuilder,
    RequestQueue,
    default_registry,
)
from .injection import Injector
from .logging_config import get_logger
from .models import TraceResult
from .tracing import Tracer

logger = get_logger(__name__)

T = TypeVar("T")


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> None:
        """Reset state between test runs."""
        ...


class Application:
    """Wires the request pipeline services together."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        registry: HttpRegistry | None = None,
        proxy_prefixes: list[str] | None = None,
    ):
        self._settings = settings or Settings.from_env()
        self._db_path = resolve_db_path(self._settings.cache_db_path)
        self._httpx_transport = transport
        self._registry = registry or default_registry
        self._proxy_prefixes = proxy_prefixes

        # Components (will be initialized in start())
        self._cache: ICacheStore | None = None
        self._tracer: Tracer | None = None
        self._injector: Injector | None = None
        self._queue: RequestQueue | None = None
        self._builder: RequestBuilder | None = None
        self._transport: IHttpTransport | None = None
        self._processor: QueueProcessor | None = None
        self._proxy: ProxyInjector | None = None

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")
        s = self._settings

        # 1. Cache store (no dependencies)
        self._cache = CacheStore(
            self._db_path,
            max_entries=s.cache_max_entries,
            sweep_interval_seconds=s.cache_sweep_interval_seconds,
        )
        await self._cache.init()
        logger.info("Cache store initialized")

        # 2. Tracer and injector (no dependencies)
        self._tracer = Tracer(
            max_history_size=s.trace_history_size,
            buffer_linger_seconds=s.trace_buffer_linger_seconds,
        )
        self._injector = Injector()

        # 3. Queue and builder (builder depends on tracer)
        self._queue = RequestQueue()
        self._builder = RequestBuilder(self._queue, self._tracer)

        # 4. Transport
        self._transport = HttpTransport(
            timeout=s.http_timeout_seconds, transport=self._httpx_transport
        )

        # 5. Proxy support, when configured
        if self._proxy_prefixes:
            self._proxy = ProxyInjector(self._proxy_prefixes)
            self._injector.register_instance(self._proxy)
            logger.info("Proxy support enabled for prefixes %s", self._proxy_prefixes)

        # 6. Processor (depends on everything above)
        self._processor = QueueProcessor(
            self._queue,
            self._cache,
            self._tracer,
            self._injector,
            self._transport,
            s,
        )
        await self._processor.start()
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        if self._processor is not None:
            await self._processor.stop()
        if self._queue is not None:
            self._queue.clear()
        if self._transport:
            await self._transport.close()
        if self._cache:
            await self._cache.close()
            logger.info("Cache store closed")

    async def reset(self) -> None:
        """Reset state between test runs."""
        # 1. Pause processing and drop pending work
        if self._processor is not None:
            await self._processor.stop()
            self._processor.clear()

        # 2. Clear cache, traces, handlers
        if self._cache:
            await self._cache.clear()
            logger.info("Cache cleared")
        if self._tracer:
            self._tracer.cleanup()
        if self._injector:
            self._injector.clear()
            if self._proxy:
                self._injector.register_instance(self._proxy)
        reuse.clear()

        # 3. Restart processing
        if self._processor is not None:
            await self._processor.start()
            logger.info("Reset complete")

    def attach(self, instance: Any, register_injections: bool = False) -> Any:
        """Give instance what its @http and @traced methods need.

        With register_injections the instance's @inject handlers also take
        part in global broadcasts, i.e. see every request.
        """
        instance.http_builder = self.builder
        instance.tracer = self.tracer
        if register_injections:
            self.injector.register_instance(instance)
        return instance

    async def trace(
        self, fn: Callable[[], Awaitable[T]], metadata: dict | None = None
    ) -> TraceResult[T]:
        return await self.tracer.trace(fn, metadata)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def registry(self) -> HttpRegistry:
        return self._registry

    @property
    def cache(self) -> ICacheStore:
        """Get cache store instance."""
        if not self._cache:
            raise RuntimeError("Application not started")
        return self._cache

    @property
    def tracer(self) -> Tracer:
        """Get tracer instance."""
        if not self._tracer:
            raise RuntimeError("Application not started")
        return self._tracer

    @property
    def injector(self) -> Injector:
        """Get injector instance."""
        if not self._injector:
            raise RuntimeError("Application not started")
        return self._injector

    @property
    def queue(self) -> RequestQueue:
        if self._queue is None:
            raise RuntimeError("Application not started")
        return self._queue

    @property
    def builder(self) -> RequestBuilder:
        if not self._builder:
            raise RuntimeError("Application not started")
        return self._builder

    @property
    def processor(self) -> QueueProcessor:
        if self._processor is None:
            raise RuntimeError("Application not started")
        return self._processor

    @property
    def proxy(self) -> ProxyInjector | None:
        return self._proxy
