"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fetchcore.config import Settings  # noqa: E402
from fetchcore.http import HttpRegistry  # noqa: E402


class FakeClock:
    """Manually advanced clock for cache and queue tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MockServer:
    """Routes for httpx.MockTransport, recording every request it sees."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._routes: dict[str, Callable[[httpx.Request], httpx.Response]] = {}

    def route(
        self,
        path: str,
        status: int = 200,
        json: Any = None,
        text: str | None = None,
    ) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            if json is not None:
                return httpx.Response(status, json=json)
            return httpx.Response(status, text=text or "")

        self._routes[path] = respond

    def route_fn(self, path: str, fn: Callable[[httpx.Request], httpx.Response]) -> None:
        self._routes[path] = fn

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        respond = self._routes.get(request.url.path)
        if respond is None:
            return httpx.Response(404, text="not found")
        return respond(request)

    def count(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    """Settings with delays shrunk for fast tests."""
    return Settings(
        idle_delay_seconds=0.001,
        dispatch_delay_seconds=0,
        retry_base_delay_seconds=0.001,
        retry_max_delay_seconds=0.01,
        cache_db_path=":memory:",
        cache_sweep_interval_seconds=0,
        trace_buffer_linger_seconds=0,
    )


@pytest_asyncio.fixture
async def cache_store(clock):
    """Create in-memory cache store for testing."""
    from fetchcore.cache import CacheStore

    store = CacheStore(":memory:", max_entries=5, sweep_interval_seconds=0, clock=clock)
    await store.init()
    yield store
    await store.close()


@pytest.fixture
def tracer():
    from fetchcore.tracing import Tracer

    return Tracer(buffer_linger_seconds=0)


@pytest.fixture
def injector():
    from fetchcore.injection import Injector

    return Injector()


@pytest.fixture
def registry():
    return HttpRegistry()


@pytest.fixture
def queue(clock):
    from fetchcore.http import RequestQueue

    return RequestQueue(clock=clock)


@pytest.fixture
def server():
    srv = MockServer()
    srv.route("/success", json={"ok": True, "items": [1, 2, 3]})
    srv.route("/fail", status=500, text="boom")
    return srv


@pytest_asyncio.fixture
async def transport(server):
    from fetchcore.http import HttpTransport

    tr = HttpTransport(transport=httpx.MockTransport(server.handler))
    yield tr
    await tr.close()


@pytest.fixture
def processor(queue, cache_store, tracer, injector, transport, settings):
    """Processor driven step by step through process_next()/drain()."""
    from fetchcore.http import QueueProcessor

    return QueueProcessor(queue, cache_store, tracer, injector, transport, settings)


@pytest.fixture
def builder(queue, tracer):
    from fetchcore.http import RequestBuilder

    return RequestBuilder(queue, tracer)


@pytest_asyncio.fixture
async def application(settings, server, registry):
    """Started application with a running processor and mocked network."""
    from fetchcore.app import Application

    app = Application(
        settings=settings,
        transport=httpx.MockTransport(server.handler),
        registry=registry,
    )
    await app.start()
    yield app
    await app.stop()
