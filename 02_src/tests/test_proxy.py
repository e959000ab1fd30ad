"""Tests for ProxyInjector."""

import asyncio
import json

import httpx
import pytest

from fetchcore.http import ProxyInjector, build_event
from fetchcore.models import HTTPRequest, RequestEntry


@pytest.fixture
def request_obj():
    return HTTPRequest(
        method="GET", url="http://parks.test/waits", query_params={"lang": "en"}
    )


def entry_for(request, loop):
    return RequestEntry(
        instance=None, method_name="get", request=request, future=loop.create_future()
    )


class TestProxyConfig:
    """Tests for env loading."""

    def test_loads_config_from_prefixes(self, monkeypatch):
        monkeypatch.setenv("GLOBAL_CRAWLBASE", json.dumps({"apikey": "cb"}))
        monkeypatch.setenv("PARK_BASICPROXY", json.dumps({"proxy": "http://proxy:8080"}))

        proxy = ProxyInjector(["GLOBAL", "PARK"])

        assert proxy.config["crawlbase"] == {"apikey": "cb"}
        assert proxy.basic_proxy_url == "http://proxy:8080"

    def test_later_prefix_wins(self, monkeypatch):
        monkeypatch.setenv("A_SCRAPFLY", json.dumps({"apikey": "first"}))
        monkeypatch.setenv("B_SCRAPFLY", json.dumps({"apikey": "second"}))

        assert ProxyInjector(["A", "B"]).config["scrapfly"]["apikey"] == "second"

    def test_invalid_json_is_skipped(self, monkeypatch):
        monkeypatch.setenv("X_SCRAPFLY", "not json")
        assert ProxyInjector(["X"]).config == {}

    def test_disable_clears_config(self, monkeypatch, request_obj):
        monkeypatch.setenv("X_CRAWLBASE", json.dumps({"apikey": "cb"}))
        proxy = ProxyInjector(["X"])
        proxy.disable()

        proxy.inject_proxy(request_obj)
        assert request_obj.url == "http://parks.test/waits"


class TestProxyRewrite:
    """Tests for request rewriting."""

    def test_crawlbase_rewrite(self, request_obj):
        proxy = ProxyInjector()
        proxy.config = {"crawlbase": {"apikey": "cb"}, "scrapfly": {"apikey": "sf"}}

        proxy.inject_proxy(request_obj)

        url = httpx.URL(request_obj.url)
        assert url.host == "api.crawlbase.com"
        assert url.params["url"] == "http://parks.test/waits?lang=en"
        assert url.params["token"] == "cb"
        assert request_obj.query_params is None

    def test_scrapfly_rewrite(self, request_obj):
        proxy = ProxyInjector()
        proxy.config = {"scrapfly": {"apikey": "sf"}}

        proxy.inject_proxy(request_obj)

        url = httpx.URL(request_obj.url)
        assert url.host == "api.scrapfly.io"
        assert url.params["key"] == "sf"

    def test_basic_proxy_sets_request_proxy(self, request_obj):
        proxy = ProxyInjector()
        proxy.config = {"basic_proxy": {"proxy": "http://proxy:8080"}}

        proxy.inject_proxy(request_obj)

        assert request_obj.proxy == "http://proxy:8080"
        assert request_obj.url == "http://parks.test/waits"

    async def test_handlers_match_broadcast_events(self, injector, request_obj):
        proxy = ProxyInjector()
        proxy.config = {"crawlbase": {"apikey": "cb"}}
        injector.register_instance(proxy)
        entry = entry_for(request_obj, asyncio.get_running_loop())

        await injector.broadcast(
            "global", build_event("httpRequest", entry, request_obj), request_obj
        )

        assert request_obj.url.startswith("https://api.crawlbase.com/")


class TestScrapflyUnwrap:
    """Tests for response unwrapping."""

    def test_unwraps_envelope(self, request_obj):
        proxy = ProxyInjector()
        proxy.config = {"scrapfly": {"apikey": "sf"}}
        envelope = {
            "result": {
                "content": '{"waits": [5, 10]}',
                "status_code": 200,
                "response_headers": {"content-type": "application/json", "content-encoding": "gzip"},
            }
        }
        request_obj.response = httpx.Response(
            200, json=envelope, request=httpx.Request("GET", "https://api.scrapfly.io/scrape")
        )

        proxy.unwrap_proxy_response(request_obj)

        assert request_obj.json() == {"waits": [5, 10]}
        assert request_obj.response.headers["content-type"] == "application/json"

    def test_leaves_non_envelope_alone(self, request_obj):
        proxy = ProxyInjector()
        proxy.config = {"scrapfly": {"apikey": "sf"}}
        original = httpx.Response(
            200, text="plain", request=httpx.Request("GET", "https://api.scrapfly.io/scrape")
        )
        request_obj.response = original

        proxy.unwrap_proxy_response(request_obj)

        assert request_obj.response is original
