"""Proxy routing as an injection participant.

Configuration is read from ``{PREFIX}_CRAWLBASE``, ``{PREFIX}_SCRAPFLY`` and
``{PREFIX}_BASICPROXY`` environment variables, each holding JSON::

    GLOBAL_CRAWLBASE='{"apikey": "TOKEN"}'
    GLOBAL_SCRAPFLY='{"apikey": "KEY"}'
    GLOBAL_BASICPROXY='{"proxy": "http://proxy.example.com:8080"}'

At most one proxy applies per request, in the order CrawlBase, Scrapfly,
basic proxy.
"""

import json
import os
from typing import Any

import httpx

from ..injection import inject
from ..logging_config import get_logger
from ..models import HTTPRequest

logger = get_logger(__name__)

CRAWLBASE_ENDPOINT = "https://api.crawlbase.com/"
SCRAPFLY_ENDPOINT = "https://api.scrapfly.io/scrape"

_CONFIG_KEYS = {
    "CRAWLBASE": "crawlbase",
    "SCRAPFLY": "scrapfly",
    "BASICPROXY": "basic_proxy",
}


class ProxyInjector:
    """Rewrites outgoing requests to go through the configured proxy."""

    def __init__(self, config_prefixes: list[str] | None = None):
        self.config: dict[str, dict[str, Any]] = {}
        self.enabled = True
        self.load_config(config_prefixes or [])

    def load_config(self, prefixes: list[str]) -> dict[str, dict[str, Any]]:
        """Merge config from env vars for each prefix; later prefixes win."""
        loaded: dict[str, dict[str, Any]] = {}
        for prefix in prefixes:
            for suffix, key in _CONFIG_KEYS.items():
                env_name = f"{prefix}_{suffix}"
                raw = os.getenv(env_name)
                if not raw:
                    continue
                try:
                    loaded[key] = json.loads(raw)
                    logger.info("Loaded %s proxy config from %s", key, env_name)
                except json.JSONDecodeError as e:
                    logger.warning("Failed to parse %s as JSON: %s", env_name, e)

        self.config.update(loaded)
        return self.config

    def enable(self, config_prefixes: list[str] | None = None) -> None:
        if config_prefixes:
            self.load_config(config_prefixes)
        self.enabled = True
        logger.info("Proxy support enabled")

    def disable(self) -> None:
        self.enabled = False
        self.config = {}
        logger.info("Proxy support disabled")

    @property
    def basic_proxy_url(self) -> str | None:
        return (self.config.get("basic_proxy") or {}).get("proxy")

    # Late priority: other request handlers see the original URL
    @inject({"eventName": "httpRequest"}, priority=1000)
    def inject_proxy(self, request: HTTPRequest) -> None:
        if not self.enabled:
            return

        crawlbase = self.config.get("crawlbase")
        if crawlbase:
            original = request.build_url()
            request.url = str(
                httpx.URL(
                    CRAWLBASE_ENDPOINT,
                    params={"url": original, "token": crawlbase["apikey"]},
                )
            )
            request.query_params = None
            logger.info("Routing through CrawlBase: %s", original)
            return

        scrapfly = self.config.get("scrapfly")
        if scrapfly:
            original = request.build_url()
            request.url = str(
                httpx.URL(
                    SCRAPFLY_ENDPOINT,
                    params={"url": original, "key": scrapfly["apikey"]},
                )
            )
            request.query_params = None
            logger.info("Routing through Scrapfly: %s", original)
            return

        if self.basic_proxy_url:
            request.proxy = self.basic_proxy_url
            logger.debug("Using basic HTTP proxy: %s", self.basic_proxy_url)

    @inject({"eventName": "httpResponse"})
    def unwrap_proxy_response(self, request: HTTPRequest) -> None:
        """Replace a Scrapfly envelope with the page it wraps."""
        if not self.enabled or not self.config.get("scrapfly") or request.response is None:
            return

        try:
            body = request.response.json()
        except ValueError as e:
            logger.warning("Failed to unwrap Scrapfly response: %s", e)
            return

        result = body.get("result") if isinstance(body, dict) else None
        if not isinstance(result, dict) or result.get("content") is None:
            return

        status = result.get("status_code") or 200
        # content is already decoded text
        headers = {
            k: v
            for k, v in (result.get("response_headers") or {}).items()
            if k.lower() not in ("content-encoding", "content-length", "transfer-encoding")
        }
        logger.debug("Unwrapping Scrapfly response (status %s)", status)
        request.response = httpx.Response(
            status,
            content=str(result["content"]).encode("utf-8"),
            headers=headers,
            request=request.response.request,
        )
