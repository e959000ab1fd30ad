"""Request records and queue entries."""

import asyncio
import copy
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import httpx

from ..errors import MalformedRequestError, ResponseNotReadyError
from .tracing import TraceContext

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")

# Keys accepted when a wrapped method returns a plain mapping
_FIELD_ALIASES = {
    "queryParams": "query_params",
    "onJson": "on_json",
    "onText": "on_text",
    "onBlob": "on_bytes",
    "onArrayBuffer": "on_bytes",
}


@dataclass
class HTTPParameter:
    """OpenAPI-like description of one argument of an intercepted method."""

    name: str
    type: str
    description: str
    required: bool = False
    example: Any = None


@dataclass
class HTTPOptions:
    """Request options."""

    json: bool = False  # send body as JSON and ask for JSON back


@dataclass
class HTTPRequest:
    """Description of one HTTP call, plus its response once it completes."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    query_params: dict[str, str] | None = None
    body: Any = None
    tags: list[str] = field(default_factory=list)
    options: HTTPOptions = field(default_factory=HTTPOptions)

    # response callbacks, called with the decoded body on success
    on_json: Callable[[Any], Any] | None = None
    on_text: Callable[[str], Any] | None = None
    on_bytes: Callable[[bytes], Any] | None = None

    # set by the request builder
    owner: str | None = None  # owning class identity, part of the cache key
    retries: int = 0  # remaining retries
    cache_key: str | None = None
    cache_ttl_seconds: int | Callable[[httpx.Response], int] | None = None
    earliest_execute: float | None = None  # queue clock timestamp
    proxy: str | None = None

    response: httpx.Response | None = None

    def __post_init__(self):
        self.method = str(self.method).upper()
        if isinstance(self.options, Mapping):
            self.options = HTTPOptions(**self.options)
        if self.headers is None:
            self.headers = {}
        if self.tags is None:
            self.tags = []

    @classmethod
    def from_value(cls, value: Any, method_name: str = "request") -> "HTTPRequest":
        """Coerce the return value of an intercepted method into an HTTPRequest.

        Accepts an HTTPRequest or a mapping with at least 'method' and 'url'.
        Anything else raises MalformedRequestError. A mapping that sets one
        field twice (say ``onBlob`` and ``onArrayBuffer``) raises ValueError.
        """
        if isinstance(value, HTTPRequest):
            if value.method and value.url:
                return value.clone()
            raise MalformedRequestError(method_name, value)

        if isinstance(value, Mapping) and value.get("method") and value.get("url"):
            kwargs = {}
            sources: dict[str, str] = {}
            for key, item in value.items():
                name = _FIELD_ALIASES.get(key, key)
                if name not in cls.__dataclass_fields__:
                    continue
                if name in sources:
                    raise ValueError(
                        f"{method_name}: {sources[name]!r} and {key!r} both set {name}"
                    )
                sources[name] = key
                kwargs[name] = item
            return cls(**kwargs)

        raise MalformedRequestError(method_name, value)

    def build_url(self) -> str:
        """Full URL including query parameters."""
        url = httpx.URL(self.url)
        if self.query_params:
            url = url.copy_merge_params(self.query_params)
        return str(url)

    def build_headers(self) -> dict[str, str]:
        """Request headers, including JSON defaults when options.json is set."""
        headers = dict(self.headers)
        if self.options.json:
            headers["Content-Type"] = "application/json"
            headers["Accept"] = "application/json"
        return headers

    def build_content(self) -> bytes | str | None:
        """Serialised request body."""
        if self.body is None:
            return None
        if isinstance(self.body, (bytes, str)):
            return self.body
        return json.dumps(self.body)

    def generate_cache_key(self, owner: str | None = None) -> str:
        """sha256 over owner, method, URL, headers and body."""
        owner = owner if owner is not None else (self.owner or "")
        body = self.body
        if body is None:
            body_str = ""
        elif isinstance(body, bytes):
            body_str = body.decode("utf-8", errors="replace")
        elif isinstance(body, str):
            body_str = body
        else:
            body_str = json.dumps(body, sort_keys=True, default=str)

        in_str = ":".join(
            [
                owner,
                self.method,
                self.build_url(),
                json.dumps(self.build_headers(), sort_keys=True),
                body_str,
            ]
        )
        return hashlib.sha256(in_str.encode("utf-8")).hexdigest()

    # Response passthrough

    def _require_response(self) -> httpx.Response:
        if self.response is None:
            raise ResponseNotReadyError()
        return self.response

    def json(self) -> Any:
        return self._require_response().json()

    def text(self) -> str:
        return self._require_response().text

    @property
    def content(self) -> bytes:
        return self._require_response().content

    @property
    def status(self) -> int:
        return self._require_response().status_code

    @property
    def ok(self) -> bool:
        return self._require_response().is_success

    def clone(self) -> "HTTPRequest":
        cloned = copy.copy(self)
        cloned.headers = dict(self.headers)
        cloned.query_params = dict(self.query_params) if self.query_params else None
        cloned.tags = list(self.tags)
        cloned.options = copy.copy(self.options)
        return cloned


@dataclass
class RequestEntry:
    """A queued request plus its scheduling, retry and trace metadata."""

    instance: Any
    method_name: str
    request: HTTPRequest
    future: asyncio.Future
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    trace_context: TraceContext | None = None
    retry_attempt: int = 0  # retries performed so far
    validator: Any = None  # ResponseValidator

    @property
    def earliest_execute(self) -> float:
        return self.request.earliest_execute or 0.0

    @property
    def class_name(self) -> str | None:
        if self.instance is None:
            return None
        return type(self.instance).__name__
