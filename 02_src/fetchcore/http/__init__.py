"""HTTP pipeline: interception, queue, processing, transport."""

from .builder import HttpMethod, IRequestBuilder, RequestBuilder, class_identity, http
from .processor import (
    EVENT_ERROR,
    EVENT_REQUEST,
    EVENT_RESPONSE,
    IQueueProcessor,
    QueueProcessor,
    build_event,
)
from .proxy import ProxyInjector
from .queue import IRequestQueue, RequestQueue, calculate_backoff_delay
from .registry import HTTPRequester, HttpRegistry, default_registry
from .transport import HttpTransport, IHttpTransport
from .validation import ResponseValidator

__all__ = [
    "EVENT_ERROR",
    "EVENT_REQUEST",
    "EVENT_RESPONSE",
    "HTTPRequester",
    "HttpMethod",
    "HttpRegistry",
    "HttpTransport",
    "IHttpTransport",
    "IQueueProcessor",
    "IRequestBuilder",
    "IRequestQueue",
    "ProxyInjector",
    "QueueProcessor",
    "RequestBuilder",
    "RequestQueue",
    "ResponseValidator",
    "build_event",
    "calculate_backoff_delay",
    "class_identity",
    "default_registry",
    "http",
]
