"""Core data models for fetchcore."""

from .cache import CacheEntry
from .requests import (
    HTTP_METHODS,
    HTTPOptions,
    HTTPParameter,
    HTTPRequest,
    RequestEntry,
)
from .tracing import TraceContext, TraceEvent, TraceEventType, TraceInfo, TraceResult

__all__ = [
    # Cache
    "CacheEntry",
    # Requests
    "HTTP_METHODS",
    "HTTPOptions",
    "HTTPParameter",
    "HTTPRequest",
    "RequestEntry",
    # Tracing
    "TraceContext",
    "TraceEvent",
    "TraceEventType",
    "TraceInfo",
    "TraceResult",
]
