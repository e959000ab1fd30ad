"""fetchcore: queued, cached, retried and traced HTTP calls for asyncio services."""

from .app import Application, IApplication
from .cache import CacheStore
from .config import Settings
from .errors import (
    FetchCoreError,
    HTTPStatusError,
    InjectionError,
    MalformedRequestError,
    ResponseNotReadyError,
    ResponseValidationError,
    TransportError,
)
from .http import HttpRegistry, ProxyInjector, default_registry, http
from .injection import GLOBAL, Injector, inject
from .models import HTTPOptions, HTTPParameter, HTTPRequest
from .reuse import reusable
from .tracing import Tracer, traced

__version__ = "0.1.0"

__all__ = [
    "Application",
    "CacheStore",
    "FetchCoreError",
    "GLOBAL",
    "HTTPOptions",
    "HTTPParameter",
    "HTTPRequest",
    "HTTPStatusError",
    "HttpRegistry",
    "IApplication",
    "InjectionError",
    "Injector",
    "MalformedRequestError",
    "ProxyInjector",
    "ResponseNotReadyError",
    "ResponseValidationError",
    "Settings",
    "Tracer",
    "TransportError",
    "default_registry",
    "http",
    "inject",
    "reusable",
    "traced",
]
