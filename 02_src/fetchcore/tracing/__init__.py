"""Tracing module."""

from .history import TraceHistory
from .tracer import ITracer, TraceListener, Tracer, traced

__all__ = ["ITracer", "TraceHistory", "TraceListener", "Tracer", "traced"]
