"""Injection module."""

from .filters import Predicate, compile_filter
from .injector import GLOBAL, IInjector, InjectionRegistration, Injector, inject

__all__ = [
    "GLOBAL",
    "IInjector",
    "InjectionRegistration",
    "Injector",
    "Predicate",
    "compile_filter",
    "inject",
]
