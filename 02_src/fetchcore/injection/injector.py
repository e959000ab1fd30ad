"""Filter-based injection/broadcast bus."""

import asyncio
import inspect
import itertools
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Protocol

from ..errors import InjectionError
from ..logging_config import get_logger
from .filters import Predicate, compile_filter

logger = get_logger(__name__)

GLOBAL = "global"

INJECT_ATTR = "__fetchcore_inject__"

Handler = Callable[..., Any]


@dataclass
class InjectionRegistration:
    """A compiled filter bound to a handler.

    Free handlers are called as ``handler(*args)``. Class-bound handlers
    (``owner`` set) are called as ``handler(instance, *args)``.
    """

    filter: Predicate
    handler: Handler
    priority: int = 0
    owner: type | None = None

    @property
    def name(self) -> str:
        return getattr(self.handler, "__qualname__", repr(self.handler))


def _split_priority(
    filter: Mapping[str, Any] | None, priority: int | None, fields: dict
) -> tuple[Predicate, int]:
    query = dict(filter or {})
    query.update(fields)
    # priority is registration metadata, never part of the match
    embedded = query.pop("priority", 0)
    return compile_filter(query), embedded if priority is None else priority


def inject(filter: Mapping[str, Any] | None = None, priority: int | None = None, **fields):
    """Mark a method as an injection handler for events matching filter.

    The mark is picked up per class when an instance is registered with, or
    addressed by, an Injector. Lower priorities run earlier (default 0).
    Decorators may be stacked to match several filters.
    """
    predicate, prio = _split_priority(filter, priority, fields)

    def decorator(func):
        marks = list(getattr(func, INJECT_ATTR, ()))
        marks.append((predicate, prio))
        setattr(func, INJECT_ATTR, marks)
        return func

    return decorator


class IInjector(Protocol):
    """Publish/dispatch of request, response and error events."""

    def register(
        self,
        filter: Mapping[str, Any] | None,
        handler: Handler,
        priority: int | None = None,
        owner: type | None = None,
    ) -> InjectionRegistration:
        """Register a free handler, or a method handler for an owner class."""
        ...

    def register_instance(self, instance: Any) -> None:
        """Include an instance's handlers in global broadcasts."""
        ...

    async def broadcast(self, scope: Any, event: Mapping[str, Any], *args: Any) -> int:
        """Dispatch event to matching handlers, in priority order."""
        ...


class Injector:
    """Declarative-filter broadcast bus.

    Handlers are grouped by priority (ascending). Handlers in one group run
    concurrently; groups run one after another, each fully completing before
    the next starts.
    """

    def __init__(self):
        self._instances: list[Any] = []
        self._functions: list[InjectionRegistration] = []
        self._owner_registrations: dict[type, list[InjectionRegistration]] = {}
        self._class_cache: dict[type, list[InjectionRegistration]] = {}

    def register(
        self,
        filter: Mapping[str, Any] | None,
        handler: Handler,
        priority: int | None = None,
        owner: type | None = None,
    ) -> InjectionRegistration:
        """Register a free handler, or a method handler for an owner class."""
        predicate, prio = _split_priority(filter, priority, {})
        registration = InjectionRegistration(
            filter=predicate, handler=handler, priority=prio, owner=owner
        )
        if owner is None:
            self._functions.append(registration)
        else:
            self._owner_registrations.setdefault(owner, []).append(registration)
            self._class_cache.clear()
        return registration

    def handler(self, filter: Mapping[str, Any] | None = None, priority: int | None = None, **fields):
        """Decorator form of register() for free functions."""

        def decorator(func: Handler) -> Handler:
            merged = dict(filter or {})
            merged.update(fields)
            self.register(merged, func, priority)
            return func

        return decorator

    def register_instance(self, instance: Any) -> None:
        """Include an instance's handlers in global broadcasts."""
        if not any(existing is instance for existing in self._instances):
            self._instances.append(instance)

    def unregister_instance(self, instance: Any) -> None:
        self._instances = [i for i in self._instances if i is not instance]

    @property
    def instances(self) -> list[Any]:
        return list(self._instances)

    def registrations_for(self, cls: type) -> list[InjectionRegistration]:
        """Method registrations for a class, including inherited ones."""
        cached = self._class_cache.get(cls)
        if cached is not None:
            return cached

        registrations: list[InjectionRegistration] = []
        for name in dir(cls):
            attr = inspect.getattr_static(cls, name, None)
            if isinstance(attr, (staticmethod, classmethod)):
                continue
            for predicate, prio in getattr(attr, INJECT_ATTR, ()):
                registrations.append(
                    InjectionRegistration(
                        filter=predicate, handler=attr, priority=prio, owner=cls
                    )
                )

        for klass in cls.__mro__:
            registrations.extend(self._owner_registrations.get(klass, []))

        self._class_cache[cls] = registrations
        return registrations

    async def _collect(
        self,
        event: Mapping[str, Any],
        instances: Iterable[Any],
        args: tuple,
        include_functions: bool,
    ) -> list[tuple[int, str, Callable[[], Any]]]:
        calls: list[tuple[int, str, Callable[[], Any]]] = []

        def bind(fn: Handler, *bound: Any) -> Callable[[], Any]:
            return lambda: fn(*bound)

        if include_functions:
            for reg in self._functions:
                predicate = await reg.filter.resolve(None)
                if predicate.matches(event):
                    calls.append((reg.priority, reg.name, bind(reg.handler, *args)))

        for instance in instances:
            for reg in self.registrations_for(type(instance)):
                predicate = await reg.filter.resolve(instance)
                if predicate.matches(event):
                    calls.append(
                        (reg.priority, reg.name, bind(reg.handler, instance, *args))
                    )

        return calls

    async def broadcast(
        self,
        scope: Any,
        event: Mapping[str, Any],
        *args: Any,
        include_global: bool = False,
    ) -> int:
        """Dispatch event to matching handlers, in priority order.

        scope is GLOBAL (free handlers plus registered instances), a single
        instance, or a list of instances. With include_global the global
        handlers are added to an instance scope; an instance is never
        addressed twice. Extra args are passed to every handler. Returns the
        number of handlers called.

        Raises InjectionError once the failing group has finished; later
        groups are not run.
        """
        if isinstance(scope, str) and scope == GLOBAL:
            calls = await self._collect(
                event, list(self._instances), args, include_functions=True
            )
        else:
            instances = list(scope) if isinstance(scope, (list, tuple, set)) else [scope]
            if include_global:
                for instance in self._instances:
                    if not any(existing is instance for existing in instances):
                        instances.append(instance)
            calls = await self._collect(
                event, instances, args, include_functions=include_global
            )

        calls.sort(key=lambda call: call[0])
        event_name = event.get("eventName") if isinstance(event, Mapping) else None

        for priority, group in itertools.groupby(calls, key=lambda call: call[0]):
            group = list(group)
            results = await asyncio.gather(
                *(self._invoke(fn) for _, _, fn in group),
                return_exceptions=True,
            )
            errors = [r for r in results if isinstance(r, Exception)]
            if errors:
                for (_, name, _), result in zip(group, results):
                    if isinstance(result, Exception):
                        logger.error(
                            "Injection handler %s failed for %s: %s",
                            name,
                            event_name,
                            result,
                        )
                raise InjectionError(event_name, errors) from errors[0]

        return len(calls)

    @staticmethod
    async def _invoke(fn: Callable[[], Any]) -> Any:
        result = fn()
        if inspect.isawaitable(result):
            result = await result
        return result

    def clear(self) -> None:
        """Forget every instance and registration."""
        self._instances.clear()
        self._functions.clear()
        self._owner_registrations.clear()
        self._class_cache.clear()
