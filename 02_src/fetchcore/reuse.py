"""Share one in-flight call per (instance, method, arguments).

    class Park:
        @reusable()
        async def fetch_schedule(self, day):
            ...

        @reusable(forever=True)
        async def init(self):
            ...

Concurrent callers of ``fetch_schedule("mon")`` on the same instance await
the same task. With ``forever=True`` a successful result is kept and returned
to every later caller; failures are always forgotten so the next call retries.
"""

import asyncio
import functools
import json
from dataclasses import dataclass
from typing import Any

from .logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ReuseEntry:
    instance: Any
    method_name: str
    args: str
    task: asyncio.Future
    resolved: bool = False
    value: Any = None


_active: dict[tuple[int, str, str], ReuseEntry] = {}


def _serialise_args(args: tuple, kwargs: dict) -> str:
    if not args and not kwargs:
        return ""
    return json.dumps([list(args), kwargs], sort_keys=True, default=repr)


def reusable(forever: bool = False):
    """Decorator for async methods; see module docstring."""

    def decorator(func):
        method_name = func.__name__

        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            serialised = _serialise_args(args, kwargs)
            key = (id(self), method_name, serialised)

            entry = _active.get(key)
            if entry is not None and entry.instance is self:
                if entry.resolved:
                    return entry.value
                logger.debug("Reusing pending call to %s", method_name)
                return await asyncio.shield(entry.task)

            task = asyncio.ensure_future(func(self, *args, **kwargs))
            entry = ReuseEntry(
                instance=self, method_name=method_name, args=serialised, task=task
            )
            _active[key] = entry

            def _settle(done: asyncio.Future) -> None:
                if _active.get(key) is not entry:
                    return
                if forever and not done.cancelled() and done.exception() is None:
                    entry.resolved = True
                    entry.value = done.result()
                    return
                del _active[key]

            task.add_done_callback(_settle)
            return await asyncio.shield(task)

        return wrapper

    return decorator


def active_count() -> int:
    """Number of pending or permanently kept calls."""
    return len(_active)


def active_entries() -> list[ReuseEntry]:
    return list(_active.values())


def clear() -> None:
    """Forget every entry. Pending tasks keep running."""
    _active.clear()
