"""Registry of intercepted HTTP methods, keyed by (owning type, method name)."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..models import HTTPParameter

if TYPE_CHECKING:
    from .builder import HttpMethod


@dataclass
class HTTPRequester:
    """One intercepted method and its parameter metadata."""

    owner: type
    method_name: str
    parameters: list[HTTPParameter] = field(default_factory=list)
    http_method: "HttpMethod | None" = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "class_name": self.owner.__name__,
            "module": self.owner.__module__,
            "method_name": self.method_name,
            "parameters": [
                {
                    "name": p.name,
                    "type": p.type,
                    "description": p.description,
                    "required": p.required,
                    "example": p.example,
                }
                for p in self.parameters
            ],
        }


class HttpRegistry:
    """Intercepted methods, registered at class-creation time."""

    def __init__(self):
        self._requesters: dict[tuple[type, str], HTTPRequester] = {}

    def register(
        self, owner: type, method_name: str, http_method: "HttpMethod | None" = None
    ) -> HTTPRequester:
        key = (owner, method_name)
        existing = self._requesters.get(key)
        if existing is not None:
            return existing

        requester = HTTPRequester(
            owner=owner,
            method_name=method_name,
            parameters=list(http_method.parameters) if http_method else [],
            http_method=http_method,
        )
        self._requesters[key] = requester
        return requester

    def get_requesters(self) -> list[HTTPRequester]:
        return list(self._requesters.values())

    def get_requesters_for_class(self, cls: type) -> list[HTTPRequester]:
        """Intercepted methods of cls, including those declared on base classes."""
        return [r for r in self._requesters.values() if issubclass(cls, r.owner)]

    def get_requester(self, cls: type, method_name: str) -> HTTPRequester | None:
        """The requester cls would dispatch to for method_name (nearest in MRO)."""
        for klass in cls.__mro__:
            requester = self._requesters.get((klass, method_name))
            if requester is not None:
                return requester
        return None

    def clear(self) -> None:
        self._requesters.clear()


# Process-wide registry; HttpMethod descriptors add themselves here when their
# owning class is created.
default_registry = HttpRegistry()
