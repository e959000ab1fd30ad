"""Cache data models."""

from dataclasses import dataclass
from typing import Any


@dataclass
class CacheEntry:
    """A stored cache row with its decoded value."""

    key: str
    value: Any
    expires_at: float  # unix timestamp
    last_access: float  # unix timestamp
