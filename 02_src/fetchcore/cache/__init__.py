"""Cache module."""

from .cache_store import CacheStore, ICacheStore

__all__ = ["CacheStore", "ICacheStore"]
