"""Cache inspection API routes."""

from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from ...app import Application


class CacheListResponse(BaseModel):
    size: int
    keys: list[str]


class CacheEntryResponse(BaseModel):
    key: str
    value: Any
    expires_at: float
    last_access: float


def create_cache_router(app: Application) -> APIRouter:
    """Create cache router."""
    router = APIRouter(prefix="/api/cache", tags=["cache"])

    @router.get("", response_model=CacheListResponse)
    async def list_keys(
        prefix: str = Query("", description="Only keys starting with this"),
    ) -> dict:
        """List stored keys and the total entry count."""
        try:
            return {
                "size": await app.cache.size(),
                "keys": await app.cache.keys(prefix),
            }
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/{key}", response_model=CacheEntryResponse)
    async def get_entry(key: str) -> dict:
        """Get one live entry."""
        entry = await app.cache.get_entry(key)
        if entry is None:
            raise HTTPException(status_code=404, detail="Cache entry not found")
        return {
            "key": entry.key,
            "value": entry.value,
            "expires_at": entry.expires_at,
            "last_access": entry.last_access,
        }

    @router.delete("")
    async def clear_cache() -> dict:
        """Delete every entry."""
        try:
            await app.cache.clear()
            return {"status": "cleared"}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.delete("/{key}")
    async def delete_entry(key: str) -> dict:
        """Delete one entry."""
        if not await app.cache.has(key):
            raise HTTPException(status_code=404, detail="Cache entry not found")
        await app.cache.delete(key)
        return {"status": "deleted", "key": key}

    @router.post("/cleanup")
    async def cleanup() -> dict:
        """Remove expired entries now instead of waiting for the sweep."""
        try:
            removed = await app.cache.sweep()
            return {"status": "ok", "removed": removed}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    return router
