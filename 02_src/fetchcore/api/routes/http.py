"""Request queue and registry API routes."""

from fastapi import APIRouter, Query

from ...app import Application


def create_http_router(app: Application) -> APIRouter:
    """Create http router."""
    router = APIRouter(prefix="/api/http", tags=["http"])

    @router.get("/queue")
    async def get_queue() -> dict:
        """Queue length and pending entries in dispatch order."""
        queue = app.queue
        now = queue.now()
        pending = [
            {
                "method": entry.request.method,
                "url": entry.request.url,
                "class_name": entry.class_name,
                "method_name": entry.method_name,
                "retries_left": entry.request.retries,
                "retry_attempt": entry.retry_attempt,
                "due_in_seconds": max(0.0, entry.earliest_execute - now),
                "trace_id": entry.trace_context.trace_id if entry.trace_context else None,
            }
            for entry in queue.entries()
        ]
        return {"length": len(queue), "running": app.processor.running, "pending": pending}

    @router.get("/requesters")
    async def get_requesters(
        class_name: str | None = Query(None, description="Filter by owning class name"),
    ) -> list[dict]:
        """Registered @http methods with their parameter metadata."""
        requesters = app.registry.get_requesters()
        if class_name:
            requesters = [r for r in requesters if r.owner.__name__ == class_name]
        return [r.to_dict() for r in requesters]

    return router
