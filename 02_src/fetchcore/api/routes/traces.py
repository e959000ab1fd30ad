"""Trace history API routes."""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from ...app import Application


class TraceEventResponse(BaseModel):
    """Response model for one HTTP trace event."""

    trace_id: str
    event_type: str
    timestamp: datetime
    url: str
    method: str
    status: int | None = None
    duration: float | None = None
    error: str | None = None
    headers: dict[str, str] | None = None
    body: Any = None
    cache_hit: bool | None = None
    retry_count: int | None = None
    class_name: str | None = None
    method_name: str | None = None


class TraceResponse(BaseModel):
    """Response model for a completed trace."""

    trace_id: str
    start_time: datetime
    end_time: datetime
    duration: float
    metadata: dict[str, Any]
    error: str | None = None
    event_count: int
    events: list[TraceEventResponse] | None = None


def _parse_time(value: str | None, name: str) -> datetime | None:
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name} timestamp format")
    # trace times are UTC
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def create_traces_router(app: Application) -> APIRouter:
    """Create traces router."""
    router = APIRouter(prefix="/api/traces", tags=["traces"])

    @router.get("", response_model=list[TraceResponse], response_model_exclude_none=True)
    async def list_traces(
        metadata_key: str | None = Query(None, description="Metadata field to match"),
        metadata_value: str | None = Query(None, description="Value for metadata_key"),
        start: str | None = Query(None, description="ISO timestamp, inclusive"),
        end: str | None = Query(None, description="ISO timestamp, inclusive"),
        include_events: bool = Query(False),
        limit: int = Query(100, ge=1, le=1000),
    ) -> list[dict]:
        """List traces, oldest first, with optional filters."""
        start_dt = _parse_time(start, "start")
        end_dt = _parse_time(end, "end")
        try:
            tracer = app.tracer
            if metadata_key is not None:
                traces = tracer.get_traces_by_metadata({metadata_key: metadata_value})
            else:
                traces = tracer.get_all_traces()

            if start_dt or end_dt:
                traces = [
                    t
                    for t in traces
                    if (start_dt is None or t.start_time >= start_dt)
                    and (end_dt is None or t.start_time <= end_dt)
                ]

            return [t.to_dict(include_events=include_events) for t in traces[-limit:]]
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/{trace_id}", response_model=TraceResponse)
    async def get_trace(trace_id: str) -> dict:
        """Get one trace with its events."""
        trace = app.tracer.get_trace(trace_id)
        if trace is None:
            raise HTTPException(status_code=404, detail="Trace not found")
        return trace.to_dict()

    @router.get("/{trace_id}/events", response_model=list[TraceEventResponse])
    async def get_trace_events(trace_id: str) -> list[dict]:
        """Get the events of one trace."""
        if app.tracer.get_trace(trace_id) is None:
            raise HTTPException(status_code=404, detail="Trace not found")
        return [e.to_dict() for e in app.tracer.get_trace_events(trace_id)]

    return router
