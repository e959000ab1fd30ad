"""Tests for the inspection API."""

import httpx
import pytest
import pytest_asyncio

from fetchcore.api import create_fastapi_app
from fetchcore.http import http
from fetchcore.models import HTTPParameter


@pytest_asyncio.fixture
async def api(application):
    fastapi_app = create_fastapi_app(application)
    transport = httpx.ASGITransport(app=fastapi_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://api") as client:
        yield client


@pytest.fixture
def attraction(application, registry):
    class Attraction:
        @http(
            registry=registry,
            cache_seconds=60,
            parameters=[HTTPParameter("ride", "string", "Ride id", required=True)],
        )
        def get_ride(self, ride="coaster"):
            return {"method": "GET", "url": f"http://parks.test/success?ride={ride}"}

    return application.attach(Attraction())


class TestTracesApi:
    async def test_list_and_get_trace(self, api, application, attraction):
        result = await application.trace(attraction.get_ride, {"park": "demo"})

        resp = await api.get("/api/traces")
        assert resp.status_code == 200
        traces = resp.json()
        assert [t["trace_id"] for t in traces] == [result.trace_id]
        assert "events" not in traces[0]

        resp = await api.get(f"/api/traces/{result.trace_id}")
        assert resp.status_code == 200
        assert resp.json()["event_count"] == 2
        assert resp.json()["metadata"] == {"park": "demo"}

        resp = await api.get(f"/api/traces/{result.trace_id}/events")
        assert [e["event_type"] for e in resp.json()] == [
            "http.request.start",
            "http.request.complete",
        ]

    async def test_filter_by_metadata(self, api, application, attraction):
        await application.trace(attraction.get_ride, {"park": "a"})
        await application.trace(lambda: attraction.get_ride("log-flume"), {"park": "b"})

        resp = await api.get("/api/traces", params={"metadata_key": "park", "metadata_value": "b"})
        assert len(resp.json()) == 1

    async def test_unknown_trace_is_404(self, api):
        assert (await api.get("/api/traces/nope")).status_code == 404
        assert (await api.get("/api/traces/nope/events")).status_code == 404

    async def test_bad_timestamp_is_400(self, api):
        resp = await api.get("/api/traces", params={"start": "yesterday"})
        assert resp.status_code == 400


class TestCacheApi:
    async def test_list_get_delete(self, api, attraction, application):
        await attraction.get_ride()
        (key,) = await application.cache.keys()

        resp = await api.get("/api/cache")
        assert resp.json() == {"size": 1, "keys": [key]}

        resp = await api.get(f"/api/cache/{key}")
        assert resp.status_code == 200
        assert '"ok"' in resp.json()["value"]

        assert (await api.delete(f"/api/cache/{key}")).status_code == 200
        assert (await api.get(f"/api/cache/{key}")).status_code == 404
        assert (await api.delete(f"/api/cache/{key}")).status_code == 404

    async def test_clear_and_cleanup(self, api, application):
        await application.cache.set("a", 1, 60)

        resp = await api.post("/api/cache/cleanup")
        assert resp.json()["removed"] == 0

        assert (await api.delete("/api/cache")).status_code == 200
        assert await application.cache.size() == 0


class TestHttpApi:
    async def test_queue_status(self, api, application):
        resp = await api.get("/api/http/queue")
        body = resp.json()
        assert body["length"] == 0
        assert body["pending"] == []
        assert body["running"] is True

    async def test_requesters(self, api, attraction):
        resp = await api.get("/api/http/requesters", params={"class_name": "Attraction"})

        (requester,) = resp.json()
        assert requester["method_name"] == "get_ride"
        assert requester["parameters"][0]["name"] == "ride"
