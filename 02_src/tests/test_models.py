"""Tests for request and trace models, settings and log formatting."""

import json
import logging
from datetime import datetime, timezone

import httpx
import pytest

from fetchcore.config import Settings
from fetchcore.errors import MalformedRequestError, ResponseNotReadyError
from fetchcore.logging_config import JSONFormatter, TraceContextFilter
from fetchcore.models import HTTPRequest, TraceEvent, TraceEventType


class TestHTTPRequest:
    def test_from_mapping_accepts_aliases(self):
        seen = []
        req = HTTPRequest.from_value(
            {
                "method": "post",
                "url": "http://parks.test/login",
                "queryParams": {"lang": "en"},
                "onJson": seen.append,
                "ignored": True,
            }
        )

        assert req.method == "POST"
        assert req.query_params == {"lang": "en"}
        assert req.on_json == seen.append

    @pytest.mark.parametrize(
        "value",
        [
            None,
            "http://parks.test",
            {"url": "http://parks.test"},
            HTTPRequest(method="GET", url=""),
            HTTPRequest(method="", url="http://parks.test"),
        ],
    )
    def test_from_value_rejects_malformed(self, value):
        with pytest.raises(MalformedRequestError, match="get_parks"):
            HTTPRequest.from_value(value, "get_parks")

    def test_conflicting_byte_callbacks_rejected(self):
        with pytest.raises(ValueError, match="onArrayBuffer"):
            HTTPRequest.from_value(
                {
                    "method": "GET",
                    "url": "http://parks.test/map.png",
                    "onBlob": lambda data: None,
                    "onArrayBuffer": lambda data: None,
                },
                "get_map",
            )

    def test_from_request_returns_copy(self):
        original = HTTPRequest("GET", "http://parks.test", headers={"a": "1"})
        req = HTTPRequest.from_value(original)

        req.headers["b"] = "2"
        assert original.headers == {"a": "1"}

    def test_build_url_merges_query(self):
        req = HTTPRequest("GET", "http://parks.test/waits?park=1", query_params={"lang": "en"})
        assert httpx.URL(req.build_url()).params == httpx.QueryParams({"park": "1", "lang": "en"})

    def test_json_option_headers_and_body(self):
        req = HTTPRequest("POST", "http://parks.test", body={"a": 1}, options={"json": True})

        headers = req.build_headers()
        assert headers["Content-Type"] == "application/json"
        assert headers["Accept"] == "application/json"
        assert json.loads(req.build_content()) == {"a": 1}
        assert "Content-Type" not in req.headers

    def test_cache_key_depends_on_owner_and_body(self):
        a = HTTPRequest("POST", "http://parks.test", body={"x": 1, "y": 2})
        b = HTTPRequest("POST", "http://parks.test", body={"y": 2, "x": 1})

        assert a.generate_cache_key("Park") == b.generate_cache_key("Park")
        assert a.generate_cache_key("Park") != a.generate_cache_key("Resort")
        b.body = {"x": 2}
        assert a.generate_cache_key("Park") != b.generate_cache_key("Park")

    def test_response_access_before_completion(self):
        req = HTTPRequest("GET", "http://parks.test")
        with pytest.raises(ResponseNotReadyError):
            req.json()
        with pytest.raises(ResponseNotReadyError):
            req.status

    def test_response_passthrough(self):
        req = HTTPRequest("GET", "http://parks.test")
        req.response = httpx.Response(201, json={"id": 7})

        assert req.status == 201
        assert req.ok
        assert req.json() == {"id": 7}


class TestTraceEvent:
    def test_to_dict(self):
        ts = datetime(2026, 1, 2, tzinfo=timezone.utc)
        event = TraceEvent(
            trace_id="t1",
            event_type=TraceEventType.COMPLETE,
            timestamp=ts,
            url="http://parks.test",
            method="GET",
            status=200,
        )

        data = event.to_dict()
        assert data["event_type"] == "http.request.complete"
        assert data["timestamp"] == ts.isoformat()
        assert data["status"] == 200


class TestSettings:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("FETCHCORE_RETRY_MAX_DELAY_SECONDS", "5")
        monkeypatch.setenv("FETCHCORE_CACHE_MAX_ENTRIES", "20")
        monkeypatch.setenv("CACHE_DB_PATH", ":memory:")

        settings = Settings.from_env(trace_history_size=3)

        assert settings.retry_max_delay_seconds == 5.0
        assert settings.cache_max_entries == 20
        assert settings.cache_db_path == ":memory:"
        assert settings.trace_history_size == 3


class TestJSONFormatter:
    def test_formats_context(self):
        record = logging.LogRecord("fetchcore", logging.INFO, __file__, 1, "hello %s", ("park",), None)
        record.context = {"trace_id": "t1"}

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "hello park"
        assert data["level"] == "INFO"
        assert data["context"] == {"trace_id": "t1"}

    async def test_trace_id_from_active_trace(self, tracer):
        record = logging.LogRecord("fetchcore", logging.INFO, __file__, 1, "inside", (), None)
        trace_filter = TraceContextFilter()

        async def log():
            trace_filter.filter(record)
            return tracer.get_context().trace_id

        result = await tracer.trace(log)

        data = json.loads(JSONFormatter().format(record))
        assert data["trace_id"] == result.result

    def test_no_trace_id_outside_trace(self):
        record = logging.LogRecord("fetchcore", logging.INFO, __file__, 1, "outside", (), None)
        TraceContextFilter().filter(record)

        assert "trace_id" not in json.loads(JSONFormatter().format(record))
