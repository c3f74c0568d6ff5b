"""Middleware tests: request ids, rate limiting, and the error shape.

Runs a throwaway FastAPI app with install_middleware() and a few routes
that raise on purpose. Rate limits come from a real slowapi limiter with
a tiny budget.
"""

import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel
from slowapi import Limiter
from starlette.requests import Request

from api.middleware import (
    AppError,
    create_limiter,
    get_remote_address_exempt,
    install_middleware,
    rate_limit_string,
)


class Body(BaseModel):
    name: str


def build_app(limiter: Limiter) -> FastAPI:
    app = FastAPI()
    install_middleware(app, limiter)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/ok")
    def ok():
        return {"ok": True}

    @app.get("/other")
    def other():
        return {"ok": True}

    @app.get("/missing")
    def missing():
        raise AppError.not_found("No such thing")

    @app.get("/busy")
    def busy():
        raise AppError.service_unavailable()

    @app.get("/boom")
    def boom():
        raise RuntimeError("secret internals")

    @app.post("/echo")
    def echo(body: Body):
        return body

    return app


def make_request(path: str) -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": path,
        "query_string": b"",
        "headers": [],
        "client": ("10.0.0.1", 5000),
        "server": ("testserver", 80),
        "scheme": "http",
        "root_path": "",
    })


@pytest.fixture
def client():
    limiter = create_limiter(window_ms=60_000, max_requests=3)
    return TestClient(build_app(limiter), raise_server_exceptions=False)


# ── Request ids ───────────────────────────────────────────────────────────────

class TestRequestId:
    def test_generated_when_absent(self, client):
        res = client.get("/ok")
        assert len(res.headers["X-Request-ID"]) == 36

    def test_echoed_when_present(self, client):
        res = client.get("/ok", headers={"X-Request-ID": "req-123"})
        assert res.headers["X-Request-ID"] == "req-123"

    def test_included_in_error_body(self, client):
        res = client.get("/missing", headers={"X-Request-ID": "req-404"})
        assert res.json()["requestId"] == "req-404"


# ── Errors ────────────────────────────────────────────────────────────────────

class TestErrorShape:
    def test_app_error(self, client):
        res = client.get("/missing")
        assert res.status_code == 404
        body = res.json()
        assert body["error"] == "No such thing"
        assert body["code"] == "NOT_FOUND"
        assert body["retryable"] is False
        assert "timestamp" in body

    def test_retryable_app_error(self, client):
        res = client.get("/busy")
        assert res.status_code == 503
        assert res.json()["retryable"] is True

    def test_unknown_route(self, client):
        res = client.get("/nope")
        assert res.status_code == 404
        body = res.json()
        assert body["error"] == "Not Found"
        assert body["code"] == "NOT_FOUND"
        assert body["message"] == "Route GET /nope not found"

    def test_validation_error_is_400(self, client):
        res = client.post("/echo", json={"wrong": 1})
        assert res.status_code == 400
        assert res.json()["code"] == "BAD_REQUEST"

    def test_unhandled_error_hides_details(self, client):
        res = client.get("/boom")
        assert res.status_code == 500
        body = res.json()
        assert body["error"] == "Internal Server Error"
        assert body["code"] == "INTERNAL_ERROR"
        assert body["retryable"] is True
        assert "secret" not in res.text

    @pytest.mark.parametrize("factory,status,code,retryable", [
        (lambda: AppError.bad_request("x"), 400, "BAD_REQUEST", False),
        (lambda: AppError.not_found(), 404, "NOT_FOUND", False),
        (lambda: AppError.internal(), 500, "INTERNAL_ERROR", True),
        (lambda: AppError.service_unavailable(), 503, "SERVICE_UNAVAILABLE", True),
    ])
    def test_factories(self, factory, status, code, retryable):
        err = factory()
        assert (err.status_code, err.code, err.retryable) == (status, code, retryable)


# ── Rate limiting ─────────────────────────────────────────────────────────────

class TestRateLimit:
    def test_headers_count_down(self, client):
        res = client.get("/ok")
        assert res.headers["X-RateLimit-Limit"] == "3"
        assert res.headers["X-RateLimit-Remaining"] == "2"
        assert "X-RateLimit-Reset" in res.headers

    def test_exceeding_limit_returns_429(self, client):
        for _ in range(3):
            assert client.get("/ok").status_code == 200
        res = client.get("/ok")
        assert res.status_code == 429
        body = res.json()
        assert body["error"] == "Too Many Requests"
        assert body["retryable"] is True
        assert isinstance(body["retryAfter"], int)
        assert 0 < body["retryAfter"] <= 61
        assert res.headers["Retry-After"] == str(body["retryAfter"])
        assert res.headers["X-RateLimit-Remaining"] == "0"
        assert "X-Request-ID" in res.headers

    def test_window_is_shared_across_routes(self, client):
        for _ in range(3):
            assert client.get("/ok").status_code == 200
        assert client.get("/other").status_code == 429

    def test_window_resets(self):
        client = TestClient(build_app(create_limiter(window_ms=1_000, max_requests=1)))
        assert client.get("/ok").status_code == 200
        assert client.get("/ok").status_code == 429
        time.sleep(1.1)
        assert client.get("/ok").status_code == 200

    def test_health_is_never_limited(self, client):
        for _ in range(10):
            res = client.get("/health")
            assert res.status_code == 200
            assert "X-RateLimit-Limit" not in res.headers

    def test_health_is_exempt_from_the_key(self):
        assert get_remote_address_exempt(make_request("/health")) is None
        assert get_remote_address_exempt(make_request("/ok")) == "10.0.0.1"

    @pytest.mark.parametrize("window_ms,max_requests,expected", [
        (60_000, 100, "100 per 60 seconds"),
        (1_500, 5, "5 per 2 seconds"),
        (200, 1, "1 per 1 seconds"),
    ])
    def test_rate_limit_string(self, window_ms, max_requests, expected):
        assert rate_limit_string(window_ms, max_requests) == expected
