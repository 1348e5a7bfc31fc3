"""
Unit tests for slowapi rate limiting.
"""

from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from middleware.rate_limiter import (
    RETRY_AFTER_SECONDS,
    get_client_ip,
    setup_rate_limiting,
)
from middleware.request_id import RequestIDMiddleware


def make_request(headers=None, client=("10.0.0.9", 1234)):
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "headers": raw_headers, "client": client})


class TestGetClientIp:

    def test_forwarded_for_first_entry(self):
        request = make_request({"X-Forwarded-For": "203.0.113.5, 10.0.0.1"})
        assert get_client_ip(request) == "203.0.113.5"

    def test_real_ip(self):
        assert get_client_ip(make_request({"X-Real-IP": " 198.51.100.7 "})) == "198.51.100.7"

    def test_peer_address(self):
        assert get_client_ip(make_request()) == "10.0.0.9"


def build_app(enabled: bool) -> FastAPI:
    app = FastAPI()
    setup_rate_limiting(app, requests_per_minute=2, enabled=enabled)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    return app


class TestRateLimiting:

    def test_over_limit_is_429(self):
        client = TestClient(build_app(enabled=True))

        assert client.get("/ping").status_code == 200
        assert client.get("/ping").status_code == 200
        response = client.get("/ping", headers={"X-Request-ID": "req-429"})

        assert response.status_code == 429
        assert response.headers["Retry-After"] == str(RETRY_AFTER_SECONDS)
        body = response.json()
        assert body["error_code"] == "rate_limited"
        assert body["request_id"] == "req-429"
        assert body["details"]["retry_after_seconds"] == RETRY_AFTER_SECONDS

    def test_limits_are_per_client(self):
        client = TestClient(build_app(enabled=True))
        for _ in range(2):
            client.get("/ping", headers={"X-Forwarded-For": "203.0.113.1"})

        response = client.get("/ping", headers={"X-Forwarded-For": "203.0.113.2"})
        assert response.status_code == 200

    def test_disabled(self):
        app = build_app(enabled=False)
        client = TestClient(app)

        statuses = {client.get("/ping").status_code for _ in range(5)}

        assert statuses == {200}
        assert not hasattr(app.state, "limiter")
