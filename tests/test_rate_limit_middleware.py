from __future__ import annotations

import asyncio

from starlette.requests import Request
from starlette.responses import Response

import lingualeap.middleware as middleware_module
from lingualeap.middleware import RateLimitMiddleware


async def _call_next(_: Request) -> Response:
    return Response("ok", media_type="text/plain")


def _dispatch(middleware: RateLimitMiddleware, request: Request) -> Response:
    return asyncio.run(middleware.dispatch(request, _call_next))


def _make_request(*, client_ip: str = "198.51.100.10", path: str = "/api/vocabulary") -> Request:
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": "GET",
        "path": path,
        "raw_path": path.encode("latin-1"),
        "query_string": b"",
        "headers": [],
        "client": (client_ip, 52314),
        "state": {},
    }
    return Request(scope)


async def _noop_app(scope, receive, send):  # pragma: no cover - dispatch を直接呼ぶため未使用
    raise AssertionError("app should not be invoked directly")


def test_rate_limit_blocks_after_capacity_per_ip() -> None:
    middleware = RateLimitMiddleware(_noop_app, ip_capacity_per_minute=2)

    first = _dispatch(middleware, _make_request())
    second = _dispatch(middleware, _make_request())
    third = _dispatch(middleware, _make_request())

    assert first.status_code == 200
    assert first.headers["X-RateLimit-Limit-Ip"] == "2"
    assert first.headers["X-RateLimit-Remaining-Ip"] == "1"
    assert second.status_code == 200
    assert third.status_code == 429
    assert third.headers["Retry-After"] == "60"


def test_rate_limit_buckets_are_independent_per_ip() -> None:
    middleware = RateLimitMiddleware(_noop_app, ip_capacity_per_minute=1)

    assert _dispatch(middleware, _make_request(client_ip="203.0.113.1")).status_code == 200
    assert _dispatch(middleware, _make_request(client_ip="203.0.113.1")).status_code == 429
    assert _dispatch(middleware, _make_request(client_ip="203.0.113.2")).status_code == 200


def test_health_check_is_exempt() -> None:
    middleware = RateLimitMiddleware(_noop_app, ip_capacity_per_minute=1)

    for _ in range(5):
        assert _dispatch(middleware, _make_request(path="/healthz")).status_code == 200


def test_bucket_refills_after_interval(monkeypatch) -> None:
    current = [1_000.0]
    monkeypatch.setattr(middleware_module.time, "time", lambda: current[0])
    middleware = RateLimitMiddleware(_noop_app, ip_capacity_per_minute=1)

    assert _dispatch(middleware, _make_request()).status_code == 200
    assert _dispatch(middleware, _make_request()).status_code == 429

    current[0] += 61.0
    assert _dispatch(middleware, _make_request()).status_code == 200


def test_oldest_bucket_is_evicted_when_full() -> None:
    middleware = RateLimitMiddleware(_noop_app, ip_capacity_per_minute=1, max_buckets=2)

    _dispatch(middleware, _make_request(client_ip="192.0.2.1"))
    _dispatch(middleware, _make_request(client_ip="192.0.2.2"))
    _dispatch(middleware, _make_request(client_ip="192.0.2.3"))

    # 192.0.2.1 のバケットは破棄されているため再び許可される
    assert _dispatch(middleware, _make_request(client_ip="192.0.2.1")).status_code == 200
