from __future__ import annotations

import re
import threading
import time
import uuid
from collections import OrderedDict
from typing import Awaitable, Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response
from structlog import contextvars as structlog_contextvars

from .logging import logger

__all__ = [
    "RequestIDMiddleware",
    "RateLimitMiddleware",
]

_INCOMING_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{8,64}$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assign a request ID to each incoming request and expose it in headers.

    - Sets `request.state.request_id`
    - Reuses a well-formed incoming `X-Request-ID`, otherwise generates a UUID
    - Binds `request_id` into structlog contextvars for the duration of the request
    - Adds `X-Request-ID` to the response headers
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        incoming = request.headers.get("x-request-id", "")
        request_id = incoming if _INCOMING_REQUEST_ID.match(incoming) else str(uuid.uuid4())
        request.state.request_id = request_id
        structlog_contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog_contextvars.unbind_contextvars("request_id")
        response.headers["X-Request-ID"] = request_id
        return response


class _TokenBucket:
    """Thread-safe token bucket that refills to capacity every fixed interval (seconds)."""

    def __init__(self, capacity: int, refill_interval_sec: float) -> None:
        self.capacity = max(1, capacity)
        self.tokens = self.capacity
        self.refill_interval = max(1.0, float(refill_interval_sec))
        self.last_refill = time.time()
        self._lock = threading.Lock()

    def allow(self) -> tuple[bool, int]:
        """Consume one token if available and return the remaining count."""
        now = time.time()
        with self._lock:
            elapsed = now - self.last_refill
            if elapsed >= self.refill_interval:
                self.tokens = self.capacity
                self.last_refill = now
            if self.tokens > 0:
                self.tokens -= 1
                return True, self.tokens
            return False, 0


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP rate limiting using token buckets.

    バケットは IP ごとに保持し、上限件数を超えた場合は最も古いバケットから破棄する。
    `exempt_paths` に含まれるパス（ヘルスチェック等）は制限対象外。
    """

    def __init__(
        self,
        app,
        *,
        ip_capacity_per_minute: int,
        max_buckets: int = 10_000,
        exempt_paths: tuple[str, ...] = ("/healthz",),
    ) -> None:
        super().__init__(app)
        self._ip_capacity = max(1, int(ip_capacity_per_minute))
        self._max_buckets = max(1, int(max_buckets))
        self._exempt_paths = frozenset(exempt_paths)
        self._ip_buckets: OrderedDict[str, _TokenBucket] = OrderedDict()
        self._lock = threading.Lock()

    def _get_ip_bucket(self, key: str) -> _TokenBucket:
        with self._lock:
            bucket = self._ip_buckets.get(key)
            if bucket is None:
                while len(self._ip_buckets) >= self._max_buckets:
                    self._ip_buckets.popitem(last=False)
                bucket = _TokenBucket(
                    capacity=self._ip_capacity,
                    refill_interval_sec=60.0,
                )
                self._ip_buckets[key] = bucket
            else:
                self._ip_buckets.move_to_end(key, last=True)
            return bucket

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        if request.url.path in self._exempt_paths:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        ok_ip, remaining_ip = self._get_ip_bucket(client_ip).allow()
        if not ok_ip:
            logger.warning("rate_limited", client_ip=client_ip, path=request.url.path)
            return JSONResponse(
                status_code=429,
                content={"detail": "Too Many Requests (per IP)"},
                headers={
                    "Retry-After": "60",
                    "X-RateLimit-Limit-Ip": str(self._ip_capacity),
                    "X-RateLimit-Remaining-Ip": "0",
                },
            )

        response = await call_next(request)
        response.headers.setdefault("X-RateLimit-Limit-Ip", str(self._ip_capacity))
        response.headers.setdefault("X-RateLimit-Remaining-Ip", str(remaining_ip))
        return response
