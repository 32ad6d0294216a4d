from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from .config import settings
from .logging import configure_logging, logger
from .metrics import registry
from .middleware import RateLimitMiddleware, RequestIDMiddleware
from .routers import health, vocabulary
from .seed import seed_demo_vocabulary
from .store import store


_UNMATCHED_ROUTE = "<unmatched>"


def _metrics_key(request: Request) -> str:
    """Route template for metrics (e.g. `/api/vocabulary/{item_id}`).

    生のパスを使うと ID ごとにキーが増え続けるため、ルーティング後に確定した
    テンプレートで集計する。どのルートにも一致しないリクエストは 1 キーにまとめる。
    """
    route = request.scope.get("route")
    return getattr(route, "path", None) or _UNMATCHED_ROUTE


class AccessLogAndMetricsMiddleware(BaseHTTPMiddleware):
    """Emit structured request logs and capture latency/metrics for each call.

    全リクエストについて `request_id` 付きの構造化ログを出し、
    パス別メトリクスへ遅延・エラー有無を記録する。
    """

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:  # type: ignore[override]
        start = time.time()
        path = request.url.path
        method = request.method
        request_id = getattr(request.state, "request_id", None)
        if not request_id:
            request_id = uuid4().hex
            request.state.request_id = request_id
        client_ip = request.client.host if request.client else "unknown"
        ua = request.headers.get("user-agent", "-")
        is_error = False
        is_timeout = False
        status_code: int | None = None
        error_type: str | None = None
        error_message: str | None = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            is_error = status_code >= 500
            return response
        except Exception as exc:
            is_error = True
            status_code = getattr(exc, "status_code", 500)
            error_type = exc.__class__.__name__
            raw_error_message = str(exc)
            error_message = (
                raw_error_message
                if len(raw_error_message) <= 200
                else f"{raw_error_message[:197]}..."
            )
            is_timeout = isinstance(exc, asyncio.TimeoutError)
            raise
        finally:
            request_id = getattr(request.state, "request_id", request_id)
            latency_ms = (time.time() - start) * 1000
            registry.record(
                _metrics_key(request), latency_ms, is_error=is_error, is_timeout=is_timeout
            )
            log_method = logger.error if is_error else logger.info
            log_method(
                "request_complete",
                path=path,
                method=method,
                latency_ms=latency_ms,
                is_error=is_error,
                is_timeout=is_timeout,
                status_code=status_code,
                error_type=error_type,
                error_message=error_message,
                request_id=request_id,
                client_ip=client_ip,
                user_agent=ua,
            )


def _seed_on_startup() -> None:
    """Optionally insert demo vocabulary when the store is empty."""
    if not settings.auto_seed_on_startup:
        return
    try:
        inserted = seed_demo_vocabulary(store)
        logger.info("auto_seed", inserted=inserted)
    except Exception as exc:  # pragma: no cover - 起動時エラーは継続
        logger.warning("auto_seed_failed", error=repr(exc))


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    _seed_on_startup()
    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""
    configure_logging()
    app = FastAPI(title="LinguaLeap Vocabulary API", version="0.1.0", lifespan=_lifespan)

    configured_origins = list(settings.allowed_cors_origins)
    allow_credentials = bool(configured_origins)
    if not configured_origins:
        configured_origins = ["*"]

    # ワイルドカード許可時は資格情報付き CORS を無効化する
    app.add_middleware(
        CORSMiddleware,
        allow_origins=configured_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Middleware stack (inner → outer): CORS → RequestID → AccessLog → RateLimit
    # Starlette では後から追加したミドルウェアが外側で実行される。
    # RateLimit は最外周（429 はアクセスログ・メトリクスの対象外）。
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(AccessLogAndMetricsMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        ip_capacity_per_minute=settings.rate_limit_per_min_ip,
    )

    app.include_router(vocabulary.router, prefix="/api/vocabulary")
    app.include_router(health.router)

    return app


app = create_app()
