r"""backend\app\core\observability.py

Request middleware (bearer-token auth, per-client rate limiting, structured
JSON request logs) and the Prometheus metrics exposed on ``/metrics``.
"""

from __future__ import annotations

import json
import os
import threading
import time
import uuid
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Callable

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response


_REQUEST_COUNTER = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "path", "status"]
)
_LATENCY_HISTOGRAM = Histogram(
    "http_request_latency_seconds", "Request latency", ["method", "path"]
)
FORECAST_RUNS = Counter(
    "forecast_runs_total", "Forecast computations served", ["operation", "method"]
)


# Larger bodies carry full product/sale snapshots and are not parsed for logging.
CONTEXT_BODY_LIMIT = 4096


def _inspect_body(method: str, path: str, content_length: str | None) -> bool:
    """Whether a request body is small enough to read for log enrichment."""

    if method != "POST" or not path.startswith("/api/v1/forecasts"):
        return False
    try:
        return 0 < int(content_length or "") <= CONTEXT_BODY_LIMIT
    except ValueError:
        return False


def _request_context(body_bytes: bytes) -> tuple[str | None, str | None]:
    """Pull ``productId`` and ``method`` from a JSON body for log enrichment."""

    try:
        data = json.loads(body_bytes.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None, None
    if not isinstance(data, dict):
        return None, None

    product_id = data.get("productId", data.get("product_id"))
    method = data.get("method")
    return (
        str(product_id) if isinstance(product_id, (str, int)) else None,
        str(method) if isinstance(method, str) else None,
    )


class TokenAndRateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware enforcing auth, rate limiting, logging, and Prometheus metrics."""

    _lock: threading.Lock = threading.Lock()
    _buckets: dict[str, deque[float]] = defaultdict(deque)
    _per_minute: int = int(os.getenv("RATE_LIMIT_PER_MIN", "60"))
    # Auth is off under pytest even when the host shell exports API_TOKEN;
    # test_auth_and_rate.py patches this attribute to exercise it.
    _token: str | None = None if os.getenv("PYTEST_CURRENT_TEST") else os.getenv("API_TOKEN")
    _exempt_prefixes: tuple[str, ...] = (
        "/api/v1/health",
        "/metrics",
        "/docs",
        "/redoc",
        "/openapi.json",
    )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        method = request.method
        client_ip = request.client.host if request.client else "unknown"
        request_id = (
            request.headers.get("x-request-id")
            or request.headers.get("request-id")
            or str(uuid.uuid4())
        )
        product_id = None
        forecast_method = None

        # Reading the body consumes it; the request is rebuilt with a replaying
        # ``receive`` so the route handler still sees the payload.
        if _inspect_body(method, path, request.headers.get("content-length")):
            body_bytes = await request.body()
            if body_bytes:
                product_id, forecast_method = _request_context(body_bytes)

                async def receive() -> dict:
                    return {"type": "http.request", "body": body_bytes, "more_body": False}

                request = Request(request.scope, receive)

        start_perf = time.perf_counter()
        start_wall = time.time()

        def _finalize(response: Response) -> Response:
            latency = time.perf_counter() - start_perf
            status_code = getattr(response, "status_code", 500)

            _REQUEST_COUNTER.labels(method, path, str(status_code)).inc()
            _LATENCY_HISTOGRAM.labels(method, path).observe(latency)

            log_payload = {
                "timestamp": datetime.fromtimestamp(start_wall, tz=timezone.utc).isoformat(),
                "path": path,
                "method": method,
                "status": status_code,
                "latency_ms": int(latency * 1000),
                "request_id": request_id,
                "client_ip": client_ip,
                "product_id": product_id,
                "forecast_method": forecast_method,
            }
            print(json.dumps(log_payload))
            return response

        # Token authentication
        if self._token and not path.startswith(self._exempt_prefixes):
            auth_header = request.headers.get("authorization", "")
            if auth_header != f"Bearer {self._token}":
                return _finalize(PlainTextResponse("Unauthorized", status_code=401))

        # Rate limiting per client IP
        if self._per_minute > 0:
            now = time.time()
            with self._lock:
                window = self._buckets[client_ip]
                while window and now - window[0] > 60.0:
                    window.popleft()
                if len(window) >= self._per_minute:
                    return _finalize(PlainTextResponse("Too Many Requests", status_code=429))
                window.append(now)

        try:
            response = await call_next(request)
        except Exception:
            # Still record metrics/logs for the failed request before re-raising.
            _finalize(PlainTextResponse("Internal Server Error", status_code=500))
            raise

        return _finalize(response)


def metrics_endpoint() -> Response:
    """Return Prometheus metrics payload."""

    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
