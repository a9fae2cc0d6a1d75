r"""backend/tests/test_auth_and_rate.py"""

from __future__ import annotations

import sys
from collections import defaultdict, deque
from pathlib import Path

from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.app.main import app  # noqa: E402

ACCURACY_BODY = {"actual": [1, 2], "forecast": [1, 2]}


def test_auth_and_rate_limit(monkeypatch):
    from backend.app.core import observability as obs

    monkeypatch.setenv("API_TOKEN", "X")
    monkeypatch.setenv("RATE_LIMIT_PER_MIN", "1")
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_token", "X", raising=False)
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_per_minute", 1, raising=False)
    monkeypatch.setattr(
        obs.TokenAndRateLimitMiddleware,
        "_buckets",
        defaultdict(deque),
        raising=False,
    )

    client = TestClient(app)

    response = client.post("/api/v1/forecasts/accuracy", json=ACCURACY_BODY)
    assert response.status_code == 401

    authed = client.post(
        "/api/v1/forecasts/accuracy", json=ACCURACY_BODY, headers={"Authorization": "Bearer X"}
    )
    assert authed.status_code == 200

    limited = client.post(
        "/api/v1/forecasts/accuracy", json=ACCURACY_BODY, headers={"Authorization": "Bearer X"}
    )
    assert limited.status_code == 429


def test_health_and_metrics_skip_auth(monkeypatch):
    from backend.app.core import observability as obs

    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_token", "X", raising=False)
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_buckets", defaultdict(deque), raising=False)

    client = TestClient(app)

    assert client.get("/api/v1/health").status_code == 200
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "http_requests_total" in metrics.text


def test_request_body_inspection_is_limited_to_small_forecast_posts():
    from backend.app.core.observability import CONTEXT_BODY_LIMIT, _inspect_body

    assert _inspect_body("POST", "/api/v1/forecasts/series", "120")
    assert _inspect_body("POST", "/api/v1/forecasts/series", str(CONTEXT_BODY_LIMIT))
    assert not _inspect_body("POST", "/api/v1/forecasts/series", str(CONTEXT_BODY_LIMIT + 1))
    assert not _inspect_body("POST", "/api/v1/forecasts/series", None)
    assert not _inspect_body("POST", "/api/v1/forecasts/series", "chunked")
    assert not _inspect_body("GET", "/api/v1/forecasts/series", "120")
    assert not _inspect_body("POST", "/api/v1/health", "120")


def test_large_forecast_body_is_served_without_log_context(monkeypatch, capsys):
    from backend.app.core import observability as obs

    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_token", None, raising=False)
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_buckets", defaultdict(deque), raising=False)

    client = TestClient(app)
    small = {"series": [1, 2, 3], "method": "moving_average", "periods": 1}
    large = {"series": [1.0] * 2000, "method": "moving_average", "periods": 1}

    assert client.post("/api/v1/forecasts/series", json=small).status_code == 200
    assert '"forecast_method": "moving_average"' in capsys.readouterr().out

    response = client.post("/api/v1/forecasts/series", json=large)
    assert response.status_code == 200
    assert response.json()["forecast"] == [1.0]
    assert '"forecast_method": null' in capsys.readouterr().out
