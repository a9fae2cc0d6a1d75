r"""backend/tests/test_forecast_api.py"""

from __future__ import annotations

import math
import sys
from collections import defaultdict, deque
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.app.main import app

AS_OF = "2024-03-31"

PRODUCTS = [
    {"id": "p-tea", "name": "Green Tea", "category": "Drinks", "price": 2.0, "stock": 30, "reorderLevel": 0},
    {"id": "p-cracker", "name": "Crackers", "category": "Snacks", "price": 1.0, "stock": 5, "reorderLevel": 10},
    {"id": "p-salt", "name": "Salt", "category": "Pantry", "price": 0.5, "stock": 400, "reorderLevel": 10},
]

SALES = [
    # 300 units in the window -> 10/day -> 3 days of cover for tea
    {
        "id": "s-1",
        "productId": "p-tea",
        "quantity": 300,
        "unitPrice": 2.0,
        "totalAmount": 600.0,
        "date": {"seconds": 1711886400, "nanoseconds": 0},  # 2024-03-31T12:00:00Z
    },
    {
        "id": "s-2",
        "productId": "p-salt",
        "quantity": 30,
        "unitPrice": 0.5,
        "totalAmount": 15.0,
        "date": "2024-03-20T08:00:00Z",
    },
]

client = TestClient(app)


@pytest.fixture(autouse=True)
def _fresh_rate_limit(monkeypatch) -> None:
    from backend.app.core import observability as obs

    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_buckets", defaultdict(deque), raising=False)
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_token", None, raising=False)


def test_health() -> None:
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_restock_endpoint_ranks_recommendations() -> None:
    response = client.post(
        "/api/v1/forecasts/restock",
        json={"products": PRODUCTS, "sales": SALES, "forecastPeriod": 30, "asOf": AS_OF},
    )

    assert response.status_code == 200
    payload = response.json()
    assert [rec["product"]["id"] for rec in payload] == ["p-tea", "p-cracker"]

    tea, cracker = payload
    assert tea["priority"] == "high"
    assert tea["daysUntilStockOut"] == 3
    assert tea["recommendedOrder"] == 340
    assert cracker["daysUntilStockOut"] is None
    assert cracker["priority"] == "low"
    assert cracker["recommendedOrder"] == 20


def test_detailed_endpoint_filters_by_category() -> None:
    response = client.post(
        "/api/v1/forecasts/detailed",
        json={
            "products": PRODUCTS,
            "sales": SALES,
            "method": "linear_regression",
            "period": 5,
            "category": "Snacks",
            "asOf": AS_OF,
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert len(payload) == 1
    entry = payload[0]
    assert entry["product"]["id"] == "p-cracker"
    assert entry["stockStatus"] == "critical"
    assert entry["forecastPeriod"] == 5
    assert entry["dailyForecasts"] == [0.0] * 5


def test_detailed_endpoint_rejects_unknown_method() -> None:
    response = client.post(
        "/api/v1/forecasts/detailed",
        json={"products": PRODUCTS, "sales": SALES, "method": "holt_winters"},
    )
    assert response.status_code == 422


def test_summary_endpoint() -> None:
    response = client.post(
        "/api/v1/forecasts/summary",
        json={"products": PRODUCTS, "sales": SALES, "period": 7, "asOf": AS_OF},
    )

    assert response.status_code == 200
    payload = response.json()
    summary = payload["summary"]
    assert summary["forecastPeriod"] == 7
    assert summary["restockCount"] == 2
    assert summary["stockOutRisk"] == 2
    assert summary["predictedSalesValue"] > 0
    assert payload["topProducts"][0]["product"]["id"] == "p-tea"


def test_series_endpoint_compounds_forecasts() -> None:
    response = client.post(
        "/api/v1/forecasts/series",
        json={"series": [10], "method": "moving_average", "periods": 3, "windowSize": 1},
    )

    assert response.status_code == 200
    assert response.json() == {"method": "moving_average", "periods": 3, "forecast": [10.0, 10.0, 10.0]}


def test_accuracy_endpoint() -> None:
    response = client.post("/api/v1/forecasts/accuracy", json={"actual": [10, 20], "forecast": [10, 22]})
    assert response.status_code == 200
    metrics = response.json()
    assert metrics["mae"] == pytest.approx(1.0)
    assert metrics["rmse"] == pytest.approx(math.sqrt(2))
    assert metrics["mape"] == pytest.approx(5.0)

    mismatched = client.post("/api/v1/forecasts/accuracy", json={"actual": [1, 2, 3], "forecast": [1]})
    assert mismatched.status_code == 200
    assert mismatched.json() == {"mae": 0.0, "mape": 0.0, "rmse": 0.0}


def test_seasonality_endpoint() -> None:
    short = client.post("/api/v1/forecasts/seasonality", json={"series": [1, 2, 3], "period": 7})
    assert short.status_code == 200
    assert short.json()["factors"] == 1

    full = client.post("/api/v1/forecasts/seasonality", json={"series": [2, 4, 2, 4], "period": 2})
    assert full.json()["factors"] == pytest.approx([2 / 3, 4 / 3])


def test_snapshot_backed_request_without_files_returns_503(monkeypatch, tmp_path: Path) -> None:
    from backend.app.api.v1 import forecasts as forecasts_api

    monkeypatch.setattr(forecasts_api._inventory_service, "data_root", tmp_path)

    response = client.post("/api/v1/forecasts/restock", json={})

    assert response.status_code == 503
    assert response.json()["detail"]["error"] == "data_unavailable"


def test_snapshot_backed_request_reads_data_dir(monkeypatch, tmp_path: Path) -> None:
    (tmp_path / "products.csv").write_text(
        "id,name,category,price,stock,reorderLevel\nA,Tea,Drinks,2.0,1,5\n", encoding="utf-8"
    )
    (tmp_path / "sales.csv").write_text(
        "id,productId,quantity,unitPrice,totalAmount,date\n", encoding="utf-8"
    )
    from backend.app.api.v1 import forecasts as forecasts_api

    monkeypatch.setattr(forecasts_api._inventory_service, "data_root", tmp_path)

    response = client.post("/api/v1/forecasts/restock", json={"asOf": AS_OF})

    assert response.status_code == 200
    assert [rec["product"]["id"] for rec in response.json()] == ["A"]
