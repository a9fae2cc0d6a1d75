"""Routes for demand forecasting and restock recommendations."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, HTTPException, status

from ...core.config import get_settings
from ...core.observability import FORECAST_RUNS
from ...models import schemas
from ...services.forecasting_service import (
    ForecastingEngine,
    ForecastOptions,
    calculate_accuracy,
    calculate_seasonal_adjustment,
    filter_forecasts,
    generate_forecast,
    summarize_forecast,
    top_forecasts_by_demand,
)
from ...services.inventory_service import InventoryService

LOGGER = logging.getLogger(__name__)

router = APIRouter()

TOP_PRODUCTS_LIMIT = 10

_settings = get_settings()
_engine = ForecastingEngine(config_root=_settings.config_dir)
_inventory_service = InventoryService(data_root=_settings.data_dir)


def _error_payload(code: str, message: str) -> dict[str, str]:
    """Return a standardised error payload."""

    return {"error": code, "message": message}


def _invalid_request(exc: ValueError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=_error_payload("invalid_request", str(exc)),
    )


def _snapshot(
    payload: schemas.SnapshotRequest,
) -> tuple[List[schemas.Product], List[schemas.Sale]]:
    """Use the inline products/sales, reading whatever is missing from the data directory."""

    try:
        products = payload.products if payload.products is not None else _inventory_service.fetch_products()
        sales = payload.sales if payload.sales is not None else _inventory_service.fetch_sales()
    except FileNotFoundError as exc:
        LOGGER.error("Inventory snapshot unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_error_payload(
                "data_unavailable",
                "Product or sale snapshots are missing. Send them in the request or export them to the data directory.",
            ),
        ) from exc
    return products, sales


def _options(window_size: int | None, alpha: float | None) -> ForecastOptions:
    defaults = _engine.default_options()
    return ForecastOptions(
        window_size=window_size or defaults.window_size,
        alpha=alpha if alpha is not None else defaults.alpha,
    )


def _detailed(payload: schemas.DetailedForecastRequest) -> List[schemas.DetailedForecast]:
    products, sales = _snapshot(payload)
    try:
        forecasts = _engine.generate_detailed_forecast(
            products,
            sales,
            method=payload.method,
            period=payload.period,
            options=_options(payload.window_size, payload.alpha),
            today=payload.as_of,
        )
    except ValueError as exc:
        LOGGER.warning("Detailed forecast rejected: %s", exc)
        raise _invalid_request(exc) from exc
    return forecasts


@router.post("/forecasts/restock", response_model=List[schemas.RestockRecommendation])
def restock_recommendations(payload: schemas.RestockRequest) -> List[schemas.RestockRecommendation]:
    """Return products that need restocking, most urgent first."""

    products, sales = _snapshot(payload)
    LOGGER.info(
        "Restock request for %d products / %d sales, period=%s",
        len(products),
        len(sales),
        payload.forecast_period,
    )
    recommendations = _engine.calculate_restock_recommendations(
        products, sales, forecast_period=payload.forecast_period, today=payload.as_of
    )
    FORECAST_RUNS.labels("restock", schemas.ForecastMethod.MOVING_AVERAGE.value).inc()
    return recommendations


@router.post("/forecasts/detailed", response_model=List[schemas.DetailedForecast])
def detailed_forecast(payload: schemas.DetailedForecastRequest) -> List[schemas.DetailedForecast]:
    """Return a demand projection for every product matching the filters."""

    forecasts = _detailed(payload)
    method = (payload.method or _engine.default_method).value
    FORECAST_RUNS.labels("detailed", method).inc()
    return filter_forecasts(forecasts, product_id=payload.product_id, category=payload.category)


@router.post("/forecasts/summary", response_model=schemas.ForecastSummaryResponse)
def forecast_summary(payload: schemas.DetailedForecastRequest) -> schemas.ForecastSummaryResponse:
    """Return the headline figures and the top products by forecast demand."""

    products, sales = _snapshot(payload)
    snapshot = payload.model_copy(update={"products": products, "sales": sales})
    forecasts = _detailed(snapshot)
    period = payload.period or _engine.forecast_period_days
    recommendations = _engine.calculate_restock_recommendations(
        products, sales, forecast_period=period, today=payload.as_of
    )

    FORECAST_RUNS.labels("summary", (payload.method or _engine.default_method).value).inc()
    return schemas.ForecastSummaryResponse(
        summary=summarize_forecast(recommendations, forecasts, period),
        top_products=top_forecasts_by_demand(forecasts, TOP_PRODUCTS_LIMIT),
    )


@router.post("/forecasts/series", response_model=schemas.SeriesForecastResponse)
def forecast_series(payload: schemas.SeriesForecastRequest) -> schemas.SeriesForecastResponse:
    """Project a raw daily series forward with the chosen algorithm."""

    method = payload.method or _engine.default_method
    periods = payload.periods or _engine.forecast_period_days
    try:
        values = generate_forecast(
            payload.series, method, periods, _options(payload.window_size, payload.alpha)
        )
    except ValueError as exc:
        LOGGER.warning("Series forecast rejected: %s", exc)
        raise _invalid_request(exc) from exc

    FORECAST_RUNS.labels("series", method.value).inc()
    return schemas.SeriesForecastResponse(method=method, periods=periods, forecast=values)


@router.post("/forecasts/accuracy", response_model=schemas.AccuracyMetrics)
def forecast_accuracy(payload: schemas.AccuracyRequest) -> schemas.AccuracyMetrics:
    """Compare a forecast with observed values (MAE, MAPE, RMSE)."""

    if len(payload.actual) != len(payload.forecast):
        LOGGER.info(
            "Accuracy requested for mismatched series (%d vs %d); returning zero metrics",
            len(payload.actual),
            len(payload.forecast),
        )
    return calculate_accuracy(payload.actual, payload.forecast)


@router.post("/forecasts/seasonality", response_model=schemas.SeasonalityResponse)
def seasonality(payload: schemas.SeasonalityRequest) -> schemas.SeasonalityResponse:
    """Return per-phase seasonal factors for a daily series."""

    try:
        factors = calculate_seasonal_adjustment(payload.series, payload.period)
    except ValueError as exc:
        raise _invalid_request(exc) from exc
    return schemas.SeasonalityResponse(period=payload.period, factors=factors)
