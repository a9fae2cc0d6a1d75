r"""backend\app\services\forecasting_service.py

Demand forecasting engine for the inventory backend.

Three point-forecast algorithms are provided (moving average, least-squares
linear regression and simple exponential smoothing) together with the restock
policy built on top of them: days until stock-out, recommended order size,
priority ranking and per-product stock status.

Everything here is a pure computation over in-memory ``Product`` and ``Sale``
records.  Snapshots are fetched by the caller (see ``InventoryService``) and
nothing is cached between calls.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from datetime import date, datetime, timezone
from numbers import Real
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..core.config import load_forecasting_settings
from ..models.schemas import (
    AccuracyMetrics,
    DetailedForecast,
    ForecastMethod,
    ForecastSummary,
    Priority,
    Product,
    RestockRecommendation,
    Sale,
    StockStatus,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_HISTORY_DAYS = 30
DEFAULT_MOVING_AVERAGE_WINDOW = 7
DEFAULT_SMOOTHING_ALPHA = 0.3

# Restock policy
SAFETY_BUFFER_DAYS = 7
MIN_ORDER_REORDER_MULTIPLE = 2
HIGH_PRIORITY_DAYS = 7
MEDIUM_PRIORITY_DAYS = 14
EXCESS_STOCK_REORDER_MULTIPLE = 3
DEFAULT_TREND_ALIGNMENT = 85.0

_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


class UnknownMethodError(ValueError):
    """Raised when a forecast is requested with an unsupported algorithm name."""


@dataclass(frozen=True)
class ForecastOptions:
    """Tuning knobs forwarded to the point-forecast algorithms."""

    window_size: int = DEFAULT_MOVING_AVERAGE_WINDOW
    alpha: float = DEFAULT_SMOOTHING_ALPHA

    def __post_init__(self) -> None:
        if self.window_size <= 0:
            raise ValueError("window_size must be a positive integer")
        if not 0.0 < self.alpha <= 1.0:
            raise ValueError("alpha must be in the interval (0, 1]")


# ---------------------------------------------------------------------------
# Helper utilities (kept top-level for straightforward unit testing)


def _mean(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.mean(np.asarray(values, dtype=float)))


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _window_end(today: Optional[date]) -> pd.Timestamp:
    """Midnight (naive UTC) of the last day in a history window."""

    end = pd.Timestamp(today or _utc_today())
    if end.tzinfo is not None:
        end = end.tz_convert("UTC").tz_localize(None)
    return end.normalize()


def resolve_method(method: Union[ForecastMethod, str]) -> ForecastMethod:
    """Map a method name onto ``ForecastMethod``, rejecting unknown names."""

    if isinstance(method, ForecastMethod):
        return method
    try:
        return ForecastMethod(method)
    except ValueError as exc:
        raise UnknownMethodError(f"Unknown forecasting method: {method}") from exc


def build_daily_series(
    sales: Iterable[Sale],
    product_id: str,
    window_days: int = DEFAULT_HISTORY_DAYS,
    today: Optional[date] = None,
) -> List[float]:
    """Return per-day sold quantities for ``product_id``, oldest day first.

    The window is the ``window_days`` UTC calendar days ending on ``today``
    (inclusive).  A ``datetime`` passed as ``today`` counts as its UTC
    calendar day.  Days without sales are zero, so the result always has
    exactly ``window_days`` entries.
    """

    if window_days <= 0:
        return []

    days = pd.date_range(end=_window_end(today), periods=window_days, freq="D")
    rows = [
        (sale.date.astimezone(timezone.utc).date(), sale.quantity)
        for sale in sales
        if sale.product_id == product_id
    ]
    if not rows:
        return [0.0] * window_days

    frame = pd.DataFrame(rows, columns=["day", "quantity"])
    daily = frame.groupby(pd.to_datetime(frame["day"]))["quantity"].sum()
    return daily.reindex(days, fill_value=0).astype(float).tolist()


def moving_average(series: Sequence[float], window_size: int = DEFAULT_MOVING_AVERAGE_WINDOW) -> float:
    """Mean of the last ``window_size`` points, or of all points when fewer exist."""

    if len(series) < window_size:
        return _mean(series)
    return _mean(list(series)[-window_size:])


def fit_line(x: Sequence[float], y: Sequence[float]) -> Optional[tuple[float, float]]:
    """Ordinary least squares fit returning ``(slope, intercept)``.

    ``None`` is returned when the normal equations are singular, i.e. when
    every ``x`` is identical.
    """

    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    n = xs.size
    if n == 0 or n != ys.size:
        return None

    sum_x = float(xs.sum())
    sum_y = float(ys.sum())
    sum_xy = float((xs * ys).sum())
    sum_xx = float((xs * xs).sum())

    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        return None

    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n
    return slope, intercept


def linear_regression(series: Sequence[float], forecast_period: int = 7) -> float:
    """Extrapolate the least-squares trend line one step past the series.

    ``forecast_period`` is accepted for call compatibility only; the
    prediction is always for the next single day.  Results are clamped at 0.
    """

    n = len(series)
    if n < 2:
        return float(series[0]) if n else 0.0

    fit = fit_line(range(1, n + 1), series)
    if fit is None:
        LOGGER.warning("Degenerate regression over %d points; falling back to the mean", n)
        return max(0.0, _mean(series))

    slope, intercept = fit
    prediction = slope * (n + 1) + intercept
    return max(0.0, float(prediction))


def exponential_smoothing(series: Sequence[float], alpha: float = DEFAULT_SMOOTHING_ALPHA) -> float:
    """Simple exponential smoothing seeded with the first observation."""

    if len(series) == 0:
        return 0.0

    forecast = float(series[0])
    for value in list(series)[1:]:
        forecast = alpha * float(value) + (1 - alpha) * forecast
    return forecast


_ALGORITHMS: Dict[ForecastMethod, Callable[[Sequence[float], ForecastOptions], float]] = {
    ForecastMethod.MOVING_AVERAGE: lambda data, opts: moving_average(data, opts.window_size),
    ForecastMethod.LINEAR_REGRESSION: lambda data, opts: linear_regression(data),
    ForecastMethod.EXPONENTIAL_SMOOTHING: lambda data, opts: exponential_smoothing(data, opts.alpha),
}


def generate_forecast(
    series: Sequence[float],
    method: Union[ForecastMethod, str] = ForecastMethod.MOVING_AVERAGE,
    periods: int = 7,
    options: Optional[ForecastOptions] = None,
) -> List[float]:
    """Project ``periods`` future days, one point forecast at a time.

    Each forecast is appended to a private working copy of the history before
    the next step, so later days are predicted from earlier predictions.
    """

    algorithm = _ALGORITHMS[resolve_method(method)]
    if periods < 0:
        raise ValueError("periods must be non-negative")
    opts = options or ForecastOptions()

    working = [float(value) for value in series]
    forecasts: List[float] = []
    for _ in range(periods):
        value = algorithm(working, opts)
        forecasts.append(value)
        working.append(value)
    return forecasts


def _is_number(value: object) -> bool:
    return isinstance(value, Real) and not math.isnan(float(value))


def calculate_accuracy(
    actual: Sequence[Optional[float]], forecast: Sequence[Optional[float]]
) -> AccuracyMetrics:
    """MAE, MAPE (percent) and RMSE over aligned, non-missing pairs.

    Mismatched or empty inputs yield all-zero metrics instead of an error.
    """

    if len(actual) != len(forecast) or len(actual) == 0:
        return AccuracyMetrics()

    abs_error = 0.0
    pct_error = 0.0
    sq_error = 0.0
    valid = 0
    for observed, predicted in zip(actual, forecast):
        if not (_is_number(observed) and _is_number(predicted)):
            continue
        diff = float(observed) - float(predicted)
        abs_error += abs(diff)
        sq_error += diff * diff
        if observed != 0:
            pct_error += abs(diff / float(observed)) * 100
        valid += 1

    if valid == 0:
        return AccuracyMetrics()

    return AccuracyMetrics(
        mae=abs_error / valid,
        mape=pct_error / valid,
        rmse=math.sqrt(sq_error / valid),
    )


def calculate_seasonal_adjustment(series: Sequence[float], period: int = 7) -> Union[float, List[float]]:
    """Per-phase seasonal factors relative to the overall mean.

    Returns ``1.0`` (no adjustment) unless at least two full periods of
    history are available.
    """

    if period <= 0:
        raise ValueError("period must be a positive integer")
    values = np.asarray(series, dtype=float)
    if values.size < period * 2:
        return 1.0

    overall = float(values.mean())
    factors: List[float] = []
    for phase in range(period):
        phase_mean = float(values[phase::period].mean())
        factors.append(phase_mean / overall if overall > 0 else 1.0)
    return factors


def days_until_stock_out(stock: int, avg_daily_sales: float) -> Optional[int]:
    """Whole days the current stock lasts; ``None`` when nothing is selling."""

    if avg_daily_sales > 0:
        return math.floor(stock / avg_daily_sales)
    return None


def classify_priority(days_left: Optional[int]) -> Priority:
    if days_left is not None and days_left <= HIGH_PRIORITY_DAYS:
        return Priority.HIGH
    if days_left is not None and days_left <= MEDIUM_PRIORITY_DAYS:
        return Priority.MEDIUM
    return Priority.LOW


def classify_stock_status(product: Product, forecasted_demand: float) -> StockStatus:
    # Order matters: a product at its reorder level is critical even when
    # forecast demand also exceeds stock.
    if product.stock <= product.reorder_level:
        return StockStatus.CRITICAL
    if forecasted_demand > product.stock:
        return StockStatus.WARNING
    if product.stock > product.reorder_level * EXCESS_STOCK_REORDER_MULTIPLE:
        return StockStatus.EXCESS
    return StockStatus.NORMAL


def _restock_sort_key(rec: RestockRecommendation) -> tuple[int, float]:
    days_left = math.inf if rec.days_until_stock_out is None else rec.days_until_stock_out
    return _PRIORITY_RANK[rec.priority], days_left


# ---------------------------------------------------------------------------
# Forecast page analytics


def filter_forecasts(
    forecasts: Iterable[DetailedForecast],
    product_id: Optional[str] = None,
    category: Optional[str] = None,
) -> List[DetailedForecast]:
    """Keep forecasts matching the product and category filters (``None`` matches all)."""

    return [
        forecast
        for forecast in forecasts
        if (not product_id or forecast.product.id == product_id)
        and (not category or forecast.product.category == category)
    ]


def top_forecasts_by_demand(forecasts: Iterable[DetailedForecast], limit: int = 10) -> List[DetailedForecast]:
    ranked = sorted(forecasts, key=lambda forecast: forecast.forecasted_demand, reverse=True)
    return ranked[: max(limit, 0)]


def trend_alignment(forecasts: Sequence[DetailedForecast]) -> float:
    """Average agreement (percent) between each forecast and its recent run rate."""

    scores: List[float] = []
    for forecast in forecasts:
        if forecast.avg_daily_sales <= 0:
            continue
        recent_trend = forecast.avg_daily_sales * forecast.forecast_period
        if recent_trend <= 0:
            continue
        deviation = abs(forecast.forecasted_demand - recent_trend) / recent_trend * 100
        scores.append(max(0.0, 100 - deviation))
    if not scores:
        return DEFAULT_TREND_ALIGNMENT
    return _mean(scores)


def summarize_forecast(
    recommendations: Sequence[RestockRecommendation],
    forecasts: Sequence[DetailedForecast],
    period: int,
) -> ForecastSummary:
    """Headline numbers for the forecast page."""

    predicted_value = sum(f.forecasted_demand * f.product.price for f in forecasts)
    at_risk = sum(
        1
        for f in forecasts
        if f.stock_status is StockStatus.CRITICAL
        or (f.days_until_stock_out is not None and f.days_until_stock_out <= period)
    )
    return ForecastSummary(
        forecast_period=period,
        restock_count=len(recommendations),
        predicted_sales_value=float(predicted_value),
        stock_out_risk=at_risk,
        trend_alignment=trend_alignment(forecasts),
    )


# ---------------------------------------------------------------------------
# Core engine


class ForecastingEngine:
    """Restock recommendations and detailed forecasts over product/sale snapshots."""

    def __init__(self, config_root: str | None = None) -> None:
        self.config_root = config_root or os.getenv("CONFIG_DIR", "configs")

        self.history_window_days: int = DEFAULT_HISTORY_DAYS
        self.moving_average_window: int = DEFAULT_MOVING_AVERAGE_WINDOW
        self.smoothing_alpha: float = DEFAULT_SMOOTHING_ALPHA
        self.default_method: ForecastMethod = ForecastMethod.MOVING_AVERAGE
        self.forecast_period_days: int = 7
        self.restock_period_days: int = 30

        self._load_configuration()

    # ------------------------------------------------------------------
    def _load_configuration(self) -> None:
        settings = load_forecasting_settings(self.config_root)
        self.history_window_days = int(settings.get("history_window_days", self.history_window_days))
        self.moving_average_window = int(settings.get("moving_average_window", self.moving_average_window))
        self.smoothing_alpha = float(settings.get("smoothing_alpha", self.smoothing_alpha))
        self.default_method = resolve_method(settings.get("default_method", self.default_method))
        self.forecast_period_days = int(settings.get("forecast_period_days", self.forecast_period_days))
        self.restock_period_days = int(settings.get("restock_period_days", self.restock_period_days))

        if self.history_window_days <= 0:
            raise ValueError("history_window_days must be a positive integer")
        if self.forecast_period_days <= 0 or self.restock_period_days <= 0:
            raise ValueError("forecast periods must be positive integers")
        # Validates window and alpha.
        self.default_options()

    # ------------------------------------------------------------------
    def default_options(self) -> ForecastOptions:
        return ForecastOptions(window_size=self.moving_average_window, alpha=self.smoothing_alpha)

    # ------------------------------------------------------------------
    def _history(self, sales: Sequence[Sale], product: Product, today: Optional[date]) -> tuple[List[float], float]:
        series = build_daily_series(sales, product.id, self.history_window_days, today)
        return series, _mean(series)

    # ------------------------------------------------------------------
    def calculate_restock_recommendations(
        self,
        products: Iterable[Product],
        sales: Sequence[Sale],
        forecast_period: Optional[int] = None,
        today: Optional[date] = None,
    ) -> List[RestockRecommendation]:
        """Return restock recommendations, most urgent first.

        Products that are above their reorder level and will not run out
        within ``forecast_period`` days are left out.
        """

        period = forecast_period if forecast_period is not None else self.restock_period_days
        if period < 0:
            raise ValueError("forecast_period must be non-negative")
        recommendations: List[RestockRecommendation] = []

        for product in products:
            series, avg_daily_sales = self._history(sales, product, today)
            # Demand uses the fixed moving-average window, not the period.
            forecasted_demand = moving_average(series, self.moving_average_window) * period
            days_left = days_until_stock_out(product.stock, avg_daily_sales)

            needs_restock = product.stock <= product.reorder_level or (
                days_left is not None and days_left <= period
            )
            if not needs_restock:
                continue

            projected_need = (
                product.reorder_level + avg_daily_sales * (period + SAFETY_BUFFER_DAYS) - product.stock
            )
            minimum_order = product.reorder_level * MIN_ORDER_REORDER_MULTIPLE
            recommendations.append(
                RestockRecommendation(
                    product=product,
                    current_stock=product.stock,
                    avg_daily_sales=avg_daily_sales,
                    forecasted_demand=forecasted_demand,
                    days_until_stock_out=days_left,
                    recommended_order=math.ceil(max(projected_need, minimum_order)),
                    priority=classify_priority(days_left),
                )
            )

        recommendations.sort(key=_restock_sort_key)
        LOGGER.debug("Computed %d restock recommendations for period=%s", len(recommendations), period)
        return recommendations

    # ------------------------------------------------------------------
    def generate_detailed_forecast(
        self,
        products: Iterable[Product],
        sales: Sequence[Sale],
        method: Union[ForecastMethod, str, None] = None,
        period: Optional[int] = None,
        options: Optional[ForecastOptions] = None,
        today: Optional[date] = None,
    ) -> List[DetailedForecast]:
        """Project demand for every product, in input order."""

        chosen = resolve_method(method or self.default_method)
        horizon = period if period is not None else self.forecast_period_days
        if horizon < 0:
            raise ValueError("period must be non-negative")
        opts = options or self.default_options()
        forecasts: List[DetailedForecast] = []

        for product in products:
            series, avg_daily_sales = self._history(sales, product, today)
            daily = generate_forecast(series, chosen, horizon, opts)
            total_demand = float(sum(daily))
            forecasts.append(
                DetailedForecast(
                    product=product,
                    avg_daily_sales=avg_daily_sales,
                    forecast_period=horizon,
                    forecasted_demand=total_demand,
                    daily_forecasts=daily,
                    stock_status=classify_stock_status(product, total_demand),
                    days_until_stock_out=days_until_stock_out(product.stock, avg_daily_sales),
                )
            )

        return forecasts
