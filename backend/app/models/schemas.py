r"""backend\app\models\schemas.py

Pydantic models used throughout the API.

Products and sales arrive in the camelCase shape the document store keeps
(``reorderLevel``, ``productId``) and are exposed to Python code under
snake_case names.  Sale timestamps are normalised here, once, so the
forecasting engine only ever handles timezone-aware UTC datetimes.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime, time, timezone
from enum import Enum
from numbers import Real
from typing import List, Optional, Union

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def normalize_timestamp(value: object) -> datetime:
    """Coerce a raw sale timestamp into a UTC ``datetime``.

    Accepts datetimes (naive values are taken as UTC), dates, ISO-8601
    strings, epoch seconds and document-store timestamp mappings of the form
    ``{"seconds": ..., "nanoseconds": ...}``.
    """

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            raise ValueError("timestamp mapping must provide 'seconds'")
        nanos = value.get("nanoseconds", value.get("_nanoseconds")) or 0
        return datetime.fromtimestamp(float(seconds) + float(nanos) / 1e9, tz=timezone.utc)
    if isinstance(value, Real) and not isinstance(value, bool):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = pd.Timestamp(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"unparseable sale date: {value!r}") from exc
        if pd.isna(parsed):
            raise ValueError(f"unparseable sale date: {value!r}")
        return normalize_timestamp(parsed.to_pydatetime())
    raise ValueError(f"unsupported sale date type: {type(value).__name__}")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ForecastMethod(str, Enum):
    """Point-forecast algorithms understood by the engine."""

    MOVING_AVERAGE = "moving_average"
    LINEAR_REGRESSION = "linear_regression"
    EXPONENTIAL_SMOOTHING = "exponential_smoothing"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class StockStatus(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    EXCESS = "excess"
    NORMAL = "normal"


class Product(_CamelModel):
    """A catalogue entry as stored by the inventory database."""

    id: str
    name: str = ""
    category: str = ""
    price: float = Field(0.0, ge=0, description="Unit selling price")
    stock: int = Field(0, ge=0, description="Units currently on hand")
    reorder_level: int = Field(0, ge=0, description="Stock at or below which to restock")


class Sale(_CamelModel):
    """A recorded sale of a single product."""

    id: str
    product_id: str
    quantity: int = Field(..., gt=0)
    unit_price: float = 0.0
    total_amount: float = 0.0
    date: datetime

    @field_validator("date", mode="before")
    @classmethod
    def _normalise_date(cls, value: object) -> datetime:
        return normalize_timestamp(value)


class RestockRecommendation(_CamelModel):
    """Suggested purchase order for a product running low."""

    product: Product
    current_stock: int
    avg_daily_sales: float
    forecasted_demand: float
    days_until_stock_out: Optional[int] = Field(
        None, description="Whole days of cover left; null when no sales were recorded"
    )
    recommended_order: int
    priority: Priority

    @property
    def is_unbounded(self) -> bool:
        return self.days_until_stock_out is None


class DetailedForecast(_CamelModel):
    """Per-product demand projection over a forecast period."""

    product: Product
    avg_daily_sales: float
    forecast_period: int
    forecasted_demand: float = Field(..., description="Demand summed over the forecast period")
    daily_forecasts: List[float]
    stock_status: StockStatus
    days_until_stock_out: Optional[int] = None


class AccuracyMetrics(BaseModel):
    mae: float = 0.0
    mape: float = 0.0
    rmse: float = 0.0


class ForecastSummary(_CamelModel):
    """Headline figures shown above the forecast tables."""

    forecast_period: int
    restock_count: int
    predicted_sales_value: float
    stock_out_risk: int
    trend_alignment: float = Field(
        ..., description="How closely forecasts track recent average sales, in percent"
    )


# ---------------------------------------------------------------------------
# Request / response payloads


class SnapshotRequest(_CamelModel):
    """Products and sales supplied inline; omitted lists are read from the data directory."""

    products: Optional[List[Product]] = None
    sales: Optional[List[Sale]] = None
    as_of: Optional[date] = Field(None, description="Last day of the sales history window (UTC); defaults to today")


class RestockRequest(SnapshotRequest):
    forecast_period: Optional[int] = Field(None, ge=1, le=365)


class DetailedForecastRequest(SnapshotRequest):
    method: Optional[ForecastMethod] = None
    period: Optional[int] = Field(None, ge=1, le=365)
    window_size: Optional[int] = Field(None, ge=1, le=365)
    alpha: Optional[float] = Field(None, gt=0.0, le=1.0)
    product_id: Optional[str] = None
    category: Optional[str] = None


class ForecastSummaryResponse(_CamelModel):
    summary: ForecastSummary
    top_products: List[DetailedForecast]


class SeriesForecastRequest(_CamelModel):
    series: List[float]
    method: Optional[ForecastMethod] = None
    periods: Optional[int] = Field(None, ge=1, le=365)
    window_size: Optional[int] = Field(None, ge=1, le=365)
    alpha: Optional[float] = Field(None, gt=0.0, le=1.0)


class SeriesForecastResponse(BaseModel):
    method: ForecastMethod
    periods: int
    forecast: List[float]


class AccuracyRequest(BaseModel):
    actual: List[Optional[float]]
    forecast: List[Optional[float]]


class SeasonalityRequest(BaseModel):
    series: List[float]
    period: int = Field(7, ge=1, le=365)


class SeasonalityResponse(BaseModel):
    period: int
    factors: Union[List[float], float] = Field(
        ..., description="One factor per phase, or 1 when the history is too short"
    )
