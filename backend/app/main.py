r"""backend\app\main.py

Main entrypoint for the FastAPI application.

The API exposes the demand-forecasting engine: restock recommendations,
detailed per-product forecasts, forecast summaries and accuracy metrics.
Products and sales are posted with each request or read from snapshot files
in the data directory.  A health endpoint is also provided for
readiness/liveness checks.  Configuration is read from environment variables
and ``configs/settings.yaml``.
"""


import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

# Load .env from repo root before settings are read
BASE_DIR = Path(__file__).resolve().parents[2]  # repo root
load_dotenv(BASE_DIR / ".env")

from .api.v1 import forecasts, health  # noqa: E402
from .core.config import get_settings  # noqa: E402
from .core.observability import TokenAndRateLimitMiddleware, metrics_endpoint  # noqa: E402

settings = get_settings()

logging.getLogger(__name__).info(
    "Forecasting API starting with data_dir=%s config_dir=%s",
    settings.data_dir,
    settings.config_dir,
)

app = FastAPI(title="Inventory Forecasting API", version="0.1.0")

# Allow cross-origin requests from the inventory web front end (and others).
origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,  # In production specify your UI domain(s)
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TokenAndRateLimitMiddleware)

# Include versioned routers
app.include_router(health.router, prefix="/api/v1")
app.include_router(forecasts.router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
def _root() -> RedirectResponse:
    """Redirect the root path to the interactive docs."""

    return RedirectResponse(url="/docs")


@app.get("/metrics", include_in_schema=False)
async def _metrics() -> Response:
    """Expose Prometheus metrics."""

    return metrics_endpoint()
