r"""backend\app\api\v1\health.py

Health check endpoints.

These endpoints can be used by orchestrators and load balancers to verify
that the service is running.  ``/api/v1/health`` also reports whether the
product and sale snapshots are available for snapshot-backed forecasts.
"""

from fastapi import APIRouter

from ...core.config import get_settings
from ...services.inventory_service import InventoryService

router = APIRouter()
_inventory_service = InventoryService(data_root=get_settings().data_dir)


@router.get("/health")
async def health_check() -> dict[str, object]:
    """Return a basic health indicator."""
    return {"status": "ok", "snapshots_available": _inventory_service.data_files_present()}
