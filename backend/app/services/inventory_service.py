r"""backend\app\services\inventory_service.py

Read-only access to product and sale snapshots exported from the document
store.  Snapshots live in the data directory as ``products.csv`` and
``sales.csv`` (a Parquet file with the same stem is preferred when present).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, TypeVar

from pydantic import BaseModel, ValidationError

from ..models.schemas import Product, Sale
from .io_utils import frame_records, load_snapshot_table, snapshot_available

LOGGER = logging.getLogger(__name__)

_ModelT = TypeVar("_ModelT", bound=BaseModel)

_ID_DTYPES: Dict[str, Any] = {"id": "string", "productId": "string", "product_id": "string"}


class InventoryService:
    """Provide product and sale snapshots to the forecasting engine."""

    def __init__(self, data_root: str = "data") -> None:
        self.data_root = Path(os.getenv("DATA_DIR", data_root))

    # ------------------------------------------------------------------
    def _products_path(self) -> Path:
        return self.data_root / "products.csv"

    def _sales_path(self) -> Path:
        return self.data_root / "sales.csv"

    def data_files_present(self) -> bool:
        return snapshot_available(self._products_path()) and snapshot_available(self._sales_path())

    # ------------------------------------------------------------------
    def _load(self, path: Path, parse: Callable[[Dict[str, Any]], _ModelT]) -> List[_ModelT]:
        if not snapshot_available(path):
            raise FileNotFoundError(f"Snapshot not found at {path}")

        frame = load_snapshot_table(path, dtype=_ID_DTYPES)
        items: List[_ModelT] = []
        skipped = 0
        for record in frame_records(frame):
            try:
                items.append(parse(record))
            except ValidationError as exc:
                skipped += 1
                LOGGER.warning("Skipping invalid row in %s (id=%s): %s", path.name, record.get("id"), exc)
        if skipped:
            LOGGER.warning("Skipped %d of %d rows in %s", skipped, len(frame), path)
        return items

    # ------------------------------------------------------------------
    def fetch_products(self) -> List[Product]:
        """Return every product in the current snapshot."""

        return self._load(self._products_path(), Product.model_validate)

    # ------------------------------------------------------------------
    def fetch_sales(self) -> List[Sale]:
        """Return every sale in the current snapshot with normalised dates."""

        return self._load(self._sales_path(), Sale.model_validate)
