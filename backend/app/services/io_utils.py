from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd


def snapshot_available(csv_path: str | Path) -> bool:
    """Return True when either the CSV or its Parquet sibling exists."""

    path = Path(csv_path)
    return path.exists() or path.with_suffix(".parquet").exists()


def load_snapshot_table(
    csv_path: str | Path,
    *,
    columns: Optional[Iterable[str]] = None,
    dtype: Optional[Dict[str, Any]] = None,
) -> pd.DataFrame:
    """Load an exported collection, preferring Parquet with CSV fallback.

    Parameters
    ----------
    csv_path:
        Location of the canonical CSV export. A ``.parquet`` file with the same
        stem takes precedence when present.
    columns:
        Optional subset of columns to read.
    dtype:
        Optional dtype mapping applied to the CSV reader (Parquet keeps its
        stored types).
    """

    path = Path(csv_path)
    parquet_path = path.with_suffix(".parquet")
    column_list = list(columns) if columns is not None else None

    if parquet_path.exists():
        return pd.read_parquet(parquet_path, columns=column_list)
    if not path.exists():
        raise FileNotFoundError(f"Snapshot not found at {path}")

    if dtype is not None:
        header = pd.read_csv(path, nrows=0)
        dtype = {col: kind for col, kind in dtype.items() if col in header.columns}

    return pd.read_csv(path, usecols=column_list, dtype=dtype or None)


def frame_records(frame: pd.DataFrame) -> List[Dict[str, Any]]:
    """Convert a frame to row dicts, dropping missing cells so model defaults apply."""

    records: List[Dict[str, Any]] = []
    for row in frame.to_dict(orient="records"):
        records.append(
            {
                key: value.item() if isinstance(value, np.generic) else value
                for key, value in row.items()
                if not pd.isna(value)
            }
        )
    return records
