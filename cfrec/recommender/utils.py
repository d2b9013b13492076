"""Utility functions for the recommendation engine.

This module provides helpers for loading behavior logs, building sparse
incidence matrices and saving/loading similarity store snapshots.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import joblib
import numpy as np
import pandas as pd
from scipy.sparse import csr_matrix

from cfrec.recommender.models import BehaviorEvent
from cfrec.recommender.stores import InMemorySimilarityStore

# Configure module logger
logger = logging.getLogger(__name__)

SNAPSHOT_FILENAME = "similarity_store.joblib"
REQUIRED_COLUMNS = {"user_id", "product_id", "behavior_type"}
OPTIONAL_COLUMNS = ("category_id", "timestamp")


def load_behaviors_csv(csv_path: str) -> pd.DataFrame:
    """Load a behavior log from CSV.

    The file needs ``user_id``, ``product_id`` and ``behavior_type`` columns;
    ``category_id`` and ``timestamp`` are optional. ``product_id`` may be
    empty for pure searches.

    Args:
        csv_path: Path to CSV file containing behavior events.

    Returns:
        DataFrame with one row per event, timestamps parsed as UTC.

    Raises:
        FileNotFoundError: If CSV file does not exist.
        ValueError: If CSV is missing required columns or is empty.
    """
    csv_file = Path(csv_path)
    if not csv_file.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    logger.info(f"Loading behaviors from {csv_path}")
    df = pd.read_csv(csv_path)

    if not REQUIRED_COLUMNS.issubset(df.columns):
        missing = REQUIRED_COLUMNS - set(df.columns)
        raise ValueError(f"CSV missing required columns: {missing}")

    if df.empty:
        raise ValueError("Cannot load behaviors from empty CSV")

    for column in OPTIONAL_COLUMNS:
        if column not in df.columns:
            df[column] = None

    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    if df["timestamp"].isna().any():
        df["timestamp"] = df["timestamp"].fillna(pd.Timestamp.now(tz="UTC"))

    logger.info(f"Loaded {len(df)} behavior records")
    logger.info(f"Unique users: {df['user_id'].nunique()}")
    logger.info(f"Unique products: {df['product_id'].nunique()}")

    return df


def _optional_int(value) -> Optional[int]:
    if value is None or pd.isna(value):
        return None
    return int(value)


def behaviors_from_frame(df: pd.DataFrame) -> List[BehaviorEvent]:
    """Convert a behavior DataFrame into ``BehaviorEvent`` objects."""
    events = []
    for row in df.itertuples(index=False):
        events.append(
            BehaviorEvent(
                user_id=int(row.user_id),
                product_id=_optional_int(row.product_id),
                category_id=_optional_int(getattr(row, "category_id", None)),
                behavior_type=row.behavior_type,
                timestamp=pd.Timestamp(row.timestamp).to_pydatetime(),
            )
        )
    return events


def build_incidence_matrix(
    df: pd.DataFrame,
    row_col: str = "user_id",
    col_col: str = "product_id",
) -> Tuple[csr_matrix, Dict[int, int], Dict[int, int]]:
    """Build a binary incidence matrix from a behavior DataFrame.

    A cell is 1 when the row entity interacted at least once with the column
    entity, regardless of behavior type or repetition. Rows with no
    ``col_col`` value (pure searches) are ignored.

    Returns:
        A tuple containing:
            - Sparse CSR matrix of shape (n_rows, n_cols) with 0/1 values
            - Dictionary mapping row id to matrix row index
            - Dictionary mapping column id to matrix column index
    """
    pairs = df[[row_col, col_col]].dropna().astype(np.int64).drop_duplicates()

    unique_rows = sorted(pairs[row_col].unique())
    unique_cols = sorted(pairs[col_col].unique())

    row_id_to_idx = {int(rid): idx for idx, rid in enumerate(unique_rows)}
    col_id_to_idx = {int(cid): idx for idx, cid in enumerate(unique_cols)}

    row_indices = pairs[row_col].map(row_id_to_idx).values
    col_indices = pairs[col_col].map(col_id_to_idx).values
    data = np.ones(len(pairs), dtype=np.float64)

    matrix = csr_matrix(
        (data, (row_indices, col_indices)),
        shape=(len(unique_rows), len(unique_cols)),
        dtype=np.float64,
    )

    if len(unique_rows) and len(unique_cols):
        logger.info(f"Matrix shape: {matrix.shape}")
        logger.info(f"Matrix density: {matrix.nnz / (len(unique_rows) * len(unique_cols)):.4%}")

    return matrix, row_id_to_idx, col_id_to_idx


def save_store_snapshot(
    store: InMemorySimilarityStore,
    output_dir: str,
    filename: str = SNAPSHOT_FILENAME,
) -> Path:
    """Save every similarity record of ``store`` to ``output_dir``.

    Creates the directory if it doesn't exist.

    Returns:
        Path of the written snapshot file.
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    snapshot_path = output_path / filename
    joblib.dump(store.export_records(), snapshot_path)
    logger.info(
        f"Saved similarity snapshot to {snapshot_path} "
        f"({store.user_pair_count()} user pairs, {store.item_pair_count()} item pairs)"
    )
    return snapshot_path


def load_store_snapshot(
    snapshot_dir: str,
    store: Optional[InMemorySimilarityStore] = None,
    filename: str = SNAPSHOT_FILENAME,
) -> InMemorySimilarityStore:
    """Load a snapshot written by ``save_store_snapshot``.

    Raises:
        FileNotFoundError: If the snapshot file is missing.
    """
    snapshot_path = Path(snapshot_dir) / filename
    if not snapshot_path.exists():
        raise FileNotFoundError(f"Similarity snapshot not found: {snapshot_path}")

    store = store if store is not None else InMemorySimilarityStore()
    store.import_records(joblib.load(snapshot_path))
    logger.info(f"Loaded similarity snapshot from {snapshot_path}")
    return store


def check_snapshot_exists(snapshot_dir: str, filename: str = SNAPSHOT_FILENAME) -> bool:
    return (Path(snapshot_dir) / filename).exists()
