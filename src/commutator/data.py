"""Loading of recorded orientation streams."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

REQUIRED_COLUMNS = {"w", "x", "y", "z"}
OPTIONAL_COLUMNS = {"ts_ms"}


@dataclass(frozen=True)
class OrientationRecording:
    """Orientation samples of one recording, in arrival order."""

    dataframe: pd.DataFrame
    quaternions: np.ndarray
    ts_ms: Optional[np.ndarray]

    def __len__(self) -> int:
        return int(self.quaternions.shape[0])


def load_orientation_csv(path: str | Path) -> OrientationRecording:
    """Load orientation samples from *path*.

    Parameters
    ----------
    path:
        CSV file with `w`, `x`, `y`, `z` columns and an optional `ts_ms`
        column. Lines starting with `#` are ignored.

    Returns
    -------
    OrientationRecording
        Samples as an ``(N, 4)`` array of ``w, x, y, z`` rows.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)

    df = pd.read_csv(path, comment="#")
    df.columns = [str(col).strip().lower() for col in df.columns]
    missing = REQUIRED_COLUMNS - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {sorted(missing)}")
    if df.empty:
        raise ValueError(f"{path} contains no orientation samples")

    df = df.reset_index(drop=True)
    quaternions = df[["w", "x", "y", "z"]].to_numpy(dtype=float)
    ts_ms = df["ts_ms"].to_numpy(dtype=float) if "ts_ms" in df.columns else None
    return OrientationRecording(dataframe=df, quaternions=quaternions, ts_ms=ts_ms)
