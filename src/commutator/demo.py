"""Synthetic orientation recordings."""
from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd

from .replay import ReplayResult, export_replay, run_replay


def _axis_angle(axes: np.ndarray, angles: np.ndarray) -> np.ndarray:
    half = 0.5 * angles
    return np.column_stack([np.cos(half), axes * np.sin(half)[:, None]])


def _hamilton(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    w1, x1, y1, z1 = a.T
    w2, x2, y2, z2 = b.T
    return np.column_stack(
        [
            w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
            w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
            w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
            w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
        ]
    )


def create_demo_recording(
    seconds: float = 20.0,
    rate_hz: float = 50.0,
    turns_per_sec: float = 0.25,
    tilt_rad: float = 0.3,
) -> pd.DataFrame:
    """
    Orientation of a headstage spinning about z while its tilt wanders.

    The swing is always about a horizontal axis, so the twist about z is
    exactly the commanded spin angle.
    """
    rng = np.random.default_rng(42)
    t = np.arange(0.0, seconds, 1.0 / rate_hz)
    spin = 2.0 * np.pi * turns_per_sec * t + 0.4 * np.sin(0.7 * t)
    heading = 2.0 * np.pi * rng.random() + 0.9 * t
    swing_axes = np.column_stack([np.cos(heading), np.sin(heading), np.zeros_like(t)])
    tilt = tilt_rad * (0.5 + 0.5 * np.sin(1.3 * t))
    twist = _axis_angle(np.tile([0.0, 0.0, 1.0], (t.size, 1)), spin)
    q = _hamilton(_axis_angle(swing_axes, tilt), twist)
    return pd.DataFrame(
        {
            "ts_ms": t * 1000.0,
            "w": q[:, 0],
            "x": q[:, 1],
            "y": q[:, 2],
            "z": q[:, 3],
        }
    )


def run_demo(out_dir: Path) -> ReplayResult:
    out_dir.mkdir(parents=True, exist_ok=True)
    csv_path = out_dir / "demo_orientation.csv"
    create_demo_recording().to_csv(csv_path, index=False)
    result = run_replay(csv_path)
    export_replay(result, out_dir)
    return result
