from __future__ import annotations

import math
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from commutator.data import OrientationRecording, load_orientation_csv
from commutator.demo import create_demo_recording, run_demo
from commutator.host.config import CommutatorConfig
from commutator.host.processing import TwistPipeline
from commutator.host.twist import Orientation
from commutator.replay import replay_recording, run_replay


def test_demo_replay_matches_true_spin(tmp_path: Path) -> None:
    result = run_demo(tmp_path)
    t = np.arange(0.0, 20.0, 1.0 / 50.0)
    spin = 2.0 * np.pi * 0.25 * t + 0.4 * np.sin(0.7 * t)
    assert np.isclose(result.total_turns, -(spin[-1] - spin[0]) / (2.0 * np.pi), atol=1e-6)
    assert (tmp_path / "turns.csv").exists()
    commands = (tmp_path / "commands.txt").read_text(encoding="utf-8").splitlines()
    assert len(commands) == len(result.commands)
    assert all(line.startswith("{turn: ") and line.endswith("}") for line in commands)


def test_replay_matches_streaming_pipeline(tmp_path: Path) -> None:
    df = create_demo_recording(seconds=4.0)
    csv_path = tmp_path / "rec.csv"
    df.to_csv(csv_path, index=False)
    result = run_replay(csv_path, axis=(0.0, 0.0, 1.0))

    pipeline = TwistPipeline(CommutatorConfig())
    samples = pipeline.process(
        Orientation(w=row.w, x=row.x, y=row.y, z=row.z, ts_ms=row.ts_ms) for row in df.itertuples()
    )
    assert np.allclose(result.turns["turns"].to_numpy(), [s.turns for s in samples])
    assert np.isclose(result.total_turns, pipeline.cumulative_turns)


def test_replay_skips_undefined_samples(tmp_path: Path) -> None:
    csv_path = tmp_path / "rec.csv"
    pd.DataFrame(
        {
            "w": [1.0, 0.0, math.cos(0.25)],
            "x": [0.0, 1.0, 0.0],
            "y": [0.0, 0.0, 0.0],
            "z": [0.0, 0.0, math.sin(0.25)],
        }
    ).to_csv(csv_path, index=False)
    result = run_replay(csv_path)
    assert result.turns["sent"].tolist() == [False, False, True]
    assert len(result.commands) == 1
    assert np.isclose(result.total_turns, -0.5 / (2 * math.pi))


def test_load_requires_quaternion_columns(tmp_path: Path) -> None:
    csv_path = tmp_path / "bad.csv"
    csv_path.write_text("w,x,y\n1,0,0\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_orientation_csv(csv_path)


def test_replay_recording_axis_choice() -> None:
    df = create_demo_recording(seconds=2.0, tilt_rad=0.0)
    recording = load_from_frame(df)
    about_z = replay_recording(recording, (0.0, 0.0, 1.0))
    about_minus_z = replay_recording(recording, (0.0, 0.0, -1.0))
    assert np.isclose(about_z.total_turns, -about_minus_z.total_turns)


def load_from_frame(df: pd.DataFrame) -> OrientationRecording:
    return OrientationRecording(
        dataframe=df,
        quaternions=df[["w", "x", "y", "z"]].to_numpy(dtype=float),
        ts_ms=df["ts_ms"].to_numpy(dtype=float),
    )
