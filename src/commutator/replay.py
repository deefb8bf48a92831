"""Offline evaluation of recorded orientation streams."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np
import pandas as pd

from .data import OrientationRecording, load_orientation_csv
from .host.commands import Turn, encode_command
from .host.twist import DEFAULT_AXIS, twist_angles
from .host.unwrap import unwrap_increments


@dataclass(frozen=True)
class ReplayResult:
    recording: OrientationRecording
    turns: pd.DataFrame
    commands: list[str]
    total_turns: float


def replay_recording(recording: OrientationRecording, axis: Sequence[float] = DEFAULT_AXIS) -> ReplayResult:
    """Compute twist angles, turn increments and device lines for a whole recording."""

    angles = twist_angles(recording.quaternions, axis)
    increments = unwrap_increments(angles)
    sent = np.isfinite(increments) & (increments != 0)
    cumulative = np.cumsum(np.where(sent, increments, 0.0))

    table = pd.DataFrame(
        {
            "angle_rad": angles,
            "turns": increments,
            "cumulative_turns": cumulative,
            "sent": sent,
        }
    )
    if recording.ts_ms is not None:
        table.insert(0, "ts_ms", recording.ts_ms)

    commands = [encode_command(Turn(float(value))) for value in increments[sent]]
    total = float(cumulative[-1]) if cumulative.size else 0.0
    return ReplayResult(
        recording=recording,
        turns=table,
        commands=[line for line in commands if line is not None],
        total_turns=total,
    )


def run_replay(path: str | Path, axis: Sequence[float] = DEFAULT_AXIS) -> ReplayResult:
    return replay_recording(load_orientation_csv(path), axis)


def export_replay(result: ReplayResult, output_dir: Path) -> tuple[Path, Path]:
    """Write the turn table and the command lines to *output_dir*."""

    output_dir.mkdir(parents=True, exist_ok=True)
    turns_path = output_dir / "turns.csv"
    commands_path = output_dir / "commands.txt"
    result.turns.to_csv(turns_path, index=False)
    commands_path.write_text("".join(line + "\n" for line in result.commands), encoding="utf-8")
    return turns_path, commands_path
