"""Simple plotting companion for commutator turn logs."""

from __future__ import annotations

import sys
from pathlib import Path

import matplotlib.pyplot as plt
import pandas as pd


def plot_turns(csv_path: Path) -> None:
    """Plot twist angle and cumulative commanded turns from a turn log CSV."""
    data = pd.read_csv(csv_path)
    if "ts_ms" in data.columns and data["ts_ms"].notna().any():
        x = data["ts_ms"] / 1000.0
        xlabel = "Time [s]"
    else:
        x = data.index
        xlabel = "Sample"
    fig, ax1 = plt.subplots(figsize=(10, 5))
    ax1.plot(x, data["angle_rad"], label="twist [rad]", color="tab:blue")
    ax1.set_xlabel(xlabel)
    ax1.set_ylabel("Twist [rad]", color="tab:blue")
    ax1.tick_params(axis="y", labelcolor="tab:blue")

    ax2 = ax1.twinx()
    ax2.plot(x, data["cumulative_turns"], label="commanded turns", color="tab:orange")
    ax2.set_ylabel("Cumulative turns", color="tab:orange")
    ax2.tick_params(axis="y", labelcolor="tab:orange")

    fig.tight_layout()
    plt.show()


if __name__ == "__main__":
    plot_turns(Path(sys.argv[1]))
