"""
Shortest-path unwrapping of a 2*pi periodic twist reading into turn increments.

The reading only encodes rotation modulo one turn, so consecutive samples are
assumed to be less than half a turn apart. Faster rotation (or too slow a
sample cadence) aliases to the wrong increment without any error being raised.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

TWO_PI = 2.0 * math.pi


@dataclass
class UnwrapState:
    previous: Optional[float] = None


def wrap_delta(delta: float) -> float:
    """Map an angle difference onto [-pi, pi); +-pi both resolve to -pi."""
    return (delta + 3.0 * math.pi) % TWO_PI - math.pi


def unwrap(angle: float, state: UnwrapState) -> float:
    """
    Return the compensating turn increment for ``angle`` and record it in ``state``.

    The first sample only establishes the baseline and yields exactly 0. The
    increment is negated so that a twist along the axis is answered by a
    commutator turn in the opposite direction.
    """
    if not math.isfinite(angle):
        # keep the last finite baseline; the caller drops this increment
        return math.nan
    previous = state.previous
    state.previous = angle
    if previous is None:
        return 0.0
    return -wrap_delta(angle - previous) / TWO_PI


class AngleUnwrapper:
    """Stateful wrapper around :func:`unwrap` owning one session's state."""

    def __init__(self) -> None:
        self.state = UnwrapState()

    def __call__(self, angle: float) -> float:
        return unwrap(angle, self.state)

    def reset(self) -> None:
        self.state = UnwrapState()


def unwrap_increments(angles: np.ndarray) -> np.ndarray:
    """Vectorised :func:`unwrap` over a whole recording, starting from a fresh state."""
    values = np.asarray(angles, dtype=float)
    out = np.full(values.shape, np.nan)
    finite = np.flatnonzero(np.isfinite(values))
    if finite.size == 0:
        return out
    kept = values[finite]
    delta = np.diff(kept)
    wrapped = np.mod(delta + 3.0 * np.pi, TWO_PI) - np.pi
    out[finite[0]] = 0.0
    out[finite[1:]] = -wrapped / TWO_PI
    return out
