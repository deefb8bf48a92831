from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .errors import ConfigurationError

DEFAULT_AXIS = (0.0, 0.0, 1.0)


@dataclass(frozen=True)
class Orientation:
    """Unit quaternion sample, scalar part first."""

    w: float
    x: float
    y: float
    z: float
    ts_ms: float | None = None

    @property
    def vector(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=float)


def validate_axis(axis: Sequence[float]) -> np.ndarray:
    vec = np.asarray(axis, dtype=float)
    if vec.shape != (3,):
        raise ConfigurationError(f"rotation axis must have 3 components, got {list(np.ravel(vec))}")
    if not np.all(np.isfinite(vec)):
        raise ConfigurationError("rotation axis components must be finite")
    if float(np.dot(vec, vec)) == 0.0:
        raise ConfigurationError("rotation axis must not be the zero vector")
    return vec


def _wrap_half_turn(angle: float) -> float:
    # 2*acos spans [0, 2pi]; fold the upper half onto (-pi, 0)
    if angle > math.pi:
        return angle - 2.0 * math.pi
    return angle


class TwistExtractor:
    """
    Swing-twist decomposition: the rotation of an orientation about a fixed axis.

    The axis should point, in the sensor frame, along the direction the tether
    leaves the headstage. Negating the axis negates the twist direction.
    """

    def __init__(self, axis: Sequence[float] = DEFAULT_AXIS):
        self.axis = validate_axis(axis)
        self._axis_norm_sq = float(np.dot(self.axis, self.axis))

    def extract(self, orientation: Orientation) -> float:
        """Return the twist angle about the axis in radians, in (-pi, pi]."""
        v = orientation.vector
        dot = float(np.dot(v, self.axis))
        projection = (dot / self._axis_norm_sq) * self.axis
        twist = np.array([orientation.w, *projection], dtype=float)
        norm = float(np.linalg.norm(twist))
        if norm == 0.0 or not math.isfinite(norm):
            # half-turn about a perpendicular axis: twist is undefined
            return math.nan
        twist /= norm
        if dot < 0:
            # q and -q are the same rotation; keep the sign tied to the axis
            twist = -twist
        w = min(1.0, max(-1.0, float(twist[0])))
        return _wrap_half_turn(2.0 * math.acos(w))


def extract_twist(orientation: Orientation, axis: Sequence[float] = DEFAULT_AXIS) -> float:
    return TwistExtractor(axis).extract(orientation)


def twist_angles(quaternions: np.ndarray, axis: Sequence[float] = DEFAULT_AXIS) -> np.ndarray:
    """
    Vectorised twist extraction over an ``(N, 4)`` array of ``w, x, y, z`` rows.

    Rows whose twist is undefined yield NaN.
    """
    vec = validate_axis(axis)
    q = np.asarray(quaternions, dtype=float)
    if q.ndim != 2 or q.shape[1] != 4:
        raise ValueError("quaternions must be an (N, 4) array")
    dot = q[:, 1:] @ vec
    projection = np.outer(dot / float(np.dot(vec, vec)), vec)
    twist = np.column_stack([q[:, 0], projection])
    norm = np.linalg.norm(twist, axis=1)
    with np.errstate(invalid="ignore", divide="ignore"):
        w = q[:, 0] / norm
    w = np.where(dot < 0, -w, w)
    angles = 2.0 * np.arccos(np.clip(w, -1.0, 1.0))
    angles = np.where(angles > np.pi, angles - 2.0 * np.pi, angles)
    return np.where(norm > 0, angles, np.nan)
