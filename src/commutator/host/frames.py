from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, Optional

from .twist import Orientation

ORIENTATION_FIELDS = ("w", "x", "y", "z")


class OrientationParser:
    """
    Streaming parser for orientation samples sent as CSV text lines.

    A header naming `w,x,y,z` (and optionally `ts_ms`) selects the columns.
    Without a header, 4 columns are read as `w,x,y,z` and 5 columns as
    `ts_ms,w,x,y,z`. Malformed lines are counted and skipped.
    """

    def __init__(self) -> None:
        self._columns: Optional[Dict[str, int]] = None
        self._stats: Dict[str, int] = {"samples": 0, "parse_errors": 0}
        self._log = logging.getLogger(__name__)

    def parse_lines(self, lines: Iterable[str]) -> Iterator[Orientation]:
        for line in lines:
            sample = self.parse_line(line)
            if sample is not None:
                yield sample

    def parse_line(self, line: str) -> Optional[Orientation]:
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            return None
        cells = [cell.strip() for cell in stripped.split(",")]
        if self._is_header(cells):
            self._columns = {name: idx for idx, name in enumerate(cell.lower() for cell in cells)}
            return None
        columns = self._columns or self._positional(len(cells))
        if columns is None:
            return self._reject(stripped, "unexpected column count")
        try:
            ts_idx = columns.get("ts_ms")
            sample = Orientation(
                w=float(cells[columns["w"]]),
                x=float(cells[columns["x"]]),
                y=float(cells[columns["y"]]),
                z=float(cells[columns["z"]]),
                ts_ms=float(cells[ts_idx]) if ts_idx is not None else None,
            )
        except (IndexError, ValueError):
            return self._reject(stripped, "non-numeric field")
        self._stats["samples"] += 1
        return sample

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def reset(self) -> None:
        self._columns = None

    @staticmethod
    def _is_header(cells: list[str]) -> bool:
        names = {cell.lower() for cell in cells}
        return set(ORIENTATION_FIELDS).issubset(names)

    @staticmethod
    def _positional(count: int) -> Optional[Dict[str, int]]:
        if count == 4:
            return {"w": 0, "x": 1, "y": 2, "z": 3}
        if count == 5:
            return {"ts_ms": 0, "w": 1, "x": 2, "y": 3, "z": 4}
        return None

    def _reject(self, line: str, reason: str) -> None:
        self._stats["parse_errors"] += 1
        self._log.debug("Skipping orientation line (%s): %s", reason, line)
        return None


def iterate_text_stream(handle: Iterable[str]) -> Iterator[str]:
    for line in handle:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        yield line
