from __future__ import annotations

import csv
import logging
import math
import time
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, TextIO

from .commands import is_valid_turn
from .config import CommutatorConfig
from .errors import ConfigurationError
from .twist import Orientation, TwistExtractor
from .unwrap import AngleUnwrapper

logger = logging.getLogger(__name__)


@dataclass
class TwistSample:
    """One processed orientation sample."""

    ts_ms: Optional[float]
    angle_rad: float
    turns: float
    cumulative_turns: float
    sent: bool


class SampleGate:
    """
    Pass at most one sample per `interval_ms`.

    Sample timestamps are used when present, otherwise the injected clock.
    """

    def __init__(self, interval_ms: float = 0.0, clock: Callable[[], float] = time.monotonic):
        self.interval_sec = max(float(interval_ms), 0.0) / 1000.0
        self._clock = clock
        self._last: Optional[float] = None

    def accept(self, ts_ms: Optional[float] = None) -> bool:
        if self.interval_sec <= 0:
            return True
        now = ts_ms / 1000.0 if ts_ms is not None else self._clock()
        if self._last is not None and now - self._last < self.interval_sec:
            return False
        self._last = now
        return True

    def reset(self) -> None:
        self._last = None


class TurnLog:
    """
    CSV record of every processed sample, one row per :class:`TwistSample`.

    The file is created on the first row, so a session that never processes a
    sample leaves no empty log behind. Each session starts a fresh file.
    """

    columns = [field.name for field in fields(TwistSample)]

    def __init__(self, path: Path):
        self.path = Path(path)
        self.rows = 0
        self._writer: Optional["csv.DictWriter[str]"] = None
        self._fh: Optional[TextIO] = None

    def append(self, sample: TwistSample) -> None:
        if self._writer is None:
            self._open()
        assert self._writer is not None and self._fh is not None
        row = asdict(sample)
        row["sent"] = int(sample.sent)
        self._writer.writerow(row)
        self._fh.flush()
        self.rows += 1

    def _open(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = self.path.open("w", newline="", encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"Cannot write turn log {self.path}: {exc}") from exc
        self._writer = csv.DictWriter(self._fh, fieldnames=self.columns)
        self._writer.writeheader()
        logger.info("Logging turns to %s", self.path)

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            logger.info("Turn log closed after %d rows", self.rows)
        self._fh = None
        self._writer = None


class TwistPipeline:
    """
    Glue that turns orientation samples into compensating turn increments.

    One pipeline is one session: it owns the unwrap state, so a new session
    must use a new pipeline (or call :meth:`reset`).
    """

    def __init__(self, config: CommutatorConfig, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.extractor = TwistExtractor(config.rotation_axis)
        self.unwrapper = AngleUnwrapper()
        self.gate = SampleGate(config.sample_interval_ms, clock)
        self.turn_log = TurnLog(config.output_csv) if config.output_csv else None
        self.cumulative_turns = 0.0
        self._callbacks: List[Callable[[TwistSample], None]] = []
        self._stats: Dict[str, int] = {"samples": 0, "gated": 0, "suppressed": 0, "resets": 0}

    def process_one(self, orientation: Orientation) -> Optional[TwistSample]:
        if not self.gate.accept(orientation.ts_ms):
            self._stats["gated"] += 1
            return None
        angle = self.extractor.extract(orientation)
        turns = self.unwrapper(angle)
        sent = is_valid_turn(turns)
        if sent:
            self.cumulative_turns += turns
        elif not math.isfinite(turns):
            self._stats["suppressed"] += 1
            logger.debug("Non-finite twist for sample %s, command suppressed", orientation)
        sample = TwistSample(
            ts_ms=orientation.ts_ms,
            angle_rad=angle,
            turns=turns,
            cumulative_turns=self.cumulative_turns,
            sent=sent,
        )
        self._stats["samples"] += 1
        if self.turn_log:
            self.turn_log.append(sample)
        for callback in self._callbacks:
            callback(sample)
        return sample

    def process(self, orientations: Iterable[Orientation]) -> List[TwistSample]:
        processed: List[TwistSample] = []
        for orientation in orientations:
            sample = self.process_one(orientation)
            if sample is not None:
                processed.append(sample)
        return processed

    def register_callback(self, callback: Callable[[TwistSample], None]) -> None:
        self._callbacks.append(callback)

    def reset(self) -> None:
        self.unwrapper.reset()
        self.gate.reset()
        self._stats["resets"] += 1

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def close(self) -> None:
        if self.turn_log:
            self.turn_log.close()
