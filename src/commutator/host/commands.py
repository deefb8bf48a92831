from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class Turn:
    turns: float


@dataclass(frozen=True)
class Enable:
    enabled: bool


@dataclass(frozen=True)
class Indicator:
    on: bool


Command = Union[Turn, Enable, Indicator]


def is_valid_turn(turns: float) -> bool:
    """Zero and non-finite increments never reach the device."""
    return math.isfinite(turns) and turns != 0


def _bool_literal(value: bool) -> str:
    return "true" if value else "false"


def encode_command(command: Command) -> Optional[str]:
    """
    Format a command as one device line, without the line terminator.

    Returns None for turn commands that must be suppressed.
    """
    if isinstance(command, Turn):
        turns = float(command.turns)
        if not is_valid_turn(turns):
            return None
        return f"{{turn: {turns!r}}}"
    if isinstance(command, Enable):
        return f"{{enable: {_bool_literal(command.enabled)}}}"
    if isinstance(command, Indicator):
        return f"{{led: {_bool_literal(command.on)}}}"
    raise TypeError(f"Unsupported command {command!r}")
