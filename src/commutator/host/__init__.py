"""
Live commutator control: twist extraction, unwrapping, and the command stream.

The subpackage turns orientation samples into relative turn commands and
merges them with enable and LED state into the line protocol spoken by the
commutator firmware.
"""

from .commands import Command, Enable, Indicator, Turn, encode_command, is_valid_turn
from .config import CommutatorConfig, DeviceConfig, HostRuntime, load_config
from .errors import CommutatorError, ConfigurationError, TransportError
from .frames import OrientationParser
from .mux import CommandMultiplexer, StateSource
from .processing import SampleGate, TurnLog, TwistPipeline, TwistSample
from .runner import CommutatorHost, SerialSettings, SerialTransport, run_session
from .twist import Orientation, TwistExtractor, extract_twist, twist_angles
from .unwrap import AngleUnwrapper, UnwrapState, unwrap, unwrap_increments

__all__ = [
    "Command",
    "Enable",
    "Indicator",
    "Turn",
    "encode_command",
    "is_valid_turn",
    "CommutatorConfig",
    "DeviceConfig",
    "HostRuntime",
    "load_config",
    "CommutatorError",
    "ConfigurationError",
    "TransportError",
    "OrientationParser",
    "CommandMultiplexer",
    "StateSource",
    "SampleGate",
    "TwistPipeline",
    "TwistSample",
    "TurnLog",
    "CommutatorHost",
    "SerialSettings",
    "SerialTransport",
    "run_session",
    "Orientation",
    "TwistExtractor",
    "extract_twist",
    "twist_angles",
    "AngleUnwrapper",
    "UnwrapState",
    "unwrap",
    "unwrap_increments",
]
