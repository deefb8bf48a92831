from __future__ import annotations

import logging
import math

import numpy as np
import pytest

from commutator.host.config import CommutatorConfig
from commutator.host.errors import ConfigurationError, TransportError
from commutator.host.frames import OrientationParser
from commutator.host.runner import RESYNC, CommutatorHost, run_session
from commutator.host.twist import Orientation


class FakeTransport:
    def __init__(self, fail_on: int | None = None, fail_open: bool = False):
        self.lines: list[str] = []
        self.opened = 0
        self.closed = 0
        self._fail_on = fail_on
        self._fail_open = fail_open

    def open(self) -> None:
        if self._fail_open:
            raise ConfigurationError("no such port")
        self.opened += 1

    def write_line(self, line: str) -> None:
        assert self.opened > self.closed, "write after close"
        if self._fail_on is not None and len(self.lines) >= self._fail_on:
            raise TransportError("link lost")
        self.lines.append(line)

    def close(self) -> None:
        self.closed += 1


def _turn_values(lines: list[str]) -> list[float]:
    prefix = "{turn: "
    return [float(line[len(prefix) : -1]) for line in lines if line.startswith(prefix)]


def _spin(angles):
    for angle in angles:
        yield Orientation(w=math.cos(angle / 2.0), x=0.0, y=0.0, z=math.sin(angle / 2.0))


def test_session_sends_state_then_turns() -> None:
    transport = FakeTransport()
    host = CommutatorHost(CommutatorConfig(), transport)
    stats = host.run(_spin([0.0, 0.5, 1.0]))
    assert transport.lines[:2] == ["{enable: true}", "{led: true}"]
    turns = _turn_values(transport.lines)
    assert np.allclose(turns, [-0.5 / (2 * math.pi)] * 2)
    assert transport.opened == 1
    assert transport.closed == 1
    assert stats["written"] == 4


@pytest.mark.parametrize("fail_after", [0, 1, 4])
def test_transport_closed_once_when_source_fails(fail_after: int) -> None:
    def failing_source():
        yield from _spin([0.1 * k for k in range(fail_after)])
        raise RuntimeError("sensor gone")

    transport = FakeTransport()
    host = CommutatorHost(CommutatorConfig(), transport)
    with pytest.raises(RuntimeError):
        host.run(failing_source())
    assert transport.closed == 1


def test_transport_failure_propagates() -> None:
    transport = FakeTransport(fail_on=3)
    host = CommutatorHost(CommutatorConfig(), transport)
    with pytest.raises(TransportError):
        host.run(_spin([0.2 * k for k in range(10)]))
    assert transport.closed == 1
    assert len(transport.lines) == 3


def test_zero_axis_prevents_transmission() -> None:
    transport = FakeTransport()
    with pytest.raises(ConfigurationError):
        CommutatorHost(CommutatorConfig(rotation_axis=[0.0, 0.0, 0.0]), transport)
    assert transport.opened == 0
    assert transport.lines == []


def test_unopenable_transport_sends_nothing() -> None:
    transport = FakeTransport(fail_open=True)
    host = CommutatorHost(CommutatorConfig(), transport)
    with pytest.raises(ConfigurationError):
        host.run(_spin([0.0, 0.5]))
    assert transport.lines == []
    assert transport.closed == 0


def test_resync_starts_new_baseline() -> None:
    def source():
        yield from _spin([0.0, 0.3])
        yield RESYNC
        yield from _spin([2.0, 2.3])

    transport = FakeTransport()
    stats = CommutatorHost(CommutatorConfig(), transport).run(source())
    turns = [line for line in transport.lines if line.startswith("{turn")]
    # the jump from 0.3 to 2.0 across the resync is not commanded
    assert len(turns) == 2
    assert stats["resets"] == 1


def test_each_run_is_a_fresh_session() -> None:
    transport = FakeTransport()
    host = CommutatorHost(CommutatorConfig(), transport)
    host.run(_spin([0.0, 0.4]))
    host.set_led(False)
    host.run(_spin([1.5]))
    assert transport.opened == 2
    assert transport.closed == 2
    turns = _turn_values(transport.lines)
    assert len(turns) == 1
    assert np.isclose(turns[0], -0.4 / (2 * math.pi))
    assert transport.lines[-2:] == ["{enable: true}", "{led: false}"]


def test_pending_toggle_applied_between_samples() -> None:
    transport = FakeTransport()
    host = CommutatorHost(CommutatorConfig(), transport)

    def source():
        yield from _spin([0.0])
        host.request_toggle(host.enable)
        yield from _spin([0.2])

    host.run(source())
    assert "{enable: false}" in transport.lines
    assert transport.lines.index("{enable: false}") < len(transport.lines) - 1


def test_session_stats_count_degenerate_samples() -> None:
    transport = FakeTransport()
    host = CommutatorHost(CommutatorConfig(), transport)
    samples = [Orientation(1.0, 0.0, 0.0, 0.0), Orientation(0.0, 1.0, 0.0, 0.0), *_spin([0.3])]
    stats = host.run(samples)
    assert stats["samples"] == 3
    assert stats["suppressed"] == 1
    assert stats["mux_suppressed"] == 0
    assert len(_turn_values(transport.lines)) == 1


def test_source_counters_reach_stats_line(caplog) -> None:
    parser = OrientationParser()
    lines = ["w,x,y,z\n", "1,0,0,0\n", "not,a,sample\n", "0.995,0,0,0.0998\n"]
    transport = FakeTransport()
    caplog.set_level(logging.INFO, logger="commutator.host.runner")
    stats = CommutatorHost(CommutatorConfig(), transport).run(parser.parse_lines(lines), source_stats=parser.stats)
    assert stats["source_parse_errors"] == 1
    assert stats["source_samples"] == 2
    assert stats["samples"] == 2
    final = [record.getMessage() for record in caplog.records if record.getMessage().startswith("Final stats")]
    assert len(final) == 1
    assert "parse_errors=1" in final[0]
    assert "reconnects=0" in final[0]


def test_run_session_uses_configured_device(fake_serial) -> None:
    serial_module = fake_serial()
    cfg = CommutatorConfig()
    cfg.device.port = "/dev/ttyFAKE0"
    cfg.device.baudrate = 115200
    stats = run_session(cfg, _spin([0.0, 0.5]), source_stats=lambda: {"reconnects": 2})
    assert serial_module.kwargs == [{"port": "/dev/ttyFAKE0", "baudrate": 115200, "write_timeout": 1.0}]
    handle = serial_module.instances[0]
    assert handle.written[:2] == [b"{enable: true}\n", b"{led: true}\n"]
    assert len(handle.written) == 3
    assert handle.closed
    assert stats["source_reconnects"] == 2


def test_run_session_with_given_transport() -> None:
    transport = FakeTransport()
    stats = run_session(CommutatorConfig(led=False), _spin([0.0, 0.1]), transport=transport)
    assert transport.lines[:2] == ["{enable: true}", "{led: false}"]
    assert transport.closed == 1
    assert stats["written"] == 3
