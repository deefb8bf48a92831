from __future__ import annotations

import pytest


class FakeSerialException(Exception):
    pass


class FakeSerialInstance:
    def __init__(self, lines: list[bytes] | None = None, fail_write: bool = False):
        self._lines = lines or []
        self._fail_write = fail_write
        self.written: list[bytes] = []
        self.closed = False

    def readline(self) -> bytes:
        if self._lines:
            return self._lines.pop(0)
        return b""

    def write(self, payload: bytes) -> int:
        if self._fail_write:
            raise FakeSerialException("write timeout")
        self.written.append(payload)
        return len(payload)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


class FakeSerialModule:
    SerialException = FakeSerialException

    def __init__(self, lines: list[bytes] | None = None, fail_first: bool = False, fail_write: bool = False):
        self.calls = 0
        self.kwargs: list[dict] = []
        self.instances: list[FakeSerialInstance] = []
        self._lines = lines or []
        self._fail_first = fail_first
        self._fail_write = fail_write

    def Serial(self, *args, **kwargs):
        self.calls += 1
        self.kwargs.append(kwargs)
        if self._fail_first and self.calls == 1:
            raise self.SerialException("mock disconnect")
        instance = FakeSerialInstance(list(self._lines), fail_write=self._fail_write)
        self.instances.append(instance)
        return instance


@pytest.fixture
def fake_serial(monkeypatch):
    """Replace pyserial in the runner module; returns an installer taking FakeSerialModule options."""

    def install(*args, **kwargs) -> FakeSerialModule:
        module = FakeSerialModule(*args, **kwargs)
        monkeypatch.setattr("commutator.host.runner.serial", module)
        return module

    return install
