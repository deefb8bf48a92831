from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Dict, Optional, Type, Union

from .commands import Command, Enable, Indicator, Turn, encode_command, is_valid_turn
from .errors import TransportError

logger = logging.getLogger(__name__)

_STOP = object()


class StateSource:
    """
    Level-triggered boolean device setting.

    The current value is delivered once when a listener attaches, and after
    that only when the value actually changes. Safe to set from any thread.
    """

    def __init__(self, factory: Type[Union[Enable, Indicator]], value: bool = True):
        self._factory = factory
        self._value = bool(value)
        self._lock = threading.Lock()
        self._listener: Optional[Callable[[Command], None]] = None

    @property
    def value(self) -> bool:
        return self._value

    def set(self, value: bool) -> None:
        with self._lock:
            self._set_locked(bool(value))

    def toggle(self) -> bool:
        with self._lock:
            value = not self._value
            self._set_locked(value)
        return value

    def _set_locked(self, value: bool) -> None:
        # caller holds self._lock; the change and its command are one step
        if value == self._value:
            return
        self._value = value
        if self._listener is not None:
            self._listener(self._factory(value))

    def attach(self, listener: Callable[[Command], None]) -> None:
        with self._lock:
            self._listener = listener
            listener(self._factory(self._value))

    def detach(self) -> None:
        with self._lock:
            self._listener = None


class CommandMultiplexer:
    """
    Merge turn, enable and LED commands into one ordered stream of device lines.

    All three sources feed a single FIFO queue, so commands are written in
    arrival order by one writer thread and a line is never split by another.
    A write failure stops the writer; any later submission raises
    :class:`TransportError`.
    """

    def __init__(
        self,
        write_line: Callable[[str], None],
        *,
        enable: Optional[StateSource] = None,
        led: Optional[StateSource] = None,
        queue_maxsize: int = 256,
        put_timeout: float = 1.0,
    ):
        self._write_line = write_line
        self.enable = enable or StateSource(Enable, True)
        self.led = led or StateSource(Indicator, True)
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=max(queue_maxsize, 1))
        self._put_timeout = put_timeout
        self._thread: Optional[threading.Thread] = None
        self._cancel = threading.Event()
        self._closed = False
        self.last_exception: Optional[BaseException] = None
        self._stats: Dict[str, int] = {"turns": 0, "mux_suppressed": 0, "state": 0, "written": 0}
        self._stats_lock = threading.Lock()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("multiplexer already started")
        self._thread = threading.Thread(target=self._run, name="command-writer", daemon=True)
        self._thread.start()
        self.enable.attach(self._put)
        self.led.attach(self._put)

    def submit_turn(self, turns: float) -> bool:
        if not is_valid_turn(turns):
            self._count("mux_suppressed")
            logger.debug("Suppressed turn increment %r", turns)
            return False
        self._put(Turn(float(turns)))
        return True

    def set_enable(self, value: bool) -> None:
        self.enable.set(value)

    def set_led(self, value: bool) -> None:
        self.led.set(value)

    def raise_if_failed(self) -> None:
        if self.last_exception is not None:
            raise TransportError(f"Device write failed: {self.last_exception}") from self.last_exception

    def stop(self, timeout: float = 5.0) -> None:
        """
        Write everything already queued, then stop the writer.

        Raises :class:`TransportError` if the writer is still busy after
        `timeout`, so the caller never closes the device under a live write.
        """
        self._shutdown(timeout)
        if self._thread is not None and self._thread.is_alive():
            # the writer drops whatever is left once its current write returns
            self._cancel.set()
            raise TransportError(
                f"Command writer still busy after {timeout:.1f}s ({self._queue.qsize()} commands pending)"
            )

    def cancel(self, timeout: float = 5.0) -> None:
        """Stop the writer, discarding commands that were not yet written."""
        self._cancel.set()
        self._shutdown(timeout)

    def stats(self) -> Dict[str, int]:
        with self._stats_lock:
            stats = dict(self._stats)
        stats["pending"] = self._queue.qsize()
        return stats

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1

    def __enter__(self) -> "CommandMultiplexer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.stop()
        else:
            self.cancel()

    def _put(self, command: Command) -> None:
        self.raise_if_failed()
        if self._closed or self._thread is None:
            raise TransportError("Command stream is not running")
        try:
            self._queue.put(command, timeout=self._put_timeout)
        except queue.Full as exc:
            raise TransportError(
                f"Device link is not keeping up ({self._queue.qsize()} commands pending)"
            ) from exc
        self._count("turns" if isinstance(command, Turn) else "state")

    def _shutdown(self, timeout: float) -> None:
        if self._closed:
            return
        self._closed = True
        self.enable.detach()
        self.led.detach()
        if self._thread is None:
            return
        if self._cancel.is_set():
            self._discard_pending()
        if self._thread.is_alive():
            try:
                self._queue.put(_STOP, timeout=timeout)
            except queue.Full:
                logger.warning("Command writer did not drain in %.1fs", timeout)
        self._thread.join(timeout)

    def _discard_pending(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return

    def _run(self) -> None:
        while True:
            command = self._queue.get()
            if command is _STOP or self._cancel.is_set():
                break
            line = encode_command(command)  # type: ignore[arg-type]
            if line is None:
                continue
            try:
                self._write_line(line)
            except Exception as exc:
                self.last_exception = exc
                logger.error("Device write failed, stopping command stream: %s", exc)
                break
            self._count("written")
