from __future__ import annotations

import logging
import queue
import signal
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Union

import serial  # type: ignore[import]
import typer

from .commands import Enable, Indicator, Turn, encode_command
from .config import CommutatorConfig, load_config
from .errors import CommutatorError, ConfigurationError, TransportError
from .frames import OrientationParser, iterate_text_stream
from .mux import CommandMultiplexer, StateSource
from .processing import TwistPipeline
from .twist import Orientation

logger = logging.getLogger(__name__)


class _Marker:
    def __init__(self, name: str):
        self.name = name

    def __repr__(self) -> str:
        return f"<{self.name}>"


# Starts a new unwrap session: the next sample is a fresh baseline.
RESYNC = _Marker("RESYNC")

SourceItem = Union[Orientation, _Marker, None]
StatsProvider = Callable[[], Dict[str, int]]


@dataclass
class SerialSettings:
    port: str
    baudrate: int = 9600
    timeout: float = 1.0


class SerialTransport:
    """Line-oriented writer for the commutator serial port."""

    def __init__(self, settings: SerialSettings):
        self.settings = settings
        self._serial = None
        self.lines_written = 0

    @property
    def is_open(self) -> bool:
        return self._serial is not None

    def open(self) -> None:
        if self._serial is not None:
            return
        try:
            self._serial = serial.Serial(
                port=self.settings.port,
                baudrate=self.settings.baudrate,
                write_timeout=self.settings.timeout,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            raise ConfigurationError(f"Unable to open commutator port {self.settings.port}: {exc}") from exc
        logger.info("Connected to commutator on %s", self.settings.port)

    def write_line(self, line: str) -> None:
        if self._serial is None:
            raise TransportError(f"Commutator port {self.settings.port} is not open")
        payload = (line + "\n").encode("ascii")
        try:
            self._serial.write(payload)
            self._serial.flush()
        except (serial.SerialException, OSError) as exc:
            raise TransportError(f"Write to {self.settings.port} failed: {exc}") from exc
        self.lines_written += 1
        logger.debug("-> %s", line)

    def close(self) -> None:
        if self._serial is None:
            return
        handle, self._serial = self._serial, None
        try:
            handle.close()
        except (serial.SerialException, OSError) as exc:
            logger.warning("Error while closing %s: %s", self.settings.port, exc)
        logger.info("Disconnected from %s", self.settings.port)

    def __enter__(self) -> "SerialTransport":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class OrientationReaderThread(threading.Thread):
    """
    Reads orientation CSV lines from an IMU serial port into a queue.

    Each (re)connection and each dropped sample is followed by a RESYNC
    marker, since the unwrap step cannot bridge a gap in the stream.
    """

    def __init__(
        self,
        settings: SerialSettings,
        config: CommutatorConfig,
        sample_queue: "queue.Queue[SourceItem]",
    ) -> None:
        super().__init__(daemon=True)
        self.settings = settings
        self.config = config
        self.queue = sample_queue
        self.parser = OrientationParser()
        self._stop_event = threading.Event()
        self._serial_handle = None
        self._dropped = 0
        self._reconnects = 0
        self._connected_once = False
        self._resync_pending = False
        self.last_exception: Optional[Exception] = None
        self._log = logging.getLogger(__name__)

    def run(self) -> None:
        initial_delay = max(self.config.host.reconnect_initial_sec, 0.01)
        max_delay = max(self.config.host.reconnect_max_sec, initial_delay)
        backoff = initial_delay
        while not self._stop_event.is_set():
            self._serial_handle = None
            try:
                self._serial_handle = self._open_serial()
                if self._connected_once:
                    self._reconnects += 1
                    self._log.info("Reconnected to IMU on %s", self.settings.port)
                else:
                    self._log.info("Connected to IMU on %s", self.settings.port)
                    self._connected_once = True
                self.last_exception = None
                backoff = initial_delay
                self.parser.reset()
                self._resync_pending = True
                for line in self._iter_lines():
                    sample = self.parser.parse_line(line)
                    if sample is not None:
                        self._emit(sample)
            except (serial.SerialException, OSError) as exc:
                self.last_exception = exc
                self._log.warning("IMU serial error (%s): %s", self.settings.port, exc)
            finally:
                self._close_handle()
            if self._stop_event.is_set():
                break
            wait_time = min(backoff, max_delay)
            self._log.info("Reconnecting to IMU in %.2fs", wait_time)
            self._stop_event.wait(wait_time)
            backoff = min(backoff * 2, max_delay)

    def stop(self) -> None:
        self._stop_event.set()
        self._close_handle()

    def stats(self) -> Dict[str, int]:
        stats = self.parser.stats()
        stats["dropped"] = self._dropped
        stats["reconnects"] = self._reconnects
        return stats

    def _emit(self, sample: Orientation) -> None:
        if self._resync_pending:
            try:
                self.queue.put_nowait(RESYNC)
            except queue.Full:
                self._dropped += 1
                return
            self._resync_pending = False
        try:
            self.queue.put(sample, timeout=1.0)
        except queue.Full:
            self._dropped += 1
            self._resync_pending = True
            self._log.warning("Sample queue full (%d), dropping sample and resyncing", self.queue.qsize())

    def _iter_lines(self) -> Iterator[str]:
        while not self._stop_event.is_set():
            handle = self._serial_handle
            if handle is None:
                return
            raw = handle.readline()
            if not raw:
                continue
            yield raw.decode("utf-8", errors="ignore")

    def _close_handle(self) -> None:
        handle, self._serial_handle = self._serial_handle, None
        if handle is not None:
            try:
                handle.close()
            except (serial.SerialException, OSError):
                self._log.debug("IMU port close failed", exc_info=True)

    def _open_serial(self):
        return serial.Serial(
            port=self.settings.port,
            baudrate=self.settings.baudrate,
            timeout=self.settings.timeout,
        )


def iter_queue(
    sample_queue: "queue.Queue[SourceItem]",
    stop_event: threading.Event,
    poll_sec: float = 1.0,
) -> Iterator[SourceItem]:
    """Yield queued items until `stop_event` is set; None marks an idle poll."""
    while not stop_event.is_set():
        try:
            yield sample_queue.get(timeout=poll_sec)
        except queue.Empty:
            yield None


class CommutatorHost:
    """
    Runs commutator sessions: orientation samples in, device command lines out.

    The transport is opened when a session starts and closed exactly once when
    it ends, whatever the reason. Enable and LED state persist across sessions;
    unwrap state does not.
    """

    def __init__(self, config: CommutatorConfig, transport):
        self.config = config.validate()
        self.transport = transport
        self.enable = StateSource(Enable, config.enable)
        self.led = StateSource(Indicator, config.led)
        self._pending_toggles: List[StateSource] = []
        self.pipeline: Optional[TwistPipeline] = None
        self.multiplexer: Optional[CommandMultiplexer] = None
        self._source_stats: Optional[StatsProvider] = None

    def set_enable(self, value: bool) -> None:
        self.enable.set(value)

    def set_led(self, value: bool) -> None:
        self.led.set(value)

    def request_toggle(self, source: StateSource) -> None:
        # applied from the session loop; safe to call from a signal handler
        self._pending_toggles.append(source)

    def install_signal_handlers(self) -> None:
        if hasattr(signal, "SIGUSR1"):
            signal.signal(signal.SIGUSR1, lambda signum, frame: self.request_toggle(self.enable))
            signal.signal(signal.SIGUSR2, lambda signum, frame: self.request_toggle(self.led))
            logger.info("SIGUSR1 toggles enable, SIGUSR2 toggles LED")

    def run(self, source: Iterable[SourceItem], source_stats: Optional[StatsProvider] = None) -> Dict[str, int]:
        """
        Run one session over `source` and return its final stats.

        `source_stats`, when given, reports the source's own counters (parse
        errors, reconnects); they are merged into every stats line.
        """
        pipeline = TwistPipeline(self.config)
        self.pipeline = pipeline
        self._source_stats = source_stats
        interval_sec = max(float(self.config.host.stats_log_interval), 5.0)
        next_log = time.monotonic() + interval_sec
        self.transport.open()
        try:
            mux = CommandMultiplexer(
                self.transport.write_line,
                enable=self.enable,
                led=self.led,
                queue_maxsize=self.config.host.queue_maxsize,
                put_timeout=max(self.config.device.write_timeout, 0.1),
            )
            self.multiplexer = mux
            mux.start()
            logger.info("Session started (axis=%s)", self.config.rotation_axis)
            try:
                for item in source:
                    self._apply_toggles()
                    if item is RESYNC:
                        pipeline.reset()
                        logger.info("Orientation stream restarted, new twist baseline")
                    elif isinstance(item, Orientation):
                        sample = pipeline.process_one(item)
                        if sample is not None and sample.sent:
                            mux.submit_turn(sample.turns)
                    mux.raise_if_failed()
                    if time.monotonic() >= next_log:
                        self._log_stats("Stats")
                        next_log = time.monotonic() + interval_sec
            except BaseException:
                mux.cancel()
                raise
            mux.stop()
            mux.raise_if_failed()
        finally:
            self.transport.close()
            pipeline.close()
        stats = self._log_stats("Final stats")
        return stats

    def _apply_toggles(self) -> None:
        while self._pending_toggles:
            source = self._pending_toggles.pop(0)
            value = source.toggle()
            logger.info("%s set to %s", "enable" if source is self.enable else "led", value)

    def _log_stats(self, label: str) -> Dict[str, int]:
        # source counters are prefixed; pipeline and multiplexer keys are disjoint
        stats: Dict[str, int] = {}
        if self._source_stats is not None:
            stats.update({f"source_{key}": value for key, value in self._source_stats().items()})
        if self.pipeline is not None:
            stats.update(self.pipeline.stats())
        if self.multiplexer is not None:
            stats.update(self.multiplexer.stats())
        logger.info(
            "%s: samples=%d gated=%d suppressed=%d turns=%d state=%d written=%d resets=%d "
            "parse_errors=%d reconnects=%d",
            label,
            stats.get("samples", 0),
            stats.get("gated", 0),
            stats.get("suppressed", 0) + stats.get("mux_suppressed", 0),
            stats.get("turns", 0),
            stats.get("state", 0),
            stats.get("written", 0),
            stats.get("resets", 0),
            stats.get("source_parse_errors", 0),
            stats.get("source_reconnects", 0),
        )
        return stats


def _text_source(path: str, parser: OrientationParser) -> Iterator[SourceItem]:
    if path == "-":
        yield from parser.parse_lines(iterate_text_stream(sys.stdin))
    else:
        with Path(path).open("r", encoding="utf-8") as fh:
            yield from parser.parse_lines(iterate_text_stream(fh))
    logger.info("Orientation source %s exhausted", "stdin" if path == "-" else path)


def run_session(
    config: CommutatorConfig,
    source: Iterable[SourceItem],
    *,
    transport=None,
    source_stats: Optional[StatsProvider] = None,
    signals: bool = False,
) -> Dict[str, int]:
    """
    Run one commutator session against the configured serial device.

    A :class:`SerialTransport` is built from ``config.device`` unless a
    transport is passed in. Returns the session's final stats.
    """
    if transport is None:
        device = config.device
        transport = SerialTransport(
            SerialSettings(port=device.port, baudrate=device.baudrate, timeout=device.write_timeout)
        )
    host = CommutatorHost(config, transport)
    if signals:
        host.install_signal_handlers()
    return host.run(source, source_stats=source_stats)


app = typer.Typer(add_completion=False, help="Live commutator control over a serial link.")


@app.command("run")
def run(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to commutator host config (JSON)."
    ),
    override: Optional[List[str]] = typer.Option(
        None,
        "--set",
        help="Override config keys, e.g. --set rotation_axis=[0,1,0] --set device.baudrate=115200",
    ),
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Commutator serial device."),
    baudrate: Optional[int] = typer.Option(None, "--baud", help="Commutator serial baudrate."),
    orientation: str = typer.Option(
        "-", "--orientation", "-o", help="Orientation CSV file, or '-' for stdin."
    ),
    imu_port: Optional[str] = typer.Option(
        None, "--imu-port", help="Read orientation CSV lines from this serial device instead."
    ),
    imu_baudrate: int = typer.Option(115200, "--imu-baud", help="IMU serial baudrate."),
):
    """Turn the commutator to follow the twist of an orientation stream."""

    overrides = list(override or [])
    if port:
        overrides.append(f"device.port={port}")
    if baudrate:
        overrides.append(f"device.baudrate={baudrate}")
    try:
        cfg = load_config(config_path, overrides or None)
    except (ConfigurationError, OSError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    reader: Optional[OrientationReaderThread] = None
    stop_event = threading.Event()
    if imu_port:
        sample_queue: "queue.Queue[SourceItem]" = queue.Queue(maxsize=cfg.host.queue_maxsize)
        reader = OrientationReaderThread(SerialSettings(port=imu_port, baudrate=imu_baudrate), cfg, sample_queue)
        reader.start()
        source: Iterable[SourceItem] = iter_queue(sample_queue, stop_event)
        source_stats: StatsProvider = reader.stats
    else:
        parser = OrientationParser()
        source = _text_source(orientation, parser)
        source_stats = parser.stats

    try:
        run_session(cfg, source, source_stats=source_stats, signals=True)
    except KeyboardInterrupt:
        logger.info("Stopping host (Ctrl+C)")
    except CommutatorError as exc:
        typer.echo(f"[error] {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        stop_event.set()
        if reader is not None:
            reader.stop()
            reader.join(timeout=5)


@app.command("send")
def send(
    port: str = typer.Option("/dev/ttyACM0", "--port", "-p", help="Commutator serial device."),
    baudrate: int = typer.Option(9600, "--baud", help="Commutator serial baudrate."),
    timeout: float = typer.Option(1.0, "--timeout", help="Serial write timeout (seconds)."),
    turn: Optional[float] = typer.Option(None, "--turn", help="Relative turn, in full rotations."),
    enable: Optional[bool] = typer.Option(None, "--enable/--disable", help="Enable or disable the motor."),
    led: Optional[bool] = typer.Option(None, "--led/--no-led", help="Switch the indicator LED."),
):
    """Send one-shot commands to the commutator."""

    commands = []
    if enable is not None:
        commands.append(Enable(enable))
    if led is not None:
        commands.append(Indicator(led))
    if turn is not None:
        commands.append(Turn(turn))
    lines = [line for line in (encode_command(command) for command in commands) if line is not None]
    if not lines:
        raise typer.BadParameter("Nothing to send; use --turn, --enable/--disable or --led/--no-led")
    try:
        with SerialTransport(SerialSettings(port=port, baudrate=baudrate, timeout=timeout)) as transport:
            for line in lines:
                transport.write_line(line)
                typer.echo(line)
    except CommutatorError as exc:
        typer.echo(f"[error] {exc}", err=True)
        raise typer.Exit(code=1) from exc
