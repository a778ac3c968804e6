"""Command line interface for the dataq package."""
from __future__ import annotations

import logging
import signal
import sys
from typing import Callable, Dict, List, Optional

import typer

from .config import DEFAULT_PORT, DEFAULT_SCANLIST, ScanConfig, StreamSettings, apply_overrides
from .connection import connect
from .discovery import autodiscover
from .errors import EX_UNAVAILABLE, DataqError
from .receiver import TRAPPED_SIGNALS, SampleFrame, iter_frames
from .simulator import SimulatedDevice

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help="Simple client for DATAQ DI-718B-E(S) laboratory data acquisition units.",
)


def format_row(frame: SampleFrame, precision: int = 3) -> str:
    seconds = int(frame.timestamp)
    micros = int((frame.timestamp - seconds) * 1_000_000)
    values = " ".join(f"{value:.{precision}f}" for value in frame.values)
    return f"{seconds}.{micros:06d} {values}"


class StopRequest:
    """Process-wide handler for termination signals while the stream runs."""

    def __init__(self) -> None:
        self.signum: Optional[int] = None
        self._previous: Dict[int, object] = {}

    def __call__(self, signum, frame) -> None:
        self.signum = signum

    def is_set(self) -> bool:
        return self.signum is not None

    def install(self) -> None:
        for sig in TRAPPED_SIGNALS:
            self._previous[sig] = signal.signal(sig, self)

    def restore(self) -> None:
        for sig, handler in self._previous.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
        self._previous.clear()


def stream_rows(
    settings: StreamSettings,
    limit: int = 0,
    should_stop: Callable[[], bool] = lambda: False,
    echo: Callable[[str], None] = typer.echo,
) -> int:
    """Connect, print one row per frame and always close the connection once."""
    connection = connect(settings.host, settings.port, settings.scan, timeout=settings.timeout)
    count = 0
    try:
        for frame in iter_frames(connection, settings.fullscale, settings.fudge, should_stop=should_stop):
            if should_stop():
                break
            echo(format_row(frame))
            count += 1
            if limit and count >= limit:
                break
    finally:
        connection.close()
        logger.info("Final stats: rows=%d %s", count, connection.stats())
    return count


def _run(settings: StreamSettings, limit: int) -> None:
    stop = StopRequest()
    stop.install()
    try:
        stream_rows(settings, limit=limit, should_stop=stop.is_set)
    except DataqError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=exc.exit_code) from exc
    finally:
        stop.restore()
    if stop.is_set():
        logger.info("Stopped by %s", signal.Signals(stop.signum).name)


def _build_settings(
    host: str,
    port: int,
    channels: int,
    timer_scaler: int,
    rate_divisor: int,
    scanlist: str,
    fullscale: float,
    fudge: float,
    override: Optional[List[str]],
) -> StreamSettings:
    try:
        settings = StreamSettings(
            host=host,
            port=port,
            fullscale=fullscale,
            fudge=fudge,
            scan=ScanConfig(
                channel_count=channels,
                timer_scaler=timer_scaler,
                rate_divisor=rate_divisor,
                scanlist=scanlist,
            ),
        )
        return apply_overrides(settings, override)
    except DataqError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=exc.exit_code) from exc


@app.callback()
def main(
    log_level: str = typer.Option("warning", "--log-level", help="Logging level for stderr diagnostics."),
) -> None:
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise typer.BadParameter(f"Unknown log level '{log_level}'", param_hint="--log-level")
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


@app.command()
def stream(
    host: Optional[str] = typer.Argument(None, help="Hostname or IP address of the DAQ unit."),
    auto: bool = typer.Option(False, "--auto", "-a", help="Autodiscover the unit instead of naming it."),
    port: int = typer.Option(DEFAULT_PORT, "--port", "-p", help="Device TCP port."),
    channels: int = typer.Option(6, "--channels", "-n", help="Poll the first N channels of the scan list."),
    timer_scaler: int = typer.Option(2, "--timer-scaler", help="Division from the main 14400 Hz timer."),
    rate_divisor: int = typer.Option(0, "--rate-divisor", help="Further division on output rate."),
    scanlist: str = typer.Option(DEFAULT_SCANLIST, "--scanlist", help="Hex-coded scan list entries."),
    fullscale: float = typer.Option(20.0, "--fullscale", help="Engineering-unit full scale of the input module."),
    fudge: float = typer.Option(1.0, "--fudge", help="Calibration multiplier applied to every value."),
    frames: int = typer.Option(0, "--frames", help="Stop after N rows (0 = until interrupted)."),
    override: Optional[List[str]] = typer.Option(
        None,
        "--set",
        help="Override settings, e.g. --set scan.channel_count=8 --set fudge=1.018",
    ),
) -> None:
    """Stream timestamped, calibrated rows to stdout until interrupted."""

    if auto == (host is not None):
        raise typer.BadParameter("Give either HOST or --auto")
    if auto:
        host = autodiscover()
        if host is None:
            raise typer.Exit(code=EX_UNAVAILABLE)
    assert host is not None
    settings = _build_settings(
        host, port, channels, timer_scaler, rate_divisor, scanlist, fullscale, fudge, override
    )
    _run(settings, frames)


@app.command()
def discover() -> None:
    """Look for a unit on the local network."""

    host = autodiscover()
    if host is None:
        raise typer.Exit(code=EX_UNAVAILABLE)
    typer.echo(host)


@app.command()
def demo(
    channels: int = typer.Option(4, "--channels", "-n", help="Number of simulated channels."),
    frames: int = typer.Option(20, "--frames", help="Rows to print before disconnecting."),
    rate_hz: float = typer.Option(200.0, "--rate", help="Simulated frame rate."),
) -> None:
    """Stream from a simulated unit on localhost."""

    with SimulatedDevice(rate_hz=rate_hz) as device:
        host, port = device.address
        settings = _build_settings(
            host, port, channels, 2, 0, DEFAULT_SCANLIST, device.fullscale, 1.0, None
        )
        _run(settings, frames)


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
