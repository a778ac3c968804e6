from __future__ import annotations

import logging
import signal
import socket
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Iterator, Optional, Sequence

import numpy as np

from .codec import MAX_CHANNELS, decode_frame
from .errors import ConfigurationError, ProtocolError, TransportError, UnavailableError
from .protocol import recv_exactly

if TYPE_CHECKING:
    from .connection import DeviceConnection

logger = logging.getLogger(__name__)

TRAPPED_SIGNALS = tuple(
    sig
    for sig in (signal.SIGINT, getattr(signal, "SIGHUP", None), signal.SIGTERM)
    if sig is not None
)


@dataclass
class SampleFrame:
    timestamp: float
    values: np.ndarray

    @property
    def channel_count(self) -> int:
        return int(self.values.size)


class SignalTrap:
    """Records the first termination signal delivered while armed."""

    def __init__(self) -> None:
        self.caught: Optional[int] = None

    def __call__(self, signum, frame) -> None:
        if self.caught is None:
            self.caught = signum

    @property
    def triggered(self) -> bool:
        return self.caught is not None


@contextmanager
def signal_window(signals: Sequence[int] = TRAPPED_SIGNALS) -> Iterator[SignalTrap]:
    """
    Trap termination signals for the duration of the block only.

    Previous dispositions are restored on exit whatever happens inside, so a
    signal outside the window reaches the application's own handlers. Python
    only lets the main thread install handlers; elsewhere the window is inert.
    """
    trap = SignalTrap()
    previous: Dict[int, object] = {}
    if threading.current_thread() is threading.main_thread():
        for sig in signals:
            previous[sig] = signal.signal(sig, trap)
    try:
        yield trap
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)


def receive_frame(
    sock: socket.socket,
    channel_count: int,
    fullscale: float,
    fudge: float = 1.0,
    timeout: Optional[float] = None,
) -> SampleFrame:
    """
    Block for one frame of ``channel_count`` words and return calibrated values.

    Raises ``UnavailableError`` on EOF or when a termination signal arrived during
    the read (after re-delivering it to the restored handler), ``TransportError``
    on socket failure or timeout, and ``ProtocolError`` for short frames or bad
    sync flags.
    """
    if not 1 <= channel_count <= MAX_CHANNELS:
        raise ConfigurationError(f"channel_count must be within 1..{MAX_CHANNELS}")
    size = 2 * channel_count
    error: Optional[TransportError] = None
    payload = b""
    previous_timeout = sock.gettimeout()
    if timeout is not None:
        sock.settimeout(timeout)

    try:
        with signal_window() as trap:
            try:
                payload = recv_exactly(sock, size, should_stop=lambda: trap.triggered)
            except TransportError as exc:
                error = exc
            timestamp = time.time()
    finally:
        if timeout is not None:
            sock.settimeout(previous_timeout)

    if trap.caught is not None:
        name = signal.Signals(trap.caught).name
        logger.info("Caught %s signal during receive", name)
        signal.raise_signal(trap.caught)
        raise UnavailableError(f"Interrupted by {name}", signum=trap.caught)
    if error is not None:
        raise error
    if not payload:
        raise UnavailableError("EOF reading from socket")
    if len(payload) != size:
        raise ProtocolError(f"Expected {size} bytes, read {len(payload)} bytes")

    return SampleFrame(timestamp=timestamp, values=decode_frame(payload, channel_count, fullscale, fudge))


def iter_frames(
    connection: "DeviceConnection",
    fullscale: float,
    fudge: float = 1.0,
    skip_errors: bool = True,
    should_stop: Callable[[], bool] = lambda: False,
) -> Iterator[SampleFrame]:
    """
    Yield frames until a termination signal arrives or ``should_stop`` reports true.

    ``should_stop`` is checked before every read, including after a skipped
    frame, so a stop request raised outside the receive window is honoured.
    Per-frame protocol and transport faults are logged and skipped unless
    ``skip_errors`` is false; a closed peer still raises ``UnavailableError``.
    The caller owns closing the connection.
    """
    while not should_stop():
        try:
            frame = connection.receive(fullscale, fudge)
        except UnavailableError as exc:
            if not exc.by_signal:
                raise
            logger.info("Stopping stream: %s", exc)
            return
        except (ProtocolError, TransportError) as exc:
            if not skip_errors:
                raise
            logger.warning("Skipping frame: %s", exc)
            continue
        yield frame
    logger.info("Stopping stream: stop requested")
