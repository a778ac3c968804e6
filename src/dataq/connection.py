"""Connection lifecycle for a DATAQ DI-718B-E style unit."""
from __future__ import annotations

import enum
import errno
import logging
import socket
import time
from typing import Dict, Optional

from .config import DEFAULT_PORT, ScanConfig
from .errors import (
    DataqError,
    HostResolutionError,
    ProtocolError,
    SyncError,
    TransportError,
    UnavailableError,
)
from .protocol import drain, send_command, send_stop
from .receiver import SampleFrame, receive_frame

logger = logging.getLogger(__name__)

READ_TIMEOUT = 1.0
QUIESCE_DELAY = 0.222222


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    FLUSHING = "flushing"
    INITIALIZING = "initializing"
    STREAMING = "streaming"
    STOPPING = "stopping"


class DeviceConnection:
    """An open, initialised and streaming session with one device."""

    def __init__(self, sock: socket.socket, scan: ScanConfig, timeout: float = READ_TIMEOUT):
        self.sock: Optional[socket.socket] = sock
        self.scan = scan
        self.timeout = timeout
        self.state = ConnectionState.STREAMING
        self._stats: Dict[str, int] = {"frames": 0, "sync_errors": 0, "short_reads": 0, "timeouts": 0}

    @property
    def closed(self) -> bool:
        return self.sock is None

    def receive(self, fullscale: float, fudge: float = 1.0) -> SampleFrame:
        if self.sock is None:
            raise UnavailableError("Connection is closed")
        try:
            frame = receive_frame(self.sock, self.scan.channel_count, fullscale, fudge)
        except ProtocolError as exc:
            key = "sync_errors" if isinstance(exc, SyncError) else "short_reads"
            self._stats[key] += 1
            raise
        except TransportError:
            self._stats["timeouts"] += 1
            raise
        self._stats["frames"] += 1
        return frame

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def close(self) -> None:
        """Stop streaming, flush and release the socket. Never raises."""
        if self.sock is None:
            return
        sock, self.sock = self.sock, None
        self.state = ConnectionState.STOPPING
        _shutdown(sock)
        self.state = ConnectionState.DISCONNECTED
        logger.info("Disconnected (%s)", _format_stats(self._stats))

    def __enter__(self) -> "DeviceConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _format_stats(stats: Dict[str, int]) -> str:
    return " ".join(f"{key}={value}" for key, value in stats.items())


def _stop_and_flush(sock: socket.socket) -> None:
    send_stop(sock)
    time.sleep(QUIESCE_DELAY)
    drain(sock)


def _shutdown(sock: socket.socket) -> None:
    try:
        _stop_and_flush(sock)
    except DataqError as exc:
        logger.debug("Ignoring error while stopping stream: %s", exc)
    finally:
        try:
            sock.close()
        except OSError:
            logger.debug("Ignoring error closing socket", exc_info=True)


def resolve(hostname: str) -> str:
    try:
        return socket.gethostbyname(hostname)
    except (socket.gaierror, socket.herror, UnicodeError) as exc:
        logger.warning("DNS lookup for %s failed, is it plugged in?", hostname)
        raise HostResolutionError(f"DNS lookup for {hostname} failed, is it plugged in?") from exc


def open_transport(address: str, port: int, timeout: float = READ_TIMEOUT) -> socket.socket:
    try:
        sock = socket.create_connection((address, port), timeout=timeout)
    except OSError as exc:
        if exc.errno in (errno.EHOSTUNREACH, errno.ENETUNREACH) or isinstance(exc, socket.timeout):
            hint = "is it plugged in?"
        else:
            hint = "is someone else using it?"
        logger.warning("Error connecting to %s:%d, %s", address, port, hint)
        raise TransportError(f"Error connecting to {address}:{port}, {hint}") from exc
    # create_connection's timeout also bounds writes to a stalled peer
    sock.settimeout(timeout)
    return sock


def initialize(sock: socket.socket, scan: ScanConfig) -> None:
    """Acknowledged setup sequence; the first failure aborts it."""
    send_command(sock, "X%02X", scan.timer_scaler)  # division from main 14400 Hz timer
    send_command(sock, "M%04X", scan.rate_divisor)  # further division on output rate
    send_command(sock, "L00%s", scan.scanlist)  # channels to scan, and options
    send_command(sock, "C%02X", scan.channel_count)  # scan first N entries of the list
    send_command(sock, "S3")


def connect(
    hostname: str,
    port: int = DEFAULT_PORT,
    scan: Optional[ScanConfig] = None,
    timeout: float = READ_TIMEOUT,
) -> DeviceConnection:
    """
    Connect to the device, reset any stale stream and start streaming ``scan``.

    Channel limits are enforced by ``ScanConfig`` before any network activity.
    On any failure the socket is closed and the error propagates; there is no
    partially initialised connection.
    """
    scan = scan if scan is not None else ScanConfig()
    state = ConnectionState.CONNECTING
    address = resolve(hostname)
    sock = open_transport(address, port, timeout)
    try:
        state = ConnectionState.FLUSHING
        _stop_and_flush(sock)
        state = ConnectionState.INITIALIZING
        initialize(sock, scan)
    except BaseException:
        logger.warning("Initialisation of %s failed while %s", hostname, state.value)
        sock.close()
        raise
    logger.info(
        "Connected to %s (%s:%d), streaming %d channel(s)",
        hostname,
        address,
        port,
        scan.channel_count,
    )
    return DeviceConnection(sock, scan, timeout)
