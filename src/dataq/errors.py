"""Exception hierarchy shared by the driver and the CLI.

Each error carries a sysexits-style ``exit_code`` so the command line front
end can report *why* it stopped to whatever automation is watching it.
"""
from __future__ import annotations

from typing import Optional

EX_DATAERR = 65
EX_NOHOST = 68
EX_UNAVAILABLE = 69
EX_IOERR = 74
EX_PROTOCOL = 76


class DataqError(Exception):
    exit_code = 1


class ConfigurationError(DataqError, ValueError):
    """Scan parameters the device cannot accept (e.g. too many channels)."""

    exit_code = EX_DATAERR


class HostResolutionError(DataqError):
    """Hostname lookup failed; usually the unit is unplugged."""

    exit_code = EX_NOHOST


class TransportError(DataqError):
    """Socket creation, connect, write or read failure."""

    exit_code = EX_IOERR


class UnavailableError(DataqError):
    """Peer closed the connection, or a termination signal asked us to stop."""

    exit_code = EX_UNAVAILABLE

    def __init__(self, message: str, signum: Optional[int] = None):
        super().__init__(message)
        self.signum = signum

    @property
    def by_signal(self) -> bool:
        return self.signum is not None


class ProtocolError(DataqError):
    exit_code = EX_PROTOCOL


class EchoMismatchError(ProtocolError):
    def __init__(self, expected: bytes, received: bytes):
        super().__init__(f"Expected {expected!r}, received {received!r}")
        self.expected = expected
        self.received = received


class SyncError(ProtocolError):
    """A sample word carried the wrong sync flags for its channel slot."""

    def __init__(self, channel: int, word: int):
        super().__init__(f"LSB mismatch @ {channel}: {word:04X}")
        self.channel = channel
        self.word = word
