"""Client for DATAQ DI-718B-E(S) Ethernet data acquisition units."""

from importlib.metadata import PackageNotFoundError, version

from .config import ScanConfig, StreamSettings, apply_overrides
from .connection import ConnectionState, DeviceConnection, connect
from .errors import (
    ConfigurationError,
    DataqError,
    HostResolutionError,
    ProtocolError,
    SyncError,
    TransportError,
    UnavailableError,
)
from .receiver import SampleFrame, iter_frames, receive_frame

try:  # pragma: no cover - fallback when package metadata missing
    __version__ = version("dataq-client")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

__all__ = [
    "__version__",
    "ScanConfig",
    "StreamSettings",
    "apply_overrides",
    "ConnectionState",
    "DeviceConnection",
    "connect",
    "ConfigurationError",
    "DataqError",
    "HostResolutionError",
    "ProtocolError",
    "SyncError",
    "TransportError",
    "UnavailableError",
    "SampleFrame",
    "iter_frames",
    "receive_frame",
]
