from __future__ import annotations

from typing import Any

import numpy as np

from .errors import ProtocolError, SyncError

COMMAND_PREFIX = b"\x00"
STOP_COMMAND = COMMAND_PREFIX + b"T0"

MAX_CHANNELS = 32

SYNC_MASK = 0x0101
SYNC_FIRST = 0x0100
SYNC_OTHER = 0x0101

HIGH_MASK = 0xFE00
LOW_MASK = 0x00FE
MIDSCALE = 1 << 13
MAX_COUNTS = (1 << 14) - 1

WORD_DTYPE = np.dtype("<u2")


def render_command(template: str, *args: Any) -> str:
    """Render a printf-style command template, e.g. ``render_command("X%02X", 2)``."""
    text = template % args if args else template
    try:
        text.encode("ascii")
    except UnicodeEncodeError as exc:
        raise ProtocolError(f"Command {text!r} is not ASCII") from exc
    return text


def encode_command(template: str, *args: Any) -> bytes:
    """Wire bytes for a command: null marker followed by the ASCII text."""
    return COMMAND_PREFIX + render_command(template, *args).encode("ascii")


def expected_sync(is_first_channel: bool) -> int:
    return SYNC_FIRST if is_first_channel else SYNC_OTHER


def decode_channel_word(word: int, is_first_channel: bool, channel: int = 0) -> int:
    """
    Validate the sync flags of a 16-bit sample word and return its 14-bit count.

    Bits 8 and 0 are the sync flags; the measurement lives in bits 15..9 and
    7..1. ``channel`` is only used to label a ``SyncError``.
    """
    word &= 0xFFFF
    if word & SYNC_MASK != expected_sync(is_first_channel):
        raise SyncError(channel, word)
    return ((word & HIGH_MASK) >> 2) | ((word & LOW_MASK) >> 1)


def encode_channel_word(counts: int, is_first_channel: bool) -> int:
    if not 0 <= counts <= MAX_COUNTS:
        raise ValueError(f"counts {counts} outside 14-bit range")
    word = ((counts << 2) & HIGH_MASK) | ((counts << 1) & LOW_MASK)
    return word | expected_sync(is_first_channel)


def calibrate(counts, fullscale: float, fudge: float = 1.0):
    """Map 14-bit counts to engineering units, zero at mid-scale.

    Works element-wise on numpy arrays as well as on plain integers.
    """
    return fudge * fullscale * ((counts / MIDSCALE) - 1)


def to_counts(value: float, fullscale: float, fudge: float = 1.0) -> int:
    counts = round((value / (fudge * fullscale) + 1) * MIDSCALE)
    return int(min(max(counts, 0), MAX_COUNTS))


def decode_frame(payload: bytes, channel_count: int, fullscale: float, fudge: float = 1.0) -> np.ndarray:
    """
    Decode one frame of ``channel_count`` little-endian words into calibrated values.

    The whole frame is rejected with ``SyncError`` naming the lowest channel whose
    sync flags are wrong; no partial output is produced.
    """
    expected_size = 2 * channel_count
    if len(payload) != expected_size:
        raise ProtocolError(f"Expected {expected_size} bytes, read {len(payload)} bytes")
    words = np.frombuffer(payload, dtype=WORD_DTYPE, count=channel_count)
    sync = words & SYNC_MASK
    expected = np.full(channel_count, SYNC_OTHER, dtype=np.uint16)
    expected[0] = SYNC_FIRST
    bad = np.flatnonzero(sync != expected)
    if bad.size:
        channel = int(bad[0])
        raise SyncError(channel, int(words[channel]))
    counts = ((words & HIGH_MASK) >> 2) | ((words & LOW_MASK) >> 1)
    return calibrate(counts.astype(np.float64), fullscale, fudge)


def encode_frame(counts) -> bytes:
    """Pack per-channel counts into a frame with correct sync flags."""
    words = [encode_channel_word(int(value), index == 0) for index, value in enumerate(counts)]
    return np.asarray(words, dtype=WORD_DTYPE).tobytes()
