"""
Command/echo exchange with the device.

The unit has no acknowledgement code: it echoes every command text back
without the leading null, and an exact echo is the acknowledgement.
"""
from __future__ import annotations

import logging
import socket
from typing import Any, Callable, Optional

from .codec import COMMAND_PREFIX, STOP_COMMAND, render_command
from .errors import EchoMismatchError, ProtocolError, TransportError, UnavailableError

logger = logging.getLogger(__name__)

DRAIN_CHUNK = 32


def _write(sock: socket.socket, payload: bytes) -> None:
    try:
        sent = sock.send(payload)
        if sent == 0:
            raise UnavailableError("EOF writing to socket")
        if sent < len(payload):
            sock.sendall(payload[sent:])
    except socket.timeout as exc:
        raise TransportError("Timed out writing to socket") from exc
    except (BrokenPipeError, ConnectionResetError) as exc:
        raise UnavailableError(f"Peer closed connection: {exc}") from exc
    except OSError as exc:
        raise TransportError(f"Error writing to socket: {exc}") from exc


def recv_exactly(
    sock: socket.socket,
    size: int,
    should_stop: Optional[Callable[[], bool]] = None,
) -> bytes:
    """
    Read until ``size`` bytes arrive, the peer closes, the socket times out or
    ``should_stop`` reports true.

    Returns what was collected, which may be short (or empty on EOF). A timeout
    before any byte arrives is a ``TransportError``.
    """
    chunks = bytearray()
    while len(chunks) < size:
        if should_stop is not None and should_stop():
            break
        try:
            data = sock.recv(size - len(chunks))
        except socket.timeout as exc:
            if not chunks:
                raise TransportError("Timed out reading from socket") from exc
            break
        except ConnectionResetError:
            break
        except OSError as exc:
            raise TransportError(f"Error reading from socket: {exc}") from exc
        if not data:
            break
        chunks.extend(data)
    return bytes(chunks)


def send_command(sock: socket.socket, template: str, *args: Any) -> str:
    """Send an acknowledged command and verify the echo; returns the command text."""
    text = render_command(template, *args)
    expected = text.encode("ascii")
    _write(sock, COMMAND_PREFIX + expected)

    response = recv_exactly(sock, len(expected))
    if not response:
        raise UnavailableError("EOF reading from socket")
    if len(response) != len(expected):
        logger.warning("Expected %d bytes, read %d bytes", len(expected), len(response))
        raise ProtocolError(f"Expected {len(expected)} bytes, read {len(response)} bytes")
    if response != expected:
        logger.warning("Expected %r, received %r", text, response)
        raise EchoMismatchError(expected, response)

    logger.debug("CMD: %s", text)
    return text


def send_stop(sock: socket.socket) -> None:
    """Fire-and-forget stop; the device may be mid-stream and will not echo it."""
    _write(sock, STOP_COMMAND)


def drain(sock: socket.socket) -> int:
    """Discard whatever is already buffered on the socket without blocking."""
    previous = sock.gettimeout()
    discarded = 0
    sock.setblocking(False)
    try:
        while True:
            try:
                data = sock.recv(DRAIN_CHUNK)
            except (BlockingIOError, InterruptedError):
                break
            except OSError as exc:
                raise TransportError(f"Error flushing socket: {exc}") from exc
            if not data:
                break
            discarded += len(data)
    finally:
        sock.settimeout(previous)
    if discarded:
        logger.debug("Flushed %d stale bytes", discarded)
    return discarded
