from __future__ import annotations

import socket
from typing import Iterable, List

import pytest


class FakeSocket:
    """
    Scripted stand-in for a connected TCP socket.

    ``responses`` feed blocking reads in order: bytes are returned (split to the
    requested size), exceptions are raised and callables are invoked with the
    requested size and their result used. When the script runs out the socket
    reports EOF, or times out if ``eof`` is false. ``stale`` is what a
    non-blocking read sees.
    """

    def __init__(self, responses: Iterable = (), stale: bytes = b"", eof: bool = True):
        self._responses: List = list(responses)
        self._stale = bytearray(stale)
        self.eof = eof
        self.timeout = 1.0
        self.sent: List[bytes] = []
        self.closed = False
        self.fail_send: BaseException | None = None

    def send(self, data: bytes) -> int:
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append(bytes(data))
        return len(data)

    def sendall(self, data: bytes) -> None:
        self.send(data)

    def recv(self, size: int) -> bytes:
        if self.timeout == 0.0:
            if not self._stale:
                raise BlockingIOError
            data = bytes(self._stale[:size])
            del self._stale[:size]
            return data
        if not self._responses:
            if self.eof:
                return b""
            raise socket.timeout("timed out")
        item = self._responses.pop(0)
        if callable(item):
            item = item(size)
        if isinstance(item, BaseException):
            raise item
        data, rest = item[:size], item[size:]
        if rest:
            self._responses.insert(0, rest)
        return data

    def settimeout(self, value) -> None:
        self.timeout = value

    def gettimeout(self):
        return self.timeout

    def setblocking(self, flag: bool) -> None:
        self.timeout = None if flag else 0.0

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_socket():
    return FakeSocket
