"""
In-process stand-in for the acquisition unit.

Speaks the device side of the protocol over TCP: echoes acknowledged
commands, swallows the stop command and streams synthetic sine waves once
``S3`` arrives. Used by ``dataq demo`` and the integration tests.
"""
from __future__ import annotations

import logging
import select
import socket
import threading
import time
from typing import List, Optional, Tuple

import numpy as np

from .codec import COMMAND_PREFIX, encode_frame, to_counts

logger = logging.getLogger(__name__)


class SimulatedDevice:
    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        fullscale: float = 20.0,
        rate_hz: float = 200.0,
        amplitude: float = 5.0,
    ):
        self.fullscale = fullscale
        self.rate_hz = rate_hz
        self.amplitude = amplitude
        self.commands: List[str] = []
        self.channel_count = 1
        self.scanlist = ""
        self.timer_scaler = 0
        self.rate_divisor = 0
        self.streaming = False
        self._server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._server.bind((host, port))
        self._server.listen(1)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._frames_sent = 0

    @property
    def address(self) -> Tuple[str, int]:
        host, port = self._server.getsockname()[:2]
        return host, port

    def start(self) -> "SimulatedDevice":
        self._thread = threading.Thread(target=self._serve, name="dataq-simulator", daemon=True)
        self._thread.start()
        logger.info("Simulated device listening on %s:%d", *self.address)
        return self

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        self._server.close()

    def __enter__(self) -> "SimulatedDevice":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _serve(self) -> None:
        while not self._stop_event.is_set():
            readable, _, _ = select.select([self._server], [], [], 0.05)
            if not readable:
                continue
            try:
                conn, peer = self._server.accept()
            except OSError:
                break
            logger.info("Client connected: %s", peer)
            with conn:
                try:
                    self._session(conn)
                except (BrokenPipeError, ConnectionResetError):
                    logger.info("Client disconnected")
            self.streaming = False

    def _session(self, conn: socket.socket) -> None:
        interval = 1.0 / self.rate_hz
        next_frame = time.monotonic()
        while not self._stop_event.is_set():
            wait = max(next_frame - time.monotonic(), 0.0) if self.streaming else 0.05
            readable, _, _ = select.select([conn], [], [], wait)
            if readable:
                data = conn.recv(1024)
                if not data:
                    return
                for command in data.split(COMMAND_PREFIX):
                    if command:
                        self._handle(conn, command.decode("ascii", errors="replace"))
                if self.streaming:
                    next_frame = max(next_frame, time.monotonic())
                continue
            if self.streaming and time.monotonic() >= next_frame:
                conn.sendall(self._next_frame())
                next_frame += interval

    def _handle(self, conn: socket.socket, command: str) -> None:
        self.commands.append(command)
        if command == "T0":
            self.streaming = False
            return
        opcode, argument = command[0], command[1:]
        try:
            if opcode == "X":
                self.timer_scaler = int(argument, 16)
            elif opcode == "M":
                self.rate_divisor = int(argument, 16)
            elif opcode == "L":
                self.scanlist = argument[2:]
            elif opcode == "C":
                self.channel_count = int(argument, 16)
        except ValueError:
            logger.warning("Rejecting malformed command %r", command)
            # same length as the echo so the client sees a mismatch, not a timeout
            conn.sendall(b"?" * len(command))
            return
        conn.sendall(command.encode("ascii"))
        if command == "S3":
            self.streaming = True
            self._frames_sent = 0

    def _next_frame(self) -> bytes:
        t = self._frames_sent / self.rate_hz
        freqs = 1.0 + 0.5 * np.arange(self.channel_count)
        values = self.amplitude * np.sin(2 * np.pi * freqs * t)
        self._frames_sent += 1
        return encode_frame(to_counts(value, self.fullscale) for value in values)
