from __future__ import annotations

import signal
import socket

import numpy as np
import pytest
from typer.testing import CliRunner

from dataq import cli as cli_module
from dataq import connection as connection_module
from dataq.cli import StopRequest, app, format_row, stream_rows
from dataq.codec import MIDSCALE, encode_frame
from dataq.config import ScanConfig, StreamSettings
from dataq.connection import DeviceConnection
from dataq.errors import EX_DATAERR, EX_IOERR, EX_NOHOST, EX_PROTOCOL, EX_UNAVAILABLE
from dataq.receiver import SampleFrame

runner = CliRunner()


def test_format_row():
    frame = SampleFrame(timestamp=1465300000.25, values=np.array([0.0, -1.23456, 19.9976]))
    assert format_row(frame) == "1465300000.250000 0.000 -1.235 19.998"


def test_discover_reports_unavailable():
    result = runner.invoke(app, ["discover"])
    assert result.exit_code == EX_UNAVAILABLE


def test_stream_auto_without_discovery():
    result = runner.invoke(app, ["stream", "--auto"])
    assert result.exit_code == EX_UNAVAILABLE


def test_stream_requires_host():
    result = runner.invoke(app, ["stream"])
    assert result.exit_code == 2


def test_stream_too_many_channels():
    result = runner.invoke(app, ["stream", "di718b", "--channels", "40"])
    assert result.exit_code == EX_DATAERR


def test_stream_bad_override():
    result = runner.invoke(app, ["stream", "di718b", "--set", "nonsense"])
    assert result.exit_code == EX_DATAERR


def test_stream_unknown_host(monkeypatch):
    def fail(host):
        raise socket.gaierror(-2, "Name or service not known")

    monkeypatch.setattr(socket, "gethostbyname", fail)
    result = runner.invoke(app, ["stream", "nosuchhost"])
    assert result.exit_code == EX_NOHOST


def test_demo_prints_rows(monkeypatch):
    monkeypatch.setattr(connection_module, "QUIESCE_DELAY", 0.01)
    result = runner.invoke(app, ["demo", "--channels", "3", "--frames", "4", "--rate", "500"])
    assert result.exit_code == 0, result.output
    rows = [line.split() for line in result.stdout.splitlines() if line.strip()]
    assert len(rows) == 4
    assert all(len(row) == 4 for row in rows)
    assert all(len(row[0].split(".")[1]) == 6 for row in rows)
    assert all(len(value.split(".")[1]) == 3 for row in rows for value in row[1:])


ECHOES = [b"X02", b"M0000", b"L00E000E001", b"C02", b"S3"]
STREAM_ARGS = ["stream", "di718b", "--channels", "2", "--scanlist", "E000E001"]


@pytest.fixture
def scripted_device(monkeypatch, fake_socket):
    """Point DNS and connects at a fake socket fed from ``state['responses']``."""

    state = {"responses": [], "eof": True, "sock": None}

    def fake_create_connection(address, timeout=None):
        state["sock"] = fake_socket(state["responses"], eof=state["eof"])
        return state["sock"]

    monkeypatch.setattr(connection_module, "QUIESCE_DELAY", 0.0)
    monkeypatch.setattr(socket, "gethostbyname", lambda host: "10.0.0.7")
    monkeypatch.setattr(socket, "create_connection", fake_create_connection)
    return state


def test_stream_echo_mismatch_exit_status(scripted_device):
    scripted_device["responses"] = [b"X03"]
    result = runner.invoke(app, STREAM_ARGS)
    assert result.exit_code == EX_PROTOCOL
    assert scripted_device["sock"].closed


def test_stream_timeout_exit_status(scripted_device):
    scripted_device["eof"] = False
    result = runner.invoke(app, STREAM_ARGS)
    assert result.exit_code == EX_IOERR


def test_stream_device_unplugged_exit_status(scripted_device):
    scripted_device["responses"] = list(ECHOES) + [encode_frame([MIDSCALE, MIDSCALE])]
    result = runner.invoke(app, STREAM_ARGS)
    assert result.exit_code == EX_UNAVAILABLE


def test_stream_signal_during_read_exits_cleanly(scripted_device):
    def interrupted(size):
        signal.raise_signal(signal.SIGTERM)
        return socket.timeout("timed out")

    frame = encode_frame([MIDSCALE, MIDSCALE + 4096])
    scripted_device["responses"] = list(ECHOES) + [frame, interrupted, frame]
    before = signal.getsignal(signal.SIGTERM)
    result = runner.invoke(app, STREAM_ARGS)
    assert result.exit_code == 0, result.output
    rows = [line.split() for line in result.stdout.splitlines() if line.strip()]
    assert [row[1:] for row in rows] == [["0.000", "10.000"]]
    sock = scripted_device["sock"]
    assert sock.closed
    assert sock.sent[-1] == b"\x00T0"
    assert signal.getsignal(signal.SIGTERM) == before


def test_stop_request_between_reads_is_honoured(monkeypatch, fake_socket):
    sock = fake_socket([socket.timeout()] * 5)
    monkeypatch.setattr(connection_module, "QUIESCE_DELAY", 0.0)
    monkeypatch.setattr(
        cli_module,
        "connect",
        lambda host, port, scan, timeout: DeviceConnection(sock, ScanConfig(channel_count=2)),
    )
    stop = StopRequest()
    stop.install()
    try:
        signal.raise_signal(signal.SIGINT)
        assert stop.is_set()
        rows = stream_rows(StreamSettings(), should_stop=stop.is_set)
    finally:
        stop.restore()
    assert rows == 0
    assert len(sock._responses) == 5
    assert sock.closed
