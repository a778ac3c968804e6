from __future__ import annotations

import pytest

from dataq.config import DEFAULT_SCANLIST, ScanConfig, StreamSettings, apply_overrides
from dataq.errors import ConfigurationError


def test_defaults_match_di718b():
    settings = StreamSettings()
    assert settings.port == 10001
    assert settings.fullscale == 20.0
    assert settings.scan.channel_count == 6
    assert settings.scan.scanlist == DEFAULT_SCANLIST


@pytest.mark.parametrize(
    "kwargs",
    [
        {"channel_count": 33},
        {"channel_count": 0},
        {"timer_scaler": 0x100},
        {"rate_divisor": -1},
        {"scanlist": ""},
    ],
)
def test_scan_config_rejects_invalid(kwargs):
    with pytest.raises(ConfigurationError):
        ScanConfig(**kwargs)


def test_scan_config_accepts_maximum():
    assert ScanConfig(channel_count=32).channel_count == 32


def test_apply_overrides():
    settings = apply_overrides(
        StreamSettings(host="daq1"),
        ["scan.channel_count=8", "fudge=1.018", "scan.rate_divisor=0x10", "scan.scanlist=0E00"],
    )
    assert settings.host == "daq1"
    assert settings.scan.channel_count == 8
    assert settings.fudge == 1.018
    assert settings.scan.rate_divisor == 16
    assert settings.scan.scanlist == "0E00"


def test_apply_overrides_without_changes_returns_same_object():
    settings = StreamSettings()
    assert apply_overrides(settings, None) is settings


@pytest.mark.parametrize(
    "override",
    ["channel_count", "=3", "bogus=1", "scan.bogus=1", "scan=3", "scan.channel_count=40"],
)
def test_apply_overrides_rejects(override):
    with pytest.raises(ConfigurationError):
        apply_overrides(StreamSettings(), [override])
