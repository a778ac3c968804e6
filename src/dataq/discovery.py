"""Device discovery. Not implemented; explains how to find the unit instead."""
from __future__ import annotations

import logging
from typing import Optional

logger = logging.getLogger(__name__)

DISCOVERY_HELP = (
    "Sorry, autodiscovery unimplemented.\n"
    "If the site DHCP server registers device names, just specify 'di718b' as the hostname.\n"
    "Otherwise, you can use the 'DATAQ Instruments Hardware Manager' utility provided with\n"
    "WinDAQ, or check your DHCP logs for MAC addresses starting with 00:80:A3, or implement\n"
    "http://wiki.lantronix.com/developer/Lantronix_Discovery_Protocol"
)


def autodiscover() -> Optional[str]:
    """Always returns ``None`` after logging where to look for the device."""
    logger.warning(DISCOVERY_HELP)
    return None
