"""
Discovery of the host's own IPv4 address.
"""

import logging
import socket
from typing import List, Optional

import psutil

logger = logging.getLogger(__name__)


def list_ipv4_addresses(interface: Optional[str] = None) -> List[str]:
    """Non-loopback IPv4 addresses, optionally restricted to one interface."""
    if interface:
        logger.debug(f"The interface given is: {interface}")
    else:
        logger.debug("No interface name provided, searching for any with an internal IP")

    ips = []
    for name, addresses in psutil.net_if_addrs().items():
        if interface and name != interface:
            continue
        logger.debug(f"Checking IP address on interface: {name}")
        for address in addresses:
            if address.family == socket.AF_INET and not address.address.startswith("127."):
                logger.debug(f"Found IP: {address.address}")
                ips.append(address.address)
    return ips


def get_ip(interface: Optional[str] = None) -> str:
    """
    Return the single IPv4 address of this host.

    Raises:
        RuntimeError: If no address, or more than one, is found
    """
    ips = list_ipv4_addresses(interface)
    if not ips:
        raise RuntimeError("No IPs found")
    if len(ips) > 1:
        raise RuntimeError(
            f"More than one IP address found ({', '.join(ips)}), "
            "please specify which interface to use"
        )
    logger.debug(f"Just one IP found: {ips[0]}")
    return ips[0]
