"""
Local interface selection.

Picks the IPv4 address used to bind the announce socket and to join the
multicast group. Private ranges are preferred over global addresses,
192.168/16 first since it is the range home and office LANs use.
"""

import ipaddress
import logging
import socket
from typing import Iterable

import psutil

from discovery.errors import SetupError

logger = logging.getLogger(__name__)

UNUSABLE = -1
LOOPBACK = "127.0.0.1"

_PRIVATE_SCORES = [
    (ipaddress.ip_network("192.168.0.0/16"), 100),
    (ipaddress.ip_network("172.16.0.0/12"), 90),
    (ipaddress.ip_network("10.0.0.0/8"), 80),
]
_GLOBAL_SCORE = 10


def score_address(address: str) -> int:
    """Rate an address for multicast use; higher is better, UNUSABLE is excluded."""
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return UNUSABLE
    if ip.version != 4:
        return UNUSABLE
    if ip.is_loopback or ip.is_link_local or ip.is_multicast or ip.is_unspecified:
        return UNUSABLE

    for network, score in _PRIVATE_SCORES:
        if ip in network:
            return score
    return _GLOBAL_SCORE


def select_local_ipv4(addresses: Iterable[str]) -> str:
    """
    Return the best address from the list, or loopback if none is usable.

    Ties keep the first address seen.
    """
    best = None
    best_score = UNUSABLE
    for address in addresses:
        score = score_address(address)
        if score > best_score:
            best, best_score = address, score

    if best is None:
        logger.warning(
            f"No usable IPv4 interface, falling back to {LOOPBACK} (same-host peers only)"
        )
        return LOOPBACK
    return best


def list_local_ipv4() -> list[str]:
    """IPv4 addresses of every local interface, in enumeration order."""
    try:
        interfaces = psutil.net_if_addrs()
    except (OSError, psutil.Error) as e:
        raise SetupError(f"Failed to list network interfaces: {e}") from e

    addresses = []
    for iface, addrs in interfaces.items():
        for addr in addrs:
            if addr.family == socket.AF_INET:
                addresses.append(addr.address)
    return addresses


def get_local_ipv4() -> str:
    return select_local_ipv4(list_local_ipv4())
