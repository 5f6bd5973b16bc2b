"""
UDP socket provisioning for multicast discovery.

Both sockets are returned non-blocking and fully configured; any failure
closes the half-built socket and raises SetupError.
"""

import ipaddress
import logging
import socket

from discovery.errors import SetupError

logger = logging.getLogger(__name__)


def parse_multicast_group(group: str) -> str:
    try:
        ip = ipaddress.IPv4Address(group)
    except ValueError as e:
        raise SetupError(f"Invalid multicast address {group!r}: {e}") from e
    if not ip.is_multicast:
        raise SetupError(f"{group} is not a multicast address")
    return str(ip)


def _set_multicast_options(sock: socket.socket, ttl: int) -> None:
    sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)
    sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, ttl)


def create_announce_socket(local_ip: str, ttl: int = 1) -> socket.socket:
    """Outbound socket bound to local_ip on an ephemeral port."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        _set_multicast_options(sock, ttl)
        sock.bind((local_ip, 0))
        # Pin outbound multicast to the chosen interface
        sock.setsockopt(
            socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(local_ip)
        )
        sock.setblocking(False)
    except OSError as e:
        sock.close()
        raise SetupError(f"Failed to configure announce socket on {local_ip}: {e}") from e

    logger.debug(f"Announce socket bound to {sock.getsockname()}")
    return sock


def enable_reuse_port(sock: socket.socket) -> bool:
    """Best effort SO_REUSEPORT; some platforms lack it or refuse it."""
    if not hasattr(socket, "SO_REUSEPORT"):
        return False
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
    except OSError as e:
        logger.debug(f"SO_REUSEPORT unavailable: {e}")
        return False
    return True


def create_listen_socket(
    group: str, port: int, local_ip: str, ttl: int = 1
) -> socket.socket:
    """Inbound socket on the wildcard address, joined to the group on local_ip."""
    group = parse_multicast_group(group)

    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        # Several local processes share the discovery port
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        enable_reuse_port(sock)
        sock.bind(("0.0.0.0", port))
        mreq = socket.inet_aton(group) + socket.inet_aton(local_ip)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        _set_multicast_options(sock, ttl)
        sock.setblocking(False)
    except OSError as e:
        sock.close()
        raise SetupError(
            f"Failed to join {group}:{port} on {local_ip}: {e}"
        ) from e

    logger.debug(f"Listen socket joined {group}:{port} via {local_ip}")
    return sock
