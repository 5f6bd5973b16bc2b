import socket

import pytest

import discovery.service as service
from discovery.models import DiscoverySettings
from discovery.service import LanDiscovery


@pytest.fixture
def fast_settings():
    return DiscoverySettings(
        announce_interval=0.05,
        peer_timeout=0.2,
        expiry_interval=0.05,
    )


@pytest.fixture
def loopback_sockets(monkeypatch):
    """Replace multicast provisioning with plain UDP sockets on 127.0.0.1."""
    created: list[socket.socket] = []

    def fake_socket(*args, **kwargs):
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.bind(("127.0.0.1", 0))
        sock.setblocking(False)
        created.append(sock)
        return sock

    monkeypatch.setattr(service, "create_announce_socket", fake_socket)
    monkeypatch.setattr(service, "create_listen_socket", fake_socket)
    monkeypatch.setattr(service, "get_local_ipv4", lambda: "127.0.0.1")
    yield created
    for sock in created:
        sock.close()


@pytest.fixture
async def engine(loopback_sockets, fast_settings):
    discovery = LanDiscovery(8080, "Alice", settings=fast_settings)
    yield discovery
    await discovery.stop()


@pytest.fixture
def sender():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    yield sock
    sock.close()
