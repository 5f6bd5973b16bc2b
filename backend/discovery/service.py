"""
UDP multicast LAN discovery service.

Multicasts a periodic announcement and listens for announcements from
other instances on the same LAN, keeping a registry of live peers.
"""

import asyncio
import logging
import time

from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from discovery.errors import SetupError
from discovery.interfaces import get_local_ipv4
from discovery.models import Announcement, DiscoverySettings, Peer, encode_peers
from discovery.registry import AnnouncementCell, PeerRegistry
from discovery.sockets import (
    create_announce_socket,
    create_listen_socket,
    parse_multicast_group,
)

logger = logging.getLogger(__name__)


class LanDiscovery:
    """Owns the sockets, the peer registry and the local announcement."""

    def __init__(
        self,
        service_port: int,
        name: str,
        settings: DiscoverySettings | None = None,
        local_ip: str | None = None,
    ) -> None:
        self._settings = settings or DiscoverySettings()
        try:
            announcement = Announcement(name=name, port=service_port)
        except ValidationError as e:
            raise SetupError(f"Invalid announcement: {e}") from e

        group = parse_multicast_group(self._settings.multicast_group)
        self._local_ip = local_ip or get_local_ipv4()
        logger.info(f"Local interface: {self._local_ip}")

        self._announce_socket = create_announce_socket(
            self._local_ip, self._settings.multicast_ttl
        )
        try:
            self._listen_socket = create_listen_socket(
                group,
                self._settings.multicast_port,
                self._local_ip,
                self._settings.multicast_ttl,
            )
        except BaseException:
            self._announce_socket.close()
            raise

        self._target = (group, self._settings.multicast_port)
        self._peers = PeerRegistry()
        self._announcement = AnnouncementCell(announcement)
        self._tasks: list[asyncio.Task] = []
        self._on_peer_change: list = []  # callbacks: async def fn(event, peer)
        self._callback_tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def settings(self) -> DiscoverySettings:
        return self._settings

    @property
    def local_ip(self) -> str:
        return self._local_ip

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def on_peer_change(self, callback) -> None:
        """Register a callback for peer discovered/lost events."""
        self._on_peer_change.append(callback)

    async def start(self) -> None:
        """Start the announcer, listener and expiry loops."""
        if self._tasks:
            logger.warning("Discovery already started, ignoring start()")
            return
        if self._closed:
            raise RuntimeError("Discovery has been stopped")

        self._tasks = [
            asyncio.create_task(self._announce_loop(), name="discovery-announce"),
            asyncio.create_task(self._listen_loop(), name="discovery-listen"),
            asyncio.create_task(self._expiry_loop(), name="discovery-expiry"),
        ]
        announcement = await self._announcement.read()
        logger.info(
            f"LAN discovery started for {announcement.name} on "
            f"{self._target[0]}:{self._target[1]}"
        )

    async def stop(self) -> None:
        """Cancel the loops and close both sockets."""
        if self._closed:
            return
        self._closed = True

        tasks = self._tasks + list(self._callback_tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        self._announce_socket.close()
        self._listen_socket.close()
        logger.info("LAN discovery stopped")

    async def get_peers(self) -> list[Peer]:
        """Return a list of currently known peers."""
        return await self._peers.snapshot()

    async def peers_json(self) -> bytes:
        """Current peers as JSON bytes, or b"" if they cannot be serialized."""
        peers = await self.get_peers()
        try:
            return encode_peers(peers)
        except PydanticSerializationError as e:
            logger.error(f"Failed to serialize peers: {e}")
            return b""

    async def get_announcement(self) -> Announcement:
        return await self._announcement.read()

    async def set_announcement(
        self, name: str | None = None, port: int | None = None
    ) -> Announcement:
        """Change the local identity; a peer already holding the new name is dropped."""
        announcement = await self._announcement.update(name=name, port=port)
        if name is not None and await self._peers.remove(announcement.name):
            logger.info(f"Dropped peer {announcement.name}, now the local name")
        return announcement

    async def handle_datagram(self, data: bytes, addr: tuple[str, int]) -> None:
        """Decode one datagram and record the sender unless it is ourselves."""
        try:
            announcement = Announcement.decode(data)
        except ValidationError as e:
            logger.debug(f"Ignoring invalid announcement from {addr}: {e}")
            return

        local = await self._announcement.read()
        if announcement.name == local.name:
            return

        peer = Peer(
            addr=f"{addr[0]}:{addr[1]}",
            name=announcement.name,
            port=announcement.port,
            last_seen=time.monotonic(),
        )
        if await self._peers.upsert(peer):
            logger.info(f"Discovered peer: {peer.name} ({peer.addr}, port {peer.port})")
            await self._emit("peer_discovered", peer)

    async def expire_peers(self) -> list[Peer]:
        """Drop peers whose last announcement is older than the staleness window."""
        stale = await self._peers.evict_stale(time.monotonic(), self._settings.peer_timeout)
        for peer in stale:
            logger.info(f"Peer lost: {peer.name} ({peer.addr})")
            await self._emit("peer_lost", peer)
        return stale

    async def _emit(self, event: str, peer: Peer) -> None:
        # Callbacks run as their own tasks so a slow consumer never delays receipt
        for cb in self._on_peer_change:
            task = asyncio.ensure_future(self._run_callback(cb, event, peer))
            self._callback_tasks.add(task)
            task.add_done_callback(self._callback_tasks.discard)

    @staticmethod
    async def _run_callback(cb, event: str, peer: Peer) -> None:
        try:
            await cb(event, peer)
        except Exception as e:
            logger.error(f"Peer callback error: {e}")

    async def _send_announcement(self) -> None:
        announcement = await self._announcement.read()
        loop = asyncio.get_running_loop()
        try:
            await loop.sock_sendto(self._announce_socket, announcement.encode(), self._target)
        except OSError as e:
            logger.warning(f"Announce send error: {e}")

    async def _announce_loop(self) -> None:
        """Periodically send the local announcement."""
        while True:
            await self._send_announcement()
            await asyncio.sleep(self._settings.announce_interval)

    async def _listen_loop(self) -> None:
        """Receive announcements until cancelled."""
        loop = asyncio.get_running_loop()
        while True:
            try:
                data, addr = await loop.sock_recvfrom(
                    self._listen_socket, self._settings.recv_buffer_size
                )
            except OSError as e:
                logger.warning(f"Listener error: {e}")
                # sock_recvfrom fails before suspending, yield so other tasks run
                await asyncio.sleep(0)
                continue
            await self.handle_datagram(data, addr)

    async def _expiry_loop(self) -> None:
        """Remove stale peers that haven't been seen recently."""
        while True:
            await asyncio.sleep(self._settings.expiry_interval)
            await self.expire_peers()


def open_discovery(
    service_port: int, name: str, settings: DiscoverySettings | None = None
) -> LanDiscovery:
    """Build an engine, logging construction failures as "discovery unavailable"."""
    try:
        return LanDiscovery(service_port, name, settings)
    except SetupError as e:
        logger.error(f"LAN discovery unavailable: {e}")
        raise
