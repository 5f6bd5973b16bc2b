"""Peer registry and the shared local announcement."""

import logging

from discovery.locks import ReadWriteLock
from discovery.models import Announcement, Peer

logger = logging.getLogger(__name__)


class PeerRegistry:
    """Peers keyed by announced name, guarded by a reader/writer lock."""

    def __init__(self) -> None:
        self._peers: dict[str, Peer] = {}
        self._lock = ReadWriteLock()

    def __len__(self) -> int:
        return len(self._peers)

    async def upsert(self, peer: Peer) -> bool:
        """Replace whatever is stored under peer.name. Returns True if the name is new."""
        async with self._lock.write():
            is_new = peer.name not in self._peers
            self._peers[peer.name] = peer
        return is_new

    async def evict_stale(self, now: float, timeout: float) -> list[Peer]:
        """Remove every peer not seen for at least `timeout` seconds."""
        async with self._lock.write():
            stale = [
                peer for peer in self._peers.values()
                if now - peer.last_seen >= timeout
            ]
            for peer in stale:
                del self._peers[peer.name]
        return stale

    async def remove(self, name: str) -> Peer | None:
        async with self._lock.write():
            return self._peers.pop(name, None)

    async def snapshot(self) -> list[Peer]:
        """Return independent copies of all current peers."""
        async with self._lock.read():
            return [peer.model_copy() for peer in self._peers.values()]

    async def get(self, name: str) -> Peer | None:
        async with self._lock.read():
            peer = self._peers.get(name)
            return peer.model_copy() if peer else None


class AnnouncementCell:
    """The local announcement, read by the loops and written by the owner."""

    def __init__(self, announcement: Announcement) -> None:
        self._value = announcement
        self._lock = ReadWriteLock()

    async def read(self) -> Announcement:
        async with self._lock.read():
            return self._value.model_copy()

    async def update(self, name: str | None = None, port: int | None = None) -> Announcement:
        """Change name and/or port. Validation errors leave the old value in place."""
        async with self._lock.write():
            fields = self._value.model_dump()
            if name is not None:
                fields["name"] = name
            if port is not None:
                fields["port"] = port
            self._value = Announcement(**fields)
            logger.info(f"Local announcement is now {self._value.name}:{self._value.port}")
            return self._value.model_copy()
