"""Pydantic models for peer discovery."""

from pydantic import BaseModel, Field, TypeAdapter

from config import (
    ANNOUNCE_INTERVAL,
    EXPIRY_INTERVAL,
    MULTICAST_ADDR,
    MULTICAST_PORT,
    MULTICAST_TTL,
    PEER_TIMEOUT,
    RECV_BUFFER_SIZE,
)


class Announcement(BaseModel):
    """The JSON payload multicast by every participant."""
    name: str
    port: int = Field(ge=0, le=65535)  # service port, not the UDP source port

    def encode(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def decode(cls, data: bytes) -> "Announcement":
        """Parse a datagram. Raises pydantic.ValidationError on anything malformed."""
        return cls.model_validate_json(data)


class Peer(BaseModel):
    """Represents a discovered participant on the LAN."""
    addr: str  # "ip:port" of the datagram source
    name: str
    port: int = Field(ge=0, le=65535)
    last_seen: float = Field(default=0.0, exclude=True)  # time.monotonic() at receipt


class DiscoverySettings(BaseModel):
    """Per-engine tunables. Defaults mirror config.py."""
    multicast_group: str = MULTICAST_ADDR
    multicast_port: int = Field(default=MULTICAST_PORT, ge=1, le=65535)
    multicast_ttl: int = Field(default=MULTICAST_TTL, ge=0, le=255)
    announce_interval: float = Field(default=ANNOUNCE_INTERVAL, gt=0)
    peer_timeout: float = Field(default=PEER_TIMEOUT, gt=0)
    expiry_interval: float = Field(default=EXPIRY_INTERVAL, gt=0)
    recv_buffer_size: int = Field(default=RECV_BUFFER_SIZE, gt=0)


PeerList = TypeAdapter(list[Peer])


def encode_peers(peers: list[Peer]) -> bytes:
    """Serialize a peer snapshot; last_seen is never included."""
    return PeerList.dump_json(peers)
