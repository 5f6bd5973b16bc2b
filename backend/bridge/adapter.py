"""
Synchronous handle-based API over LanDiscovery.

Meant for callers that own no event loop, e.g. a game engine binding or
a ctypes/cffi shim. Every call blocks until the engine has answered.

Ownership rules:
- create() returns a handle that must be passed to destroy() exactly once.
- Every buffer written by get_peers_bytes() must be passed to
  free_buffer() exactly once.
Using a handle after destroy(), or freeing a buffer twice, is caller
misuse and is not detected.
"""

import logging
from dataclasses import dataclass
from typing import Any

from bridge.runtime import DiscoveryRuntime
from discovery.errors import SetupError
from discovery.models import DiscoverySettings
from discovery.service import LanDiscovery

logger = logging.getLogger(__name__)

OK = 0
ERR_INVALID_ARGUMENT = -1

# Buffers handed out and not yet freed, keyed by id()
_outstanding: dict[int, bytearray] = {}


@dataclass
class Slot:
    """Output parameter written by get_peers_bytes()."""
    value: Any = None


class DiscoveryHandle:
    """Opaque owner of a running engine and a runtime reference."""

    def __init__(self, discovery: LanDiscovery, runtime: DiscoveryRuntime) -> None:
        self._discovery = discovery
        self._runtime = runtime
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<DiscoveryHandle {self._discovery.local_ip} {state}>"


def _decode_name(name) -> str | None:
    if isinstance(name, bytes):
        try:
            return name.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if isinstance(name, str):
        return name
    return None


def create(
    port: int, name, settings: DiscoverySettings | None = None
) -> DiscoveryHandle | None:
    """Build and start an engine. Returns None on bad input or setup failure."""
    name_str = _decode_name(name)
    if name_str is None:
        logger.debug(f"create() rejected name {name!r}")
        return None
    if isinstance(port, bool) or not isinstance(port, int) or not 0 <= port <= 65535:
        logger.debug(f"create() rejected port {port!r}")
        return None

    runtime = DiscoveryRuntime.get()
    runtime.acquire()

    async def build() -> LanDiscovery:
        discovery = LanDiscovery(port, name_str, settings)
        await discovery.start()
        return discovery

    try:
        discovery = runtime.run(build())
    except SetupError as e:
        logger.error(f"LAN discovery unavailable: {e}")
        runtime.release()
        return None
    except BaseException:
        runtime.release()
        raise

    return DiscoveryHandle(discovery, runtime)


def destroy(handle: DiscoveryHandle | None) -> None:
    """Stop the engine and release the runtime. None is a no-op."""
    if handle is None or handle._closed:
        return
    handle._closed = True
    try:
        handle._runtime.run(handle._discovery.stop())
    finally:
        handle._runtime.release()


def get_peers_bytes(
    handle: DiscoveryHandle | None, out_buf: Slot | None, out_len: Slot | None
) -> int:
    """
    Write the JSON peer snapshot into out_buf/out_len.

    Returns OK, or ERR_INVALID_ARGUMENT without touching the slots when any
    argument is missing or the handle has been destroyed.
    """
    if handle is None or out_buf is None or out_len is None or handle._closed:
        return ERR_INVALID_ARGUMENT

    data = bytearray(handle._runtime.run(handle._discovery.peers_json()))
    _outstanding[id(data)] = data
    out_buf.value = data
    out_len.value = len(data)
    return OK


def free_buffer(buffer: bytearray | None, length: int) -> None:
    """Release a buffer returned by get_peers_bytes(). None is a no-op."""
    if buffer is None:
        return
    if _outstanding.pop(id(buffer), None) is None:
        logger.warning(f"free_buffer() on unknown buffer of length {length}")
        return
    del buffer[:]


def outstanding_buffers() -> int:
    """Number of buffers handed out and not yet freed."""
    return len(_outstanding)


def set_announcement(
    handle: DiscoveryHandle | None, name=None, port: int | None = None
) -> int:
    """Change the local name and/or service port announced by the engine."""
    if handle is None or handle._closed:
        return ERR_INVALID_ARGUMENT
    if name is not None:
        name = _decode_name(name)
        if name is None:
            return ERR_INVALID_ARGUMENT
    if port is not None and not 0 <= port <= 65535:
        return ERR_INVALID_ARGUMENT

    handle._runtime.run(handle._discovery.set_announcement(name=name, port=port))
    return OK
