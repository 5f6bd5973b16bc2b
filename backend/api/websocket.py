"""WebSocket fan-out of peer discovered/lost events."""

import asyncio
import json
import logging

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class PeerEventHub:
    """
    Pushes peer events to every subscribed WebSocket.

    A new subscriber first receives a "peers" frame with the current
    snapshot, then "peer_discovered" / "peer_lost" frames as they happen.
    """

    def __init__(self) -> None:
        self._subscribers: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self, websocket: WebSocket, peers: list) -> None:
        await websocket.accept()
        await websocket.send_text(_frame("peers", [p.model_dump() for p in peers]))
        async with self._lock:
            self._subscribers.add(websocket)
        logger.info(f"Peer event subscriber added ({len(self._subscribers)} listening)")

    async def unsubscribe(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._subscribers.discard(websocket)
        logger.info(f"Peer event subscriber removed ({len(self._subscribers)} listening)")

    async def publish(self, event: str, data) -> None:
        """Send one frame to all subscribers; any that fail are dropped."""
        message = _frame(event, data)
        async with self._lock:
            targets = list(self._subscribers)

        results = await asyncio.gather(
            *(ws.send_text(message) for ws in targets), return_exceptions=True
        )
        failed = [ws for ws, result in zip(targets, results) if isinstance(result, Exception)]
        if failed:
            async with self._lock:
                self._subscribers.difference_update(failed)
            logger.debug(f"Dropped {len(failed)} unreachable subscriber(s) on {event}")

    async def handle_peer_event(self, event: str, peer) -> None:
        """Callback compatible with LanDiscovery.on_peer_change()."""
        await self.publish(event, peer.model_dump())


def _frame(event: str, data) -> str:
    return json.dumps({"event": event, "data": data})
