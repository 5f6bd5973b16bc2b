"""
LAN discovery: FastAPI application entry point.

Starts the discovery engine on startup and serves the peer list over
REST and WebSocket.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from api.routes import init_routes, router
from api.websocket import PeerEventHub
from config import API_HOST, API_PORT, DEVICE_NAME, SERVICE_PORT
from discovery.service import open_discovery

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

peer_events = PeerEventHub()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start/stop the discovery engine."""
    logger.info("Starting LAN discovery services...")

    discovery = open_discovery(SERVICE_PORT, DEVICE_NAME)
    try:
        discovery.on_peer_change(peer_events.handle_peer_event)
        await discovery.start()
        init_routes(discovery)
        app.state.discovery = discovery

        logger.info(
            f"LAN discovery ready. API: {API_HOST}:{API_PORT}, "
            f"announcing {DEVICE_NAME}:{SERVICE_PORT} from {discovery.local_ip}"
        )
        yield

    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        raise
    finally:
        logger.info("Shutting down LAN discovery services...")
        init_routes(None)
        app.state.discovery = None
        await discovery.stop()


app = FastAPI(
    title="LAN Discovery",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    discovery = getattr(app.state, "discovery", None)
    if discovery is None:
        await websocket.close(code=1013)  # try again later
        return

    await peer_events.subscribe(websocket, await discovery.get_peers())
    try:
        while True:
            # Keep the connection alive; we don't expect client messages
            await websocket.receive_text()
    except WebSocketDisconnect:
        await peer_events.unsubscribe(websocket)
    except Exception:
        await peer_events.unsubscribe(websocket)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )
