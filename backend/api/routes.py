"""REST API routes for LAN discovery."""

import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.py at startup
_discovery_service = None


def init_routes(discovery_service) -> None:
    """Inject the discovery engine into the routes module."""
    global _discovery_service
    _discovery_service = discovery_service


def _require_discovery():
    if _discovery_service is None:
        raise HTTPException(status_code=503, detail="Discovery unavailable")
    return _discovery_service


@router.get("/peers")
async def list_peers():
    """Return list of discovered peers."""
    peers = await _require_discovery().get_peers()
    return {"peers": [p.model_dump() for p in peers]}


@router.get("/announcement")
async def get_announcement():
    announcement = await _require_discovery().get_announcement()
    return announcement.model_dump()


class AnnouncementBody(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    port: int | None = Field(default=None, ge=0, le=65535)


@router.put("/announcement")
async def update_announcement(body: AnnouncementBody):
    discovery = _require_discovery()
    announcement = await discovery.set_announcement(name=body.name, port=body.port)
    return announcement.model_dump()
