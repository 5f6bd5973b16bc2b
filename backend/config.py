"""Application-wide configuration constants."""

import os
import platform

# --- Identity ---
# Default to hostname, user can override
DEVICE_NAME = os.environ.get("LAN_DISCOVERY_NAME") or platform.node() or "Player"
SERVICE_PORT = 8080  # port announced to peers, the service itself lives elsewhere

# --- Multicast ---
MULTICAST_ADDR = "239.255.255.250"
MULTICAST_PORT = 9999
MULTICAST_TTL = 1  # link-local only, never routed
RECV_BUFFER_SIZE = 4096

# --- Timing (seconds) ---
ANNOUNCE_INTERVAL = 2.0
PEER_TIMEOUT = 2.0  # staleness window before a peer is dropped
EXPIRY_INTERVAL = 3.0

# --- HTTP ---
API_HOST = "127.0.0.1"
API_PORT = 8765
