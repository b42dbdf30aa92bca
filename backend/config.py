"""Application-wide configuration constants."""

import os
from pathlib import Path

# --- Identity ---
APP_ID = "directdrop-v1"

# --- Networking ---
API_HOST = os.getenv("DIRECTDROP_API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("DIRECTDROP_API_PORT", "8765"))
TRANSPORT_BIND_HOST = os.getenv("DIRECTDROP_BIND_HOST", "0.0.0.0")
# Address the joiner is told to dial; must be reachable from the peer
TRANSPORT_ADVERTISE_HOST = os.getenv("DIRECTDROP_ADVERTISE_HOST", "127.0.0.1")
CONNECT_TIMEOUT = float(os.getenv("DIRECTDROP_CONNECT_TIMEOUT", "10"))  # seconds

# --- Signaling ---
SIGNAL_KEY_PREFIX = "p2p"
SIGNAL_URL = os.getenv("DIRECTDROP_SIGNAL_URL", "")  # empty = local directory store
SESSION_CODE_LENGTH = 6
POLL_INTERVAL = float(os.getenv("DIRECTDROP_POLL_INTERVAL", "1"))  # seconds
NEGOTIATION_TIMEOUT = float(os.getenv("DIRECTDROP_NEGOTIATION_TIMEOUT", "60"))  # seconds

# --- Transfer ---
CHUNK_SIZE = int(os.getenv("DIRECTDROP_CHUNK_SIZE", "16384"))  # 16 KB
BUFFER_THRESHOLD_CHUNKS = 10  # pause sending above this many chunks in flight
BACKPRESSURE_INTERVAL = 0.01  # seconds
CHUNK_DELAY = float(os.getenv("DIRECTDROP_CHUNK_DELAY", "0"))  # seconds
HANDSHAKE_TIMEOUT = float(os.getenv("DIRECTDROP_HANDSHAKE_TIMEOUT", "30"))  # seconds

# --- Storage ---
CONFIG_DIR = Path(os.getenv("DIRECTDROP_CONFIG_DIR", str(Path.home() / ".directdrop")))
SIGNAL_DIR = CONFIG_DIR / "signals"
DEFAULT_SAVE_DIR = str(
    Path.home() / "Downloads" / "DirectDrop"
)
