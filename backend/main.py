"""
DirectDrop FastAPI application entry point.

Creates the signaling store and Transfer Manager, serves the REST API,
the signaling rendezvous routes and the WebSocket event stream.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from api.routes import init_routes, router
from api.websocket import EventBroadcaster
from config import API_HOST, API_PORT, SIGNAL_DIR, SIGNAL_URL
from signaling.http import HttpSignalingStore
from signaling.store import FileSignalingStore, SignalingStore
from transfer.manager import TransferManager

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_signal_store() -> SignalingStore:
    """Remote rendezvous when DIRECTDROP_SIGNAL_URL is set, else a local directory."""
    if SIGNAL_URL:
        logger.info(f"Using remote signaling store at {SIGNAL_URL}")
        return HttpSignalingStore(SIGNAL_URL)
    logger.info(f"Using local signaling store in {SIGNAL_DIR}")
    return FileSignalingStore(SIGNAL_DIR)


# --- Service singletons ---
signal_store = build_signal_store()
# The rendezvous routes always serve local entries so peers can point
# DIRECTDROP_SIGNAL_URL at this instance
local_signals = signal_store if not SIGNAL_URL else FileSignalingStore(SIGNAL_DIR)
transfer_manager = TransferManager(signal_store)
events = EventBroadcaster()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire events on startup, tear down the session on shutdown."""
    logger.info("Starting DirectDrop services...")
    transfer_manager.on_event(events.handle_event)
    logger.info(f"DirectDrop ready. API: {API_HOST}:{API_PORT}")
    try:
        yield
    finally:
        logger.info("Shutting down DirectDrop services...")
        await transfer_manager.stop()


# --- FastAPI app ---
app = FastAPI(
    title="DirectDrop",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173", "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Inject services into routes
init_routes(transfer_manager, local_signals)
app.include_router(router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await events.serve(websocket)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )
