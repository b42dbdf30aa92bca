"""REST API routes for DirectDrop."""

import logging
import os
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from errors import (
    ChannelNotReady,
    InvalidCode,
    MalformedSignal,
    NegotiationError,
    SignalingUnavailable,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# These will be injected by main.py at startup
_transfer_manager = None
_signal_store = None


def init_routes(transfer_manager, signal_store) -> None:
    """Inject service dependencies into the routes module."""
    global _transfer_manager, _signal_store
    _transfer_manager = transfer_manager
    _signal_store = signal_store


# --- Session ---

class JoinBody(BaseModel):
    code: str


@router.get("/session")
async def get_session():
    """Return the current session's code, role and connection state."""
    return _transfer_manager.status().model_dump(mode="json")


@router.post("/session/host")
async def host_session():
    """Publish an offer and return the code to share with the peer."""
    try:
        code = await _transfer_manager.host()
    except NegotiationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SignalingUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"code": code}


@router.post("/session/join")
async def join_session(body: JoinBody):
    try:
        await _transfer_manager.join(body.code)
    except InvalidCode as e:
        raise HTTPException(status_code=404, detail=str(e))
    except MalformedSignal as e:
        raise HTTPException(status_code=422, detail=str(e))
    except NegotiationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SignalingUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return _transfer_manager.status().model_dump(mode="json")


@router.delete("/session")
async def close_session():
    await _transfer_manager.disconnect()
    return {"status": "disconnected"}


# --- Transfers ---

class SendBody(BaseModel):
    file_path: str


@router.get("/transfers")
async def list_transfers():
    """Return all transfers (active + completed)."""
    transfers = _transfer_manager.get_transfers()
    return {"transfers": [t.model_dump(mode="json") for t in transfers]}


@router.post("/transfers")
async def create_transfer(body: SendBody):
    """Send a file from this machine's disk to the connected peer."""
    if not os.path.isfile(body.file_path):
        raise HTTPException(status_code=400, detail=f"Not a file: {body.file_path}")
    try:
        info = await _transfer_manager.send(body.file_path)
    except ChannelNotReady as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"transfer": info.model_dump(mode="json")}


@router.post("/transfers/{transfer_id}/cancel")
async def cancel_transfer(transfer_id: str):
    await _transfer_manager.cancel_transfer(transfer_id)
    return {"status": "cancelled"}


# --- Signaling rendezvous ---

@router.put("/signals/{key}")
async def put_signal(key: str, value: dict[str, Any]):
    try:
        await _signal_store.put(key, value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SignalingUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"status": "stored"}


@router.get("/signals/{key}")
async def get_signal(key: str):
    try:
        value = await _signal_store.get(key)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SignalingUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    if value is None:
        raise HTTPException(status_code=404, detail="No such signal")
    return {"key": key, "value": value}


@router.delete("/signals/{key}")
async def delete_signal(key: str):
    try:
        await _signal_store.delete(key)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SignalingUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"status": "deleted"}


# --- Settings ---

class SettingsBody(BaseModel):
    save_dir: str | None = None


@router.get("/settings")
async def get_settings():
    return {"save_dir": _transfer_manager.save_dir}


@router.put("/settings")
async def update_settings(body: SettingsBody):
    if body.save_dir is not None:
        try:
            _transfer_manager.save_dir = body.save_dir
        except OSError as e:
            raise HTTPException(
                status_code=400, detail=f"Invalid directory: {e}"
            )
    return {"status": "updated"}
