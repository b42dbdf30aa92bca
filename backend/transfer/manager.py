"""
Transfer Manager: orchestrates one peer session for the service.

Owns the negotiator and engine for the current session, runs the host's
answer polling and outgoing sends as background tasks, tracks transfer
state, and fans events out to registered callbacks.
"""

import asyncio
import logging
import os
import uuid
from pathlib import Path
from typing import Callable

from pydantic import BaseModel

from config import DEFAULT_SAVE_DIR
from errors import ChannelNotReady, NegotiationError, TransferError
from negotiation.negotiator import ConnectionNegotiator, Role
from signaling.store import SignalingStore
from transfer.engine import TransferEngine
from transfer.models import (
    OutgoingFile,
    ReceivedFile,
    TransferDirection,
    TransferInfo,
    TransferSettings,
    TransferState,
)
from transfer.sink import DirectorySink
from transport.base import ConnectionState, PeerTransport
from transport.session import TransportSession

logger = logging.getLogger(__name__)


class SessionStatus(BaseModel):
    """Snapshot of the current peer session."""
    code: str | None = None
    role: Role | None = None
    connection_state: ConnectionState | None = None
    polling: bool = False


class TransferManager:
    """Manages the active peer session and its file transfers."""

    def __init__(
        self,
        store: SignalingStore,
        transport_factory: Callable[[], PeerTransport] | None = None,
        settings: TransferSettings | None = None,
        save_dir: str = DEFAULT_SAVE_DIR,
        negotiator_options: dict | None = None,
    ) -> None:
        self._store = store
        self._transport_factory = transport_factory
        self._settings = settings or TransferSettings()
        self._negotiator_options = negotiator_options or {}
        self._save_dir = save_dir
        self._negotiator: ConnectionNegotiator | None = None
        self._engine: TransferEngine | None = None
        self._complete_task: asyncio.Task | None = None
        self._transfers: dict[str, TransferInfo] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()
        self._event_callbacks: list = []  # async fn(event_type, data)

    @property
    def save_dir(self) -> str:
        return self._save_dir

    @save_dir.setter
    def save_dir(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)
        self._save_dir = path

    @property
    def engine(self) -> TransferEngine | None:
        return self._engine

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str, data: dict) -> None:
        """Emit an event to all registered callbacks."""
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    def _new_negotiator(self) -> ConnectionNegotiator:
        options = dict(self._negotiator_options)
        if self._transport_factory is not None:
            options["transport_factory"] = self._transport_factory
        return ConnectionNegotiator(self._store, **options)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def host(self) -> str:
        """Start hosting a session; returns the code to share."""
        await self.disconnect()
        negotiator = self._new_negotiator()
        code = await negotiator.create_connection()
        self._negotiator = negotiator
        self._attach(negotiator.session)
        self._complete_task = asyncio.create_task(self._complete_connection(negotiator))
        await self._emit("notification", {
            "type": "info",
            "message": f"Share this code: {code}",
        })
        return code

    async def _complete_connection(self, negotiator: ConnectionNegotiator) -> None:
        try:
            await negotiator.complete_connection()
        except Exception as e:
            if self._negotiator is not negotiator:
                # Replaced or disconnected while polling
                return
            logger.warning(
                f"Hosted session {negotiator.code} failed: {e}",
                exc_info=not isinstance(e, NegotiationError),
            )
            await self._emit("notification", {"type": "error", "message": str(e)})
            # The code is spent; a fresh host() issues a new one
            await self.disconnect()
        finally:
            if self._complete_task is asyncio.current_task():
                self._complete_task = None

    async def join(self, code: str) -> None:
        """Join a hosted session. Raises InvalidCode / MalformedSignal."""
        await self.disconnect()
        negotiator = self._new_negotiator()
        session = await negotiator.join_connection(code)
        self._negotiator = negotiator
        self._attach(session)
        await self._emit("notification", {
            "type": "info",
            "message": f"Joined session {negotiator.code}",
        })

    def _attach(self, session: TransportSession) -> None:
        self._engine = TransferEngine(
            session, settings=self._settings, sink=self._save_to_disk
        )
        self._engine.on_connection_state_change(self._on_connection_state)
        self._engine.on_file_received(self._on_file_received)

    async def _save_to_disk(self, received: ReceivedFile) -> Path:
        return await DirectorySink(self._save_dir)(received)

    async def disconnect(self) -> None:
        """Cancel sends, stop polling, close the channel and clean the store."""
        for task in list(self._tasks.values()):
            task.cancel()
        self._tasks.clear()

        negotiator, self._negotiator = self._negotiator, None
        self._engine = None
        if self._complete_task is not None and self._complete_task is not asyncio.current_task():
            self._complete_task.cancel()
        self._complete_task = None
        if negotiator is not None:
            await negotiator.teardown()

    async def stop(self) -> None:
        await self.disconnect()
        await self._store.close()
        logger.info("Transfer manager stopped")

    def status(self) -> SessionStatus:
        if self._negotiator is None:
            return SessionStatus()
        session = self._negotiator.session
        return SessionStatus(
            code=self._negotiator.code,
            role=self._negotiator.role,
            connection_state=session.state if session else None,
            polling=self._negotiator.is_polling,
        )

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def get_transfers(self) -> list[TransferInfo]:
        """Return all transfers."""
        return list(self._transfers.values())

    async def send(self, file_path: str) -> TransferInfo:
        """Queue a file to send to the connected peer."""
        engine = self._engine
        if engine is None or not engine.session.is_open:
            raise ChannelNotReady()

        outgoing = await asyncio.to_thread(OutgoingFile.from_path, file_path)
        info = TransferInfo(
            transfer_id=str(uuid.uuid4()),
            file_name=outgoing.name,
            file_size=outgoing.size,
            media_type=outgoing.media_type,
            direction=TransferDirection.SENDING,
        )
        async with self._lock:
            self._transfers[info.transfer_id] = info

        task = asyncio.create_task(self._send_file_task(engine, outgoing, info))
        self._tasks[info.transfer_id] = task
        await self._emit("transfer_state", info.model_dump(mode="json"))
        return info

    async def _send_file_task(
        self, engine: TransferEngine, outgoing: OutgoingFile, info: TransferInfo
    ) -> None:
        """Task wrapper for sending a single file."""

        async def on_progress(percent: float) -> None:
            info.progress_percent = percent
            await self._emit("transfer_progress", info.model_dump(mode="json"))

        try:
            info.state = TransferState.TRANSFERRING
            await self._on_state_change(info)
            result = await engine.send_file(
                outgoing, on_progress=on_progress, transfer_id=info.transfer_id
            )
            info = info.model_copy(update=result.model_dump(exclude={"transfer_id"}))
        except TransferError as e:
            info.state = TransferState.FAILED
            info.error_message = str(e)
        except Exception as e:
            logger.error(f"Send task for {info.file_name} crashed: {e}", exc_info=True)
            info.state = TransferState.FAILED
            info.error_message = str(e)
        except asyncio.CancelledError:
            info.state = TransferState.CANCELLED
        finally:
            self._tasks.pop(info.transfer_id, None)
        await self._on_state_change(info)

    async def cancel_transfer(self, transfer_id: str) -> None:
        """Cancel an outgoing transfer. The receiver is not notified."""
        task = self._tasks.pop(transfer_id, None)
        if task:
            task.cancel()

    # ------------------------------------------------------------------
    # Engine observers
    # ------------------------------------------------------------------

    async def _on_connection_state(self, state: ConnectionState) -> None:
        await self._emit("connection_state", {"state": state.value})
        if state == ConnectionState.OPEN:
            await self._emit("notification", {
                "type": "success",
                "message": "Connected to peer device",
            })

    async def _on_file_received(self, received: ReceivedFile) -> None:
        info = TransferInfo(
            transfer_id=str(uuid.uuid4()),
            file_name=received.name,
            file_size=received.size,
            media_type=received.media_type,
            direction=TransferDirection.RECEIVING,
            state=TransferState.COMPLETED,
            transferred_bytes=received.size,
            progress_percent=100.0,
        )
        async with self._lock:
            self._transfers[info.transfer_id] = info
        await self._emit("file_received", {
            **info.model_dump(mode="json"),
            "saved_path": str(received.saved_path) if received.saved_path else None,
        })
        await self._emit("notification", {
            "type": "success",
            "message": f"Received {received.name}",
        })

    async def _on_state_change(self, info: TransferInfo) -> None:
        async with self._lock:
            self._transfers[info.transfer_id] = info
        await self._emit("transfer_state", info.model_dump(mode="json"))

        # Generate user-facing notifications
        notification = None
        if info.state == TransferState.COMPLETED:
            notification = {
                "type": "success",
                "message": f"'{info.file_name}' sent successfully!",
            }
        elif info.state == TransferState.FAILED:
            notification = {
                "type": "error",
                "message": f"Transfer of '{info.file_name}' failed: {info.error_message}",
            }
        elif info.state == TransferState.CANCELLED:
            notification = {
                "type": "info",
                "message": f"Transfer of '{info.file_name}' cancelled.",
            }

        if notification:
            await self._emit("notification", notification)
