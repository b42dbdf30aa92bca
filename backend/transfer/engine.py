"""
Chunked file transfer over a TransportSession.

Send path:
    idle -> awaiting-metadata-ack -> streaming -> complete | failed

    file-info is sent as one text message; the chunk stream starts only
    after the peer answers "ready". Before each chunk the sender waits
    for the channel's buffered bytes to fall to the threshold.

Receive path (repeatable per file):
    idle -> receiving -> idle

    file-info resets the reassembly buffer and is acknowledged with
    "ready"; binary messages are appended in arrival order until the
    declared size is reached, then the file is rebuilt and emitted.
"""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Awaitable, Callable

from errors import (
    ChannelNotReady,
    ChunkSendFailed,
    HandshakeTimeout,
    MalformedMessage,
    ReconstructionMismatch,
    TransferError,
)
from transfer.chunking import chunk_count, iter_chunks
from transfer.messages import (
    FileInfoMessage,
    ReadyMessage,
    encode_control_message,
    parse_control_message,
)
from transfer.models import (
    OutgoingFile,
    ReceivedFile,
    ReceiveState,
    SendState,
    TransferDirection,
    TransferInfo,
    TransferSettings,
    TransferState,
)
from transfer.reassembly import ReassemblyBuffer
from transport.base import ConnectionState, Message
from transport.session import TransportSession

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], Awaitable[None]]
FileReceivedCallback = Callable[[ReceivedFile], Awaitable[None]]
ConnectionStateCallback = Callable[[ConnectionState], Awaitable[None]]
FileSink = Callable[[ReceivedFile], Awaitable[Path]]


class TransferEngine:
    """Runs the transfer handshake and chunk stream for one session."""

    def __init__(
        self,
        session: TransportSession,
        settings: TransferSettings | None = None,
        sink: FileSink | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or TransferSettings()
        self._sink = sink

        self._send_state = SendState.IDLE
        self._ready_waiter: asyncio.Future | None = None

        self._receive_state = ReceiveState.IDLE
        self._reassembly = ReassemblyBuffer()

        self._on_file_received: FileReceivedCallback | None = None
        self._on_connection_state: ConnectionStateCallback | None = None

        session.set_message_handler(self._handle_message)
        session.set_state_handler(self._handle_state_change)

    @property
    def session(self) -> TransportSession:
        return self._session

    @property
    def settings(self) -> TransferSettings:
        return self._settings

    @property
    def send_state(self) -> SendState:
        return self._send_state

    @property
    def receive_state(self) -> ReceiveState:
        return self._receive_state

    @property
    def reassembly(self) -> ReassemblyBuffer:
        return self._reassembly

    def on_file_received(self, callback: FileReceivedCallback | None) -> None:
        """Register the single observer: async fn(received_file)."""
        self._on_file_received = callback

    def on_connection_state_change(self, callback: ConnectionStateCallback | None) -> None:
        """Register the single observer: async fn(state)."""
        self._on_connection_state = callback

    # ------------------------------------------------------------------
    # Send path
    # ------------------------------------------------------------------

    async def send_file(
        self,
        file: OutgoingFile | str | Path,
        on_progress: ProgressCallback | None = None,
        transfer_id: str | None = None,
    ) -> TransferInfo:
        """
        Send one file to the peer.

        Args:
            file: An OutgoingFile, or a path to read from disk.
            on_progress: async fn(percent) called after every chunk.
            transfer_id: Optional id for the returned TransferInfo.

        Returns:
            The completed TransferInfo.

        Raises:
            ChannelNotReady, HandshakeTimeout, ChunkSendFailed. The engine
            is left in the failed state and can be used for another send.
        """
        if self._send_state in (SendState.AWAITING_METADATA_ACK, SendState.STREAMING):
            raise TransferError("A file is already being sent on this session")
        if not self._session.is_open:
            raise ChannelNotReady()

        if not isinstance(file, OutgoingFile):
            file = await asyncio.to_thread(OutgoingFile.from_path, file)
        metadata = file.metadata()

        info = TransferInfo(
            transfer_id=transfer_id or str(uuid.uuid4()),
            file_name=metadata.name,
            file_size=metadata.size,
            media_type=metadata.media_type,
            direction=TransferDirection.SENDING,
            total_chunks=chunk_count(metadata.size, self._settings.chunk_size),
        )

        logger.info(f"Starting file transfer: {metadata.name} ({metadata.size} bytes)")
        self._ready_waiter = asyncio.get_running_loop().create_future()
        try:
            self._send_state = SendState.AWAITING_METADATA_ACK
            try:
                self._session.send(
                    encode_control_message(FileInfoMessage.from_metadata(metadata))
                )
            except ConnectionError as e:
                raise ChannelNotReady(f"Could not send file metadata: {e}") from e

            await self._wait_for_ready()

            self._send_state = SendState.STREAMING
            info.state = TransferState.TRANSFERRING
            try:
                data = await file.read()
            except OSError as e:
                raise TransferError(f"Could not read {metadata.name!r}: {e}") from e
            if len(data) != metadata.size:
                raise TransferError(
                    f"{metadata.name!r} changed size while sending "
                    f"({metadata.size} -> {len(data)} bytes)"
                )

            await self._stream_chunks(data, info, on_progress)

            self._send_state = SendState.COMPLETE
            info.state = TransferState.COMPLETED
            info.progress_percent = 100.0
            logger.info(f"File transfer completed: {metadata.name}")
            return info

        except TransferError as e:
            self._send_state = SendState.FAILED
            info.state = TransferState.FAILED
            info.error_message = str(e)
            logger.error(f"Send error for {metadata.name}: {e}")
            raise
        except asyncio.CancelledError:
            self._send_state = SendState.FAILED
            info.state = TransferState.CANCELLED
            raise
        except Exception as e:
            self._send_state = SendState.FAILED
            info.state = TransferState.FAILED
            info.error_message = str(e)
            logger.error(f"Unexpected send error for {metadata.name}: {e}", exc_info=True)
            raise
        finally:
            if self._ready_waiter is not None and not self._ready_waiter.done():
                self._ready_waiter.cancel()
            self._ready_waiter = None

    async def _wait_for_ready(self) -> None:
        timeout = self._settings.handshake_timeout
        try:
            await asyncio.wait_for(asyncio.shield(self._ready_waiter), timeout=timeout)
        except asyncio.TimeoutError:
            raise HandshakeTimeout(timeout) from None

    async def _stream_chunks(
        self,
        data: bytes,
        info: TransferInfo,
        on_progress: ProgressCallback | None,
    ) -> None:
        chunk_size = self._settings.chunk_size

        if info.total_chunks == 0 and on_progress is not None:
            await on_progress(100.0)

        for index, chunk in enumerate(iter_chunks(data, chunk_size)):
            await self._wait_for_drain(index)
            try:
                self._session.send(chunk)
            except (ConnectionError, OSError) as e:
                raise ChunkSendFailed(index, str(e)) from e

            info.chunks_sent = index + 1
            info.transferred_bytes += len(chunk)
            info.progress_percent = info.chunks_sent / info.total_chunks * 100
            logger.debug(
                f"Sent chunk {info.chunks_sent}/{info.total_chunks} "
                f"- Progress: {info.progress_percent:.1f}%"
            )
            if on_progress is not None:
                await on_progress(info.progress_percent)

            if self._settings.chunk_delay > 0:
                await asyncio.sleep(self._settings.chunk_delay)

    async def _wait_for_drain(self, index: int) -> None:
        """Backpressure gate: hold the next chunk while the channel is saturated."""
        threshold = self._settings.buffer_threshold
        while self._session.buffered_amount > threshold:
            if not self._session.is_open:
                raise ChunkSendFailed(index, "channel closed while waiting to drain")
            await asyncio.sleep(self._settings.backpressure_interval)

    # ------------------------------------------------------------------
    # Receive path
    # ------------------------------------------------------------------

    async def _handle_message(self, message: Message) -> None:
        if isinstance(message, str):
            await self._handle_control(message)
        else:
            await self._handle_chunk(message)

    async def _handle_control(self, text: str) -> None:
        try:
            message = parse_control_message(text)
        except MalformedMessage as e:
            logger.warning(f"Ignoring malformed control message: {e}")
            return

        if isinstance(message, FileInfoMessage):
            await self._begin_receive(message)
        elif isinstance(message, ReadyMessage):
            if self._ready_waiter is not None and not self._ready_waiter.done():
                self._ready_waiter.set_result(True)
            else:
                logger.debug("Ignoring 'ready' with no send awaiting it")
        else:
            logger.warning(f"Ignoring control message of unknown type {message.type!r}")

    async def _begin_receive(self, message: FileInfoMessage) -> None:
        if self._receive_state == ReceiveState.RECEIVING:
            logger.warning(
                f"New file-info while receiving '{self._reassembly.metadata.name}'; "
                f"discarding {self._reassembly.received_bytes} buffered bytes"
            )
        metadata = message.to_metadata()
        self._reassembly.start(metadata)
        self._receive_state = ReceiveState.RECEIVING
        logger.info(f"Receiving file: {metadata.name} Size: {metadata.size}")

        if self._session.is_open:
            try:
                self._session.send(encode_control_message(ReadyMessage()))
            except ConnectionError as e:
                logger.warning(f"Could not acknowledge file-info: {e}")

        if metadata.size == 0:
            await self._finish_receive()

    async def _handle_chunk(self, chunk: bytes) -> None:
        if self._receive_state != ReceiveState.RECEIVING:
            logger.warning(f"Discarding {len(chunk)}-byte chunk: no active file-info")
            return

        try:
            self._reassembly.append(chunk)
        except ReconstructionMismatch as e:
            logger.warning(f"{e}; dropping the excess")
            self._reassembly.append(chunk[: self._reassembly.remaining])

        logger.debug(
            f"Received chunk: {len(chunk)} bytes. Total: "
            f"{self._reassembly.received_bytes} / {self._reassembly.metadata.size}"
        )
        if self._reassembly.is_complete:
            await self._finish_receive()

    async def _finish_receive(self) -> None:
        logger.info(f"Reconstructing file from {self._reassembly.chunk_total} chunks")
        self._receive_state = ReceiveState.COMPLETE
        received = self._reassembly.build()
        self._reassembly.reset()
        self._receive_state = ReceiveState.IDLE

        if self._sink is not None:
            try:
                received.saved_path = await self._sink(received)
            except OSError as e:
                logger.error(f"Could not save '{received.name}': {e}")

        if self._on_file_received is not None:
            try:
                await self._on_file_received(received)
            except Exception as e:
                logger.error(f"File received observer error: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Connection state
    # ------------------------------------------------------------------

    async def _handle_state_change(self, state: ConnectionState) -> None:
        if state == ConnectionState.CLOSED:
            if self._ready_waiter is not None and not self._ready_waiter.done():
                self._ready_waiter.set_exception(
                    ChannelNotReady("Channel closed before the peer was ready")
                )
            if self._receive_state == ReceiveState.RECEIVING:
                metadata = self._reassembly.metadata
                logger.warning(
                    f"Channel closed mid-transfer: "
                    f"{ReconstructionMismatch(metadata.size, self._reassembly.received_bytes)}"
                )

        if self._on_connection_state is not None:
            await self._on_connection_state(state)
