"""Pydantic models for file transfer."""

import asyncio
import mimetypes
import os
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from config import (
    BACKPRESSURE_INTERVAL,
    BUFFER_THRESHOLD_CHUNKS,
    CHUNK_DELAY,
    CHUNK_SIZE,
    HANDSHAKE_TIMEOUT,
)

DEFAULT_MEDIA_TYPE = "application/octet-stream"


class SendState(str, Enum):
    """Sender-side protocol states."""
    IDLE = "idle"
    AWAITING_METADATA_ACK = "awaiting-metadata-ack"
    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"


class ReceiveState(str, Enum):
    """Receiver-side protocol states. COMPLETE is transient: the engine
    emits the file and drops straight back to IDLE."""
    IDLE = "idle"
    RECEIVING = "receiving"
    COMPLETE = "complete"


class TransferState(str, Enum):
    """Lifecycle of one transfer as reported to observers."""
    PENDING = "pending"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TransferDirection(str, Enum):
    SENDING = "sending"
    RECEIVING = "receiving"


class TransferInfo(BaseModel):
    """Full state of a single file transfer, exposed to callers."""
    transfer_id: str
    file_name: str
    file_size: int
    media_type: str = DEFAULT_MEDIA_TYPE
    direction: TransferDirection
    state: TransferState = TransferState.PENDING
    transferred_bytes: int = 0
    chunks_sent: int = 0
    total_chunks: int = 0
    progress_percent: float = 0.0
    error_message: str | None = None


class FileMetadata(BaseModel):
    """Sent once per transfer, immediately before the chunk stream."""
    name: str
    size: int = Field(ge=0)
    media_type: str = ""


class TransferSettings(BaseModel):
    """Tunable sender policy. Defaults come from config."""
    chunk_size: int = Field(CHUNK_SIZE, gt=0)
    buffer_threshold_chunks: int = Field(BUFFER_THRESHOLD_CHUNKS, gt=0)
    backpressure_interval: float = Field(BACKPRESSURE_INTERVAL, gt=0)
    chunk_delay: float = Field(CHUNK_DELAY, ge=0)
    handshake_timeout: float | None = HANDSHAKE_TIMEOUT  # None waits until cancelled

    @property
    def buffer_threshold(self) -> int:
        return self.chunk_size * self.buffer_threshold_chunks


class OutgoingFile(BaseModel):
    """A file handle to send: either in memory or backed by a path."""
    name: str
    size: int = Field(ge=0)
    media_type: str = DEFAULT_MEDIA_TYPE
    path: Path | None = None
    content: bytes | None = None

    @classmethod
    def from_path(cls, path: str | Path) -> "OutgoingFile":
        path = Path(path)
        media_type, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            size=os.path.getsize(path),
            media_type=media_type or DEFAULT_MEDIA_TYPE,
            path=path,
        )

    @classmethod
    def from_bytes(
        cls, name: str, content: bytes, media_type: str = DEFAULT_MEDIA_TYPE
    ) -> "OutgoingFile":
        return cls(name=name, size=len(content), media_type=media_type, content=content)

    def metadata(self) -> FileMetadata:
        return FileMetadata(name=self.name, size=self.size, media_type=self.media_type)

    async def read(self) -> bytes:
        """Read the whole content once into a buffer of known length."""
        if self.content is not None:
            return self.content
        if self.path is None:
            raise ValueError(f"{self.name!r} has neither content nor a path")
        return await asyncio.to_thread(self.path.read_bytes)


class ReceivedFile(BaseModel):
    """A reconstructed file, tagged with the sender's name and media type."""
    name: str
    media_type: str = ""
    data: bytes
    saved_path: Path | None = None

    @property
    def size(self) -> int:
        return len(self.data)
