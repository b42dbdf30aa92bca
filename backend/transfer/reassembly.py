"""Receiver-side transfer state: ordered chunk accumulation."""

from errors import ReconstructionMismatch
from transfer.models import FileMetadata, ReceivedFile


class ReassemblyBuffer:
    """
    Accumulates chunks for the active file in arrival order.

    The channel delivers in send order, so concatenation order is
    arrival order; no sequence numbers are involved.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._chunks: list[bytes] = []
        self._received = 0
        self._metadata: FileMetadata | None = None

    def start(self, metadata: FileMetadata) -> None:
        self.reset()
        self._metadata = metadata

    @property
    def metadata(self) -> FileMetadata | None:
        return self._metadata

    @property
    def active(self) -> bool:
        return self._metadata is not None

    @property
    def received_bytes(self) -> int:
        return self._received

    @property
    def chunk_total(self) -> int:
        return len(self._chunks)

    @property
    def remaining(self) -> int:
        if self._metadata is None:
            return 0
        return self._metadata.size - self._received

    @property
    def is_complete(self) -> bool:
        return (
            self._metadata is not None
            and self._metadata.size > 0
            and self._received >= self._metadata.size
        )

    def append(self, chunk: bytes) -> None:
        """Raises ReconstructionMismatch, without buffering, on overflow."""
        if self._metadata is None:
            raise RuntimeError("No active file to append to")
        if self._received + len(chunk) > self._metadata.size:
            raise ReconstructionMismatch(self._metadata.size, self._received + len(chunk))
        self._chunks.append(bytes(chunk))
        self._received += len(chunk)

    def build(self) -> ReceivedFile:
        if self._metadata is None:
            raise RuntimeError("No active file to build")
        return ReceivedFile(
            name=self._metadata.name,
            media_type=self._metadata.media_type,
            data=b"".join(self._chunks),
        )
