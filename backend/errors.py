"""Exception hierarchy for negotiation and transfer failures."""


class DirectDropError(Exception):
    """Base class for all DirectDrop errors."""


# --- Signaling ---

class SignalingUnavailable(DirectDropError):
    """The signaling store could not be reached; the operation may be retried."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Signaling store unavailable for {key!r}: {reason}")
        self.key = key
        self.reason = reason


# --- Negotiation ---

class NegotiationError(DirectDropError):
    """A negotiation attempt failed; the caller may retry with a fresh code."""


class InvalidCode(NegotiationError):
    def __init__(self, code: str) -> None:
        super().__init__(f"No connection offer found for code {code!r}")
        self.code = code


class MalformedSignal(NegotiationError):
    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Malformed signaling entry at {key!r}: {reason}")
        self.key = key
        self.reason = reason


class NegotiationTimeout(NegotiationError):
    def __init__(self, code: str, timeout: float) -> None:
        super().__init__(f"No answer for code {code!r} within {timeout:g}s")
        self.code = code
        self.timeout = timeout


class NegotiationCancelled(NegotiationError):
    def __init__(self, code: str) -> None:
        super().__init__(f"Negotiation for code {code!r} was cancelled")
        self.code = code


# --- Transfer ---

class TransferError(DirectDropError):
    """The current file transfer failed; the session may still be usable."""


class ChannelNotReady(TransferError):
    def __init__(self, detail: str = "Data channel not ready") -> None:
        super().__init__(detail)


class HandshakeTimeout(TransferError):
    def __init__(self, timeout: float) -> None:
        super().__init__(f"Peer did not acknowledge file metadata within {timeout:g}s")
        self.timeout = timeout


class ChunkSendFailed(TransferError):
    def __init__(self, index: int, reason: str = "") -> None:
        message = f"Failed to send chunk {index}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.index = index


class ReconstructionMismatch(TransferError):
    """Received byte count disagrees with the declared file size."""

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(
            f"Declared size is {expected} bytes but {received} bytes arrived"
        )
        self.expected = expected
        self.received = received


# --- Wire ---

class MalformedMessage(ValueError):
    """A structured channel message could not be parsed."""
