"""Pydantic models for out-of-band descriptor exchange."""

import time
from enum import Enum

from pydantic import BaseModel, Field

from config import SIGNAL_KEY_PREFIX


class SignalKind(str, Enum):
    """Which side of the negotiation wrote the entry."""
    OFFER = "offer"
    ANSWER = "answer"


class SignalRecord(BaseModel):
    """The value stored under a signaling key."""
    type: SignalKind
    data: str  # opaque descriptor produced by the transport
    timestamp: float = Field(default_factory=time.time)


def signal_key(code: str, kind: SignalKind) -> str:
    """Deterministic store key for one session code and one descriptor kind."""
    return f"{SIGNAL_KEY_PREFIX}_{SignalKind(kind).value}_{code.strip().upper()}"
