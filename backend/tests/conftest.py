"""
Shared pytest fixtures for DirectDrop tests.

Provides:
- Import path setup (backend/ holds top-level packages)
- Signaling stores
- Fast negotiation policy
- Loopback transport network
"""

import sys
from pathlib import Path

import pytest

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from loopback import LoopbackNetwork
from signaling.store import FileSignalingStore, InMemorySignalingStore
from transfer.models import TransferSettings


@pytest.fixture
def memory_store() -> InMemorySignalingStore:
    return InMemorySignalingStore()


@pytest.fixture
def file_store(tmp_path) -> FileSignalingStore:
    return FileSignalingStore(tmp_path / "signals")


@pytest.fixture
def network() -> LoopbackNetwork:
    return LoopbackNetwork()


@pytest.fixture
def fast_policy() -> dict:
    """Negotiator options scaled down from seconds to milliseconds."""
    return {"poll_interval": 0.01, "timeout": 0.2}


@pytest.fixture
def settings() -> TransferSettings:
    return TransferSettings(backpressure_interval=0.001, handshake_timeout=1.0)
