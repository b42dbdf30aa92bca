"""Persist reconstructed files to a local directory."""

import asyncio
import logging
import os
from pathlib import Path

from transfer.models import ReceivedFile

logger = logging.getLogger(__name__)

FALLBACK_NAME = "received.bin"


def safe_file_name(name: str) -> str:
    """Drop any directory components a peer put in the file name."""
    base = os.path.basename(name.replace("\\", "/")).strip()
    if base in ("", ".", ".."):
        return FALLBACK_NAME
    return base


class DirectorySink:
    """async (ReceivedFile) -> Path. Never overwrites an existing file."""

    def __init__(self, save_dir: str | Path) -> None:
        self.save_dir = Path(save_dir)

    def _unique_path(self, name: str) -> Path:
        candidate = self.save_dir / name
        stem, suffix = candidate.stem, candidate.suffix
        counter = 1
        while candidate.exists():
            candidate = self.save_dir / f"{stem} ({counter}){suffix}"
            counter += 1
        return candidate

    def _write(self, received: ReceivedFile) -> Path:
        os.makedirs(self.save_dir, exist_ok=True)
        path = self._unique_path(safe_file_name(received.name))
        # "xb" guards the window between exists() and open()
        with open(path, "xb") as f:
            f.write(received.data)
        return path

    async def __call__(self, received: ReceivedFile) -> Path:
        path = await asyncio.to_thread(self._write, received)
        logger.info(f"Saved '{received.name}' ({received.size} bytes) to {path}")
        return path
