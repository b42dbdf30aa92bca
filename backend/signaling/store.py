"""
Signaling stores: shared, poll-able key/value namespaces.

The negotiator only needs put/get/delete by key. Each key has exactly
one writer role (the host writes offers, the joiner writes answers),
so none of these stores lock across processes.
"""

import asyncio
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from errors import SignalingUnavailable

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class SignalingStore(ABC):
    """
    Async key/value contract used for descriptor exchange.

    Backend failures surface as SignalingUnavailable.
    """

    @abstractmethod
    async def put(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None when the key is absent."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key. Deleting an absent key is not an error."""

    async def close(self) -> None:
        """Release any held resources."""


class InMemorySignalingStore(SignalingStore):
    """Process-local store. Also backs the /api/signals routes."""

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}

    async def put(self, key: str, value: Any) -> None:
        self._entries[key] = value

    async def get(self, key: str) -> Any | None:
        return self._entries.get(key)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._entries)


class FileSignalingStore(SignalingStore):
    """
    One JSON file per key inside a directory.

    Lets two processes on the same machine (or on a shared folder)
    rendezvous without a server.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def _path_for(self, key: str) -> Path:
        safe = _UNSAFE_KEY_CHARS.sub("_", key)
        if not safe.strip("."):
            raise ValueError(f"Invalid signaling key: {key!r}")
        return self._directory / f"{safe}.json"

    def _write(self, path: Path, payload: str) -> None:
        os.makedirs(self._directory, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(payload, encoding="utf-8")
        # Readers polling the key never observe a half-written entry
        os.replace(tmp, path)

    def _read(self, path: Path) -> Any | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Signaling entry {path.name} is not valid JSON")
            return raw

    async def put(self, key: str, value: Any) -> None:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(self._write, path, json.dumps(value))
        except OSError as e:
            raise SignalingUnavailable(key, str(e)) from e

    async def get(self, key: str) -> Any | None:
        path = self._path_for(key)
        try:
            return await asyncio.to_thread(self._read, path)
        except OSError as e:
            raise SignalingUnavailable(key, str(e)) from e

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise SignalingUnavailable(key, str(e)) from e
