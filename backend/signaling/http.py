"""Signaling store client for another instance's /api/signals routes."""

import logging
from typing import Any
from urllib.parse import quote

import httpx

from errors import SignalingUnavailable
from signaling.store import SignalingStore

logger = logging.getLogger(__name__)


class HttpSignalingStore(SignalingStore):
    """Remote rendezvous over HTTP. A 404 on GET means the key is absent."""

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout, connect=5.0),
        )

    @staticmethod
    def _endpoint(key: str) -> str:
        return f"/api/signals/{quote(key, safe='')}"

    async def put(self, key: str, value: Any) -> None:
        try:
            response = await self._client.put(self._endpoint(key), json=value)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SignalingUnavailable(key, repr(e)) from e

    async def get(self, key: str) -> Any | None:
        try:
            response = await self._client.get(self._endpoint(key))
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SignalingUnavailable(key, repr(e)) from e
        return response.json().get("value")

    async def delete(self, key: str) -> None:
        try:
            response = await self._client.delete(self._endpoint(key))
            if response.status_code != 404:
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise SignalingUnavailable(key, repr(e)) from e

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpSignalingStore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
