"""Async client for the remote key storage API.

The server only ever sees the public key, the password-wrapped private key
and the fingerprint. Session cookies, CSRF headers and retries belong to
whichever ``httpx.AsyncClient`` the application injects.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

import httpx
import structlog

from ..config import ServerConfig
from ..exceptions import ServerSyncFailure, Unauthorized
from ..models import ServerKeyRecord

logger = structlog.get_logger(__name__)


class KeyServerApi(Protocol):
    async def status(self) -> bool: ...

    async def retrieve(self) -> Optional[ServerKeyRecord]: ...

    async def store(self, record: ServerKeyRecord) -> None: ...

    async def delete(self) -> None: ...


class KeyServerClient:
    def __init__(self, cfg: ServerConfig | None = None, *, client: httpx.AsyncClient | None = None) -> None:
        self.cfg = cfg or ServerConfig()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self.cfg.base_url, timeout=self.cfg.timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "KeyServerClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def status(self) -> bool:
        body = await self._request("GET", self.cfg.status_path)
        return bool(_data(body).get("hasServerKey"))

    async def retrieve(self) -> Optional[ServerKeyRecord]:
        body = await self._request("GET", self.cfg.retrieve_path, allow_missing=True)
        if body is None:
            return None
        return ServerKeyRecord.from_payload(_data(body))

    async def store(self, record: ServerKeyRecord) -> None:
        await self._request("POST", self.cfg.store_path, json=record.to_payload())

    async def delete(self) -> None:
        await self._request("DELETE", self.cfg.delete_path, allow_missing=True)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Dict[str, Any] | None = None,
        allow_missing: bool = False,
    ) -> Optional[Dict[str, Any]]:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            raise ServerSyncFailure(f"{method} {path} failed: {type(exc).__name__}") from exc

        if response.status_code == 401:
            raise Unauthorized(f"{method} {path} rejected the current session")
        if response.status_code == 404 and allow_missing:
            return None
        if response.is_error:
            raise ServerSyncFailure(f"{method} {path} returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:
            raise ServerSyncFailure(f"{method} {path} returned a non-JSON body") from exc
        if not isinstance(body, dict) or body.get("success") is False:
            raise ServerSyncFailure(f"{method} {path} reported failure")
        logger.debug("key_api_response", method=method, path=path, status=response.status_code)
        return body


def _data(body: Dict[str, Any]) -> Dict[str, Any]:
    data = body.get("data")
    return data if isinstance(data, dict) else {}


__all__ = ["KeyServerApi", "KeyServerClient"]
