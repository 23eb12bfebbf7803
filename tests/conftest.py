from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fieldguard.config import KdfConfig, ServerConfig
from fieldguard.crypto.asymmetric import generate_key_pair
from fieldguard.models import KeyPair
from fieldguard.services.key_manager import KeyManager
from fieldguard.storage.keystore import MemoryKeyStorage
from fieldguard.sync.client import KeyServerClient

PASSWORD = "Tr0ub4dor&3"


class FakeKeyServer:
    """In-process stand-in for the key storage API"""

    def __init__(self) -> None:
        self.record: Optional[Dict[str, str]] = None
        self.authorized = True
        self.failing = False
        self.calls: List[Tuple[str, str]] = []
        self.app = self._build_app()

    def _refusal(self) -> Optional[JSONResponse]:
        if self.failing:
            return JSONResponse({"success": False, "error": {"code": "INTERNAL_ERROR"}}, status_code=500)
        if not self.authorized:
            return JSONResponse({"success": False, "error": {"code": "UNAUTHORIZED"}}, status_code=401)
        return None

    def _build_app(self) -> FastAPI:
        app = FastAPI()

        @app.get("/api/keys/status")
        async def status() -> Any:
            self.calls.append(("GET", "status"))
            refusal = self._refusal()
            if refusal is not None:
                return refusal
            return {"success": True, "data": {"hasServerKey": self.record is not None}}

        @app.get("/api/keys/retrieve")
        async def retrieve() -> Any:
            self.calls.append(("GET", "retrieve"))
            refusal = self._refusal()
            if refusal is not None:
                return refusal
            if self.record is None:
                return JSONResponse({"success": False, "error": {"code": "NOT_FOUND"}}, status_code=404)
            return {"success": True, "data": dict(self.record)}

        @app.post("/api/keys/store")
        async def store(request: Request) -> Any:
            self.calls.append(("POST", "store"))
            refusal = self._refusal()
            if refusal is not None:
                return refusal
            body = await request.json()
            if not body.get("publicKey") or not body.get("encryptedPrivateKey"):
                return JSONResponse({"success": False, "error": {"code": "INVALID_REQUEST"}}, status_code=400)
            self.record = {
                "publicKey": body["publicKey"],
                "encryptedPrivateKey": body["encryptedPrivateKey"],
                "keyFingerprint": body.get("keyFingerprint", ""),
            }
            return {"success": True, "data": {"message": "stored"}}

        @app.delete("/api/keys")
        async def delete() -> Any:
            self.calls.append(("DELETE", "keys"))
            refusal = self._refusal()
            if refusal is not None:
                return refusal
            self.record = None
            return {"success": True, "data": {"message": "deleted"}}

        return app

    def client(self) -> KeyServerClient:
        transport = httpx.ASGITransport(app=self.app)
        http = httpx.AsyncClient(transport=transport, base_url="http://testserver")
        return KeyServerClient(ServerConfig(base_url="http://testserver"), client=http)


@pytest.fixture(scope="session")
def key_pair() -> KeyPair:
    return generate_key_pair()


@pytest.fixture(scope="session")
def other_key_pair() -> KeyPair:
    return generate_key_pair()


@pytest.fixture()
def kdf() -> KdfConfig:
    return KdfConfig()


@pytest.fixture()
def fake_server() -> FakeKeyServer:
    return FakeKeyServer()


@pytest.fixture()
def storage() -> MemoryKeyStorage:
    return MemoryKeyStorage()


@pytest.fixture()
def manager(storage: MemoryKeyStorage, fake_server: FakeKeyServer, kdf: KdfConfig) -> KeyManager:
    return KeyManager(storage, fake_server.client(), kdf=kdf)
