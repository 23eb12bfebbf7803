"""Build the per-session object graph.

One :class:`Session` owns exactly one :class:`KeyManager`; hand it to
whatever needs encryption instead of reaching for module state.
"""
from __future__ import annotations

from dataclasses import dataclass

import httpx

from .config import AppConfig
from .services.field_cipher import FieldCipher
from .services.field_sets import FieldSetRegistry
from .services.key_manager import KeyManager
from .services.records import RecordEncryptionService
from .storage.keystore import KeyStorage, build_storage
from .sync.client import KeyServerClient


@dataclass(slots=True)
class Session:
    config: AppConfig
    storage: KeyStorage
    server: KeyServerClient | None
    keys: KeyManager
    cipher: FieldCipher
    records: RecordEncryptionService

    async def aclose(self) -> None:
        await self.keys.lock()
        if self.server is not None:
            await self.server.aclose()

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def build_session(
    config: AppConfig | None = None,
    *,
    storage: KeyStorage | None = None,
    http_client: httpx.AsyncClient | None = None,
    offline: bool = False,
) -> Session:
    cfg = config or AppConfig()
    store = storage if storage is not None else build_storage(cfg.storage)
    server = None if offline else KeyServerClient(cfg.server, client=http_client)
    keys = KeyManager(store, server, kdf=cfg.kdf, crypto=cfg.crypto)
    cipher = FieldCipher(cfg.crypto)
    records = RecordEncryptionService(keys, cipher, FieldSetRegistry(cfg.field_sets))
    return Session(config=cfg, storage=store, server=server, keys=keys, cipher=cipher, records=records)


__all__ = ["Session", "build_session"]
