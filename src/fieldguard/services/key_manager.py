# Manage the lifecycle of the user's keypair (create, lock/unlock, rotate, backup, sync).
from __future__ import annotations

import asyncio
from typing import Dict, Optional

import structlog

from ..config import CryptoDefaults, KdfConfig
from ..crypto.asymmetric import RsaKeyPair, generate_key_pair
from ..crypto.hasher import fingerprint as compute_fingerprint
from ..crypto.vault import PrivateKeyVault
from ..exceptions import (
    CryptoError,
    FieldGuardError,
    KeyAlreadyExists,
    NoKeyMaterial,
    ServerSyncFailure,
    StorageError,
    Unauthorized,
)
from ..models import KeyState, KeyStatus, ServerKeyRecord, ServerKeyState, StoredKeyRecord
from ..storage.keystore import WRAPPED_PRIVATE_KEY, KeyStorage, read_record, write_record
from ..sync.client import KeyServerApi
from ..utils import b64d, b64e, utc_now_iso
from .backup import BackupCodec

logger = structlog.get_logger(__name__)


class KeyManager:
    """Owns persisted key material and the NoKeyPair/Locked/Unlocked state machine.

    Local storage is authoritative. Server pushes happen after the local write
    and never roll it back. The plaintext private key lives only on this
    instance, between a successful unlock and the next ``lock()``. Every
    mutating call runs under one ``asyncio.Lock`` so overlapping UI triggers
    are serialized.
    """

    def __init__(
        self,
        storage: KeyStorage,
        server: KeyServerApi | None = None,
        *,
        kdf: KdfConfig | None = None,
        crypto: CryptoDefaults | None = None,
    ) -> None:
        self._storage = storage
        self._server = server
        self._crypto = crypto or CryptoDefaults()
        self._vault = PrivateKeyVault(kdf)
        self._backup = BackupCodec(self._vault)
        self._mutex = asyncio.Lock()
        self._public_key: Optional[str] = None
        self._private_key: Optional[str] = None

    # ----- Queries -----
    @property
    def state(self) -> KeyState:
        if not self.has_stored_key_pair():
            return KeyState.NO_KEY_PAIR
        return KeyState.UNLOCKED if self._private_key is not None else KeyState.LOCKED

    def has_stored_key_pair(self) -> bool:
        return read_record(self._storage) is not None

    def get_status(self) -> KeyStatus:
        record = read_record(self._storage)
        return KeyStatus(
            has_key_pair=record is not None,
            is_locked=self._private_key is None,
            fingerprint=(record.fingerprint or None) if record else None,
            created_at=(record.created_at or None) if record else None,
        )

    def is_unlocked(self) -> bool:
        return self._private_key is not None

    def get_public_key(self) -> Optional[str]:
        if self._public_key:
            return self._public_key
        record = read_record(self._storage)
        return record.public_key if record else None

    def get_private_key(self) -> str:
        if self._private_key is None:
            raise NoKeyMaterial("Private key is locked")
        return self._private_key

    def get_fingerprint(self) -> Optional[str]:
        record = read_record(self._storage)
        return (record.fingerprint or None) if record else None

    def public_key_for_server(self) -> Optional[Dict[str, str]]:
        public_key = self.get_public_key()
        if not public_key:
            return None
        return {"publicKey": public_key, "fingerprint": self.get_fingerprint() or ""}

    async def check_server_key(self) -> ServerKeyState:
        if self._server is None:
            return ServerKeyState.ABSENT
        try:
            present = await self._server.status()
        except Unauthorized:
            return ServerKeyState.UNAUTHORIZED
        except ServerSyncFailure as exc:
            logger.warning("server_key_probe_failed", error=str(exc))
            return ServerKeyState.ABSENT
        return ServerKeyState.PRESENT if present else ServerKeyState.ABSENT

    # ----- Lifecycle -----
    async def initialize(self, password: str | None = None) -> KeyStatus:
        """Prefer the local key; fall back to pulling the server copy."""
        if self.has_stored_key_pair():
            if password:
                await self.unlock(password)
        elif password:
            await self.sync_from_server(password)
        return self.get_status()

    async def generate_and_store(self, password: str) -> KeyStatus:
        if not password:
            raise ValueError("password must be non-empty")
        async with self._mutex:
            if self.has_stored_key_pair():
                raise KeyAlreadyExists("A keypair is already stored; delete it first")
            logger.info("key_pair_generation_started", bits=self._crypto.rsa_key_size)
            key_pair = await asyncio.to_thread(generate_key_pair, self._crypto.rsa_key_size)
            wrapped = await asyncio.to_thread(self._vault.wrap_token, b64d(key_pair.private_key), password)
            write_record(
                self._storage,
                StoredKeyRecord(
                    public_key=key_pair.public_key,
                    wrapped_private_key=wrapped,
                    fingerprint=key_pair.fingerprint,
                    created_at=utc_now_iso(),
                ),
            )
            self._public_key = key_pair.public_key
            self._private_key = key_pair.private_key
            logger.info("key_pair_stored", fingerprint=key_pair.fingerprint)
        await self.sync_to_server()
        return self.get_status()

    async def unlock(self, password: str) -> bool:
        async with self._mutex:
            try:
                record = read_record(self._storage)
                if record is None:
                    logger.warning("unlock_without_key_pair")
                    return False
                private_key = await asyncio.to_thread(self._open, record, password)
            except FieldGuardError as exc:
                logger.warning("unlock_failed", reason=type(exc).__name__)
                return False
            self._public_key = record.public_key
            self._private_key = private_key
            logger.info("key_unlocked", fingerprint=record.fingerprint)
            return True

    async def lock(self) -> None:
        async with self._mutex:
            self._private_key = None
            logger.info("key_locked")

    async def sync_from_server(self, password: str) -> bool:
        if self._server is None:
            logger.info("sync_from_server_skipped", reason="no server configured")
            return False
        async with self._mutex:
            try:
                remote = await self._server.retrieve()
                if remote is None:
                    logger.info("server_has_no_key")
                    return False
                record = StoredKeyRecord(
                    public_key=remote.public_key,
                    wrapped_private_key=remote.wrapped_private_key,
                    fingerprint=remote.fingerprint or compute_fingerprint(remote.public_key),
                    created_at=utc_now_iso(),
                )
                private_key = await asyncio.to_thread(self._open, record, password)
                write_record(self._storage, record)
            except FieldGuardError as exc:
                logger.warning("sync_from_server_failed", reason=type(exc).__name__)
                return False
            self._public_key = record.public_key
            self._private_key = private_key
            logger.info("sync_from_server_succeeded", fingerprint=record.fingerprint)
            return True

    async def sync_to_server(self) -> bool:
        if self._server is None:
            logger.debug("sync_to_server_skipped", reason="no server configured")
            return False
        try:
            record = read_record(self._storage)
            if record is None:
                logger.warning("sync_to_server_without_key_pair")
                return False
            await self._server.store(
                ServerKeyRecord(
                    public_key=record.public_key,
                    wrapped_private_key=record.wrapped_private_key,
                    fingerprint=record.fingerprint,
                )
            )
        except (ServerSyncFailure, StorageError) as exc:
            logger.warning("sync_to_server_failed", reason=type(exc).__name__, error=str(exc))
            return False
        logger.info("sync_to_server_succeeded")
        return True

    async def change_password(self, old_password: str, new_password: str) -> bool:
        if not new_password:
            raise ValueError("new password must be non-empty")
        async with self._mutex:
            try:
                record = read_record(self._storage)
                if record is None:
                    logger.warning("change_password_without_key_pair")
                    return False
                private_key = await asyncio.to_thread(self._open, record, old_password)
                rewrapped = await asyncio.to_thread(self._vault.wrap_token, b64d(private_key), new_password)
                self._storage.set_many({WRAPPED_PRIVATE_KEY: rewrapped})
            except FieldGuardError as exc:
                logger.warning("change_password_failed", reason=type(exc).__name__)
                return False
            logger.info("password_changed")
        # local copy stays valid even if this push fails
        await self.sync_to_server()
        return True

    async def export_backup(self, password: str) -> str:
        record = read_record(self._storage)
        if record is None:
            raise NoKeyMaterial("No keypair to export")
        token = await asyncio.to_thread(self._backup.encode, record, password)
        logger.info("backup_exported", fingerprint=record.fingerprint)
        return token

    async def import_backup(self, blob: str, password: str) -> KeyStatus:
        """Restore a backup; the key stays locked behind its own unlock password.

        Raises ``MalformedBackup`` before any decryption when the blob's shape,
        marker or version is wrong, and ``InvalidPassword`` when the backup
        password does not open it.
        """
        async with self._mutex:
            record = await asyncio.to_thread(self._backup.decode, blob, password)
            if not record.fingerprint:
                record = StoredKeyRecord(
                    public_key=record.public_key,
                    wrapped_private_key=record.wrapped_private_key,
                    fingerprint=compute_fingerprint(record.public_key),
                    created_at=record.created_at,
                )
            write_record(self._storage, record)
            self._public_key = record.public_key
            self._private_key = None
            logger.info("backup_imported", fingerprint=record.fingerprint)
        await self.sync_to_server()
        return self.get_status()

    async def delete_key_pair(self) -> None:
        async with self._mutex:
            self._storage.clear()
            self._public_key = None
            self._private_key = None
            logger.warning("key_pair_deleted", destructive=True)
        if self._server is None:
            return
        try:
            await self._server.delete()
        except ServerSyncFailure as exc:
            logger.warning("server_key_delete_failed", reason=type(exc).__name__, error=str(exc))

    # ----- Internals -----
    def _open(self, record: StoredKeyRecord, password: str) -> str:
        """Unwrap and check that the private half matches the stored public key."""
        private_key = b64e(self._vault.unwrap_token(record.wrapped_private_key, password))
        pair = RsaKeyPair.from_private(private_key)
        try:
            stored_public = b64d(record.public_key)
        except ValueError as exc:
            raise CryptoError("Stored public key is not base64") from exc
        if b64d(pair.public_b64()) != stored_public:
            raise CryptoError("Unwrapped private key does not match the stored public key")
        return private_key


__all__ = ["KeyManager"]
