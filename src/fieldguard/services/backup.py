# Password-protected export/import of the stored keypair.
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet

from ..crypto.vault import PrivateKeyVault
from ..exceptions import MalformedBackup
from ..models import StoredKeyRecord, WrappedPrivateKey
from ..utils import b64d, b64e, pack_json, unpack_json, utc_now_iso

BACKUP_TYPE = "FIELDGUARD_KEY_BACKUP"
BACKUP_VERSION = "1.0"
SUPPORTED_VERSIONS: FrozenSet[str] = frozenset({BACKUP_VERSION})


@dataclass(slots=True, frozen=True)
class BackupBlob:
    type: str
    version: str
    salt: bytes
    iv: bytes
    data: bytes

    def to_token(self) -> str:
        return pack_json(
            {
                "type": self.type,
                "version": self.version,
                "salt": b64e(self.salt),
                "iv": b64e(self.iv),
                "data": b64e(self.data),
            }
        )


def parse_backup(token: str) -> BackupBlob:
    """Validate marker, version and shape without touching the ciphertext"""
    try:
        document = unpack_json(token.strip())
    except ValueError as exc:
        raise MalformedBackup("Backup is not a valid export document") from exc

    if document.get("type") != BACKUP_TYPE:
        raise MalformedBackup("Backup type marker missing or unknown")
    version = document.get("version")
    if not isinstance(version, str) or version not in SUPPORTED_VERSIONS:
        raise MalformedBackup(f"Unsupported backup version: {version!r}")
    try:
        return BackupBlob(
            type=BACKUP_TYPE,
            version=version,
            salt=b64d(document["salt"]),
            iv=b64d(document["iv"]),
            data=b64d(document["data"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedBackup("Backup is missing salt, iv or data") from exc


class BackupCodec:
    """Second wrapping layer around the stored keypair.

    The backup password is independent of the key's own unlock password;
    restoring a backup yields the inner wrapped key unchanged.
    """

    def __init__(self, vault: PrivateKeyVault) -> None:
        self._vault = vault

    def encode(self, record: StoredKeyRecord, password: str) -> str:
        document: Dict[str, Any] = {
            "version": BACKUP_VERSION,
            "publicKey": record.public_key,
            "encryptedPrivateKey": record.wrapped_private_key,
            "fingerprint": record.fingerprint,
            "createdAt": record.created_at,
            "exportedAt": utc_now_iso(),
        }
        sealed = self._vault.wrap(json.dumps(document).encode("utf-8"), password)
        return BackupBlob(
            type=BACKUP_TYPE,
            version=BACKUP_VERSION,
            salt=sealed.salt,
            iv=sealed.iv,
            data=sealed.ciphertext,
        ).to_token()

    def decode(self, token: str, password: str) -> StoredKeyRecord:
        blob = parse_backup(token)
        # InvalidPassword propagates from here
        raw = self._vault.unwrap(WrappedPrivateKey(salt=blob.salt, iv=blob.iv, ciphertext=blob.data), password)
        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MalformedBackup("Backup payload is not JSON") from exc
        if not isinstance(document, dict):
            raise MalformedBackup("Backup payload is not a JSON object")

        public_key = document.get("publicKey")
        wrapped = document.get("encryptedPrivateKey")
        if not isinstance(public_key, str) or not isinstance(wrapped, str) or not public_key or not wrapped:
            raise MalformedBackup("Backup payload lacks key material")
        return StoredKeyRecord(
            public_key=public_key,
            wrapped_private_key=wrapped,
            fingerprint=str(document.get("fingerprint") or ""),
            created_at=str(document.get("createdAt") or ""),
        )


__all__ = ["BACKUP_TYPE", "BACKUP_VERSION", "BackupBlob", "BackupCodec", "parse_backup"]
