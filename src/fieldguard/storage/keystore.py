from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol, Tuple

from ..config import StorageConfig
from ..exceptions import StorageError
from ..models import StoredKeyRecord

PUBLIC_KEY = "public_key"
WRAPPED_PRIVATE_KEY = "wrapped_private_key"
FINGERPRINT = "fingerprint"
CREATED_AT = "created_at"
ENTRY_NAMES: Tuple[str, ...] = (PUBLIC_KEY, WRAPPED_PRIVATE_KEY, FINGERPRINT, CREATED_AT)


class KeyStorage(Protocol):
    """Four string entries under one namespace"""

    def get(self, name: str) -> Optional[str]: ...

    def get_many(self) -> Dict[str, Optional[str]]: ...

    def set_many(self, values: Mapping[str, str]) -> None: ...

    def clear(self) -> None: ...


def _check_names(values: Mapping[str, str]) -> None:
    unknown = set(values) - set(ENTRY_NAMES)
    if unknown:
        raise StorageError(f"Unknown storage entries: {sorted(unknown)}")


def read_record(storage: KeyStorage) -> Optional[StoredKeyRecord]:
    entries = storage.get_many()
    public_key = entries.get(PUBLIC_KEY)
    wrapped = entries.get(WRAPPED_PRIVATE_KEY)
    if not public_key or not wrapped:
        return None
    return StoredKeyRecord(
        public_key=public_key,
        wrapped_private_key=wrapped,
        fingerprint=entries.get(FINGERPRINT) or "",
        created_at=entries.get(CREATED_AT) or "",
    )


def write_record(storage: KeyStorage, record: StoredKeyRecord) -> None:
    storage.set_many(
        {
            PUBLIC_KEY: record.public_key,
            WRAPPED_PRIVATE_KEY: record.wrapped_private_key,
            FINGERPRINT: record.fingerprint,
            CREATED_AT: record.created_at,
        }
    )


class MemoryKeyStorage:
    """Volatile storage used by tests and short-lived sessions"""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._entries: Dict[str, str] = {}
        if initial:
            self.set_many(initial)

    def get(self, name: str) -> Optional[str]:
        return self._entries.get(name)

    def get_many(self) -> Dict[str, Optional[str]]:
        return {name: self._entries.get(name) for name in ENTRY_NAMES}

    def set_many(self, values: Mapping[str, str]) -> None:
        _check_names(values)
        staged = dict(self._entries)
        staged.update(values)
        self._entries = staged

    def clear(self) -> None:
        self._entries = {}


class FileKeyStorage:
    """Filesystem-backed storage under ``store_dir``.

    Layout:
      - <namespace>.json: {"public_key", "wrapped_private_key", "fingerprint", "created_at"}

    Writes go to a sibling temp file that replaces the document in one
    ``os.replace`` call, so readers never observe a half-written update.
    """

    def __init__(self, root: Path | str, namespace: str = "fieldguard") -> None:
        self.root = Path(root)
        self.path = self.root / f"{namespace}.json"

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Unreadable key store {self.path}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Key store {self.path} is not a JSON object")
        return {k: v for k, v in data.items() if k in ENTRY_NAMES and isinstance(v, str)}

    def _save(self, data: Dict[str, str]) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".keystore-", dir=self.root)
        except OSError as exc:
            raise StorageError(f"Unable to prepare key store directory {self.root}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"Unable to write key store {self.path}") from exc

    def get(self, name: str) -> Optional[str]:
        return self._load().get(name)

    def get_many(self) -> Dict[str, Optional[str]]:
        data = self._load()
        return {name: data.get(name) for name in ENTRY_NAMES}

    def set_many(self, values: Mapping[str, str]) -> None:
        _check_names(values)
        data = self._load()
        data.update(values)
        self._save(data)

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Unable to remove key store {self.path}") from exc


def build_storage(cfg: StorageConfig) -> KeyStorage:
    if cfg.backend == "memory":
        return MemoryKeyStorage()
    return FileKeyStorage(cfg.store_dir, cfg.namespace)


__all__ = [
    "CREATED_AT",
    "ENTRY_NAMES",
    "FINGERPRINT",
    "FileKeyStorage",
    "KeyStorage",
    "MemoryKeyStorage",
    "PUBLIC_KEY",
    "WRAPPED_PRIVATE_KEY",
    "build_storage",
    "read_record",
    "write_record",
]
