"""Client-side key management and field-level encryption."""
from __future__ import annotations

from .config import AppConfig, load_config
from .exceptions import (
    FieldGuardError,
    InvalidPassword,
    MalformedBackup,
    NoKeyMaterial,
    ServerSyncFailure,
)
from .models import KeyState, KeyStatus, ServerKeyState
from .services.field_cipher import DECRYPT_FAILED_SENTINEL, ENCRYPTED_PREFIX, FieldCipher
from .services.key_manager import KeyManager
from .services.records import RecordEncryptionService
from .session import Session, build_session
from .version import __version__

__all__ = [
    "AppConfig",
    "DECRYPT_FAILED_SENTINEL",
    "ENCRYPTED_PREFIX",
    "FieldCipher",
    "FieldGuardError",
    "InvalidPassword",
    "KeyManager",
    "KeyState",
    "KeyStatus",
    "MalformedBackup",
    "NoKeyMaterial",
    "RecordEncryptionService",
    "ServerKeyState",
    "ServerSyncFailure",
    "Session",
    "__version__",
    "build_session",
    "load_config",
]
