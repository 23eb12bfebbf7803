# Define dataclasses for key material, status snapshots and wire records.

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .utils import b64d, b64e, pack_json, unpack_json


@dataclass(slots=True, frozen=True)
class KeyPair:
    """Base64 SPKI public key, base64 PKCS#8 private key and display fingerprint"""
    public_key: str
    private_key: str
    fingerprint: str

    def __repr__(self) -> str:
        return f"KeyPair(fingerprint={self.fingerprint!r})"


@dataclass(slots=True, frozen=True)
class WrappedPrivateKey:
    """The only persisted form of a private key"""
    salt: bytes
    iv: bytes
    ciphertext: bytes

    def to_token(self) -> str:
        return pack_json(
            {"salt": b64e(self.salt), "iv": b64e(self.iv), "ciphertext": b64e(self.ciphertext)}
        )

    @classmethod
    def from_token(cls, token: str) -> "WrappedPrivateKey":
        document = unpack_json(token)
        try:
            return cls(
                salt=b64d(document["salt"]),
                iv=b64d(document["iv"]),
                ciphertext=b64d(document["ciphertext"]),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError("wrapped key is missing salt, iv or ciphertext") from exc


class KeyState(str, Enum):
    NO_KEY_PAIR = "no_key_pair"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class ServerKeyState(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    UNAUTHORIZED = "unauthorized"


@dataclass(slots=True, frozen=True)
class KeyStatus:
    has_key_pair: bool
    is_locked: bool
    fingerprint: Optional[str] = None
    created_at: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "hasKeyPair": self.has_key_pair,
            "isLocked": self.is_locked,
            "fingerprint": self.fingerprint,
            "createdAt": self.created_at,
        }


@dataclass(slots=True, frozen=True)
class EncryptionCapability:
    can_encrypt: bool
    can_decrypt: bool
    has_key_pair: bool
    is_locked: bool
    reason: Optional[str] = None


@dataclass(slots=True, frozen=True)
class StoredKeyRecord:
    """The four persisted entries; ``wrapped_private_key`` is a vault token"""
    public_key: str
    wrapped_private_key: str
    fingerprint: str
    created_at: str = ""


@dataclass(slots=True, frozen=True)
class ServerKeyRecord:
    public_key: str
    wrapped_private_key: str
    fingerprint: str = ""

    def to_payload(self) -> Dict[str, str]:
        return {
            "publicKey": self.public_key,
            "encryptedPrivateKey": self.wrapped_private_key,
            "keyFingerprint": self.fingerprint,
        }

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> Optional["ServerKeyRecord"]:
        public_key = data.get("publicKey")
        wrapped = data.get("encryptedPrivateKey")
        if not public_key or not wrapped:
            return None
        return cls(
            public_key=str(public_key),
            wrapped_private_key=str(wrapped),
            fingerprint=str(data.get("keyFingerprint") or ""),
        )


@dataclass(slots=True, frozen=True)
class Envelope:
    """One encrypted field value before tagging"""
    ciphertext: str
    algorithm: str
    timestamp: int
    encrypted_key: Optional[str] = None
    nonce: Optional[str] = None


__all__ = [
    "EncryptionCapability",
    "Envelope",
    "KeyPair",
    "KeyState",
    "KeyStatus",
    "ServerKeyRecord",
    "ServerKeyState",
    "StoredKeyRecord",
    "WrappedPrivateKey",
]
