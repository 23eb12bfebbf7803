"""Central exception hierarchy"""
from __future__ import annotations


class FieldGuardError(Exception):
    """Base exception for all failures"""


class CryptoError(FieldGuardError):
    """Raised for cryptographic misuse or integrity failures"""


class InvalidPassword(CryptoError):
    """Raised when an AEAD tag check fails while unwrapping with a password.

    A wrong password and a corrupted blob are reported identically.
    """


class MalformedEnvelope(CryptoError):
    """Raised when a tagged field value cannot be parsed"""


class PayloadTooLarge(CryptoError):
    """Raised when a value exceeds the RSA-OAEP message ceiling"""


class FieldDecryptFailure(CryptoError):
    """Raised when one encrypted field cannot be decrypted"""


class NoKeyMaterial(FieldGuardError):
    """Raised when an operation needs a key that is absent or locked"""


class KeyAlreadyExists(FieldGuardError):
    """Raised when generating a keypair while one is already stored"""


class MalformedBackup(FieldGuardError):
    """Raised when a backup blob fails shape, marker or version checks"""


class StorageError(FieldGuardError):
    """Raised when local key storage cannot be read or written"""


class ServerSyncFailure(FieldGuardError):
    """Raised for any network or server-side failure of the key API"""


class Unauthorized(ServerSyncFailure):
    """Raised when the key API rejects the current session"""


__all__ = [
    "CryptoError",
    "FieldDecryptFailure",
    "FieldGuardError",
    "InvalidPassword",
    "KeyAlreadyExists",
    "MalformedBackup",
    "MalformedEnvelope",
    "NoKeyMaterial",
    "PayloadTooLarge",
    "ServerSyncFailure",
    "StorageError",
    "Unauthorized",
]
