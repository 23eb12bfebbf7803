"""Encrypt single field values with the user's public key.

A tagged value is ``"enc:" + token`` where the token is URL-safe base64 of a
JSON envelope ``{"ciphertext", "algorithm", "timestamp"}``. Two algorithms
exist:

- ``RSA-OAEP``: the UTF-8 value is encrypted directly; limited to
  ``modulus_bytes - 66`` bytes (190 for a 2048-bit key).
- ``RSA-OAEP+AES-256-GCM``: a fresh content key encrypts the value with
  AES-GCM and RSA-OAEP wraps the content key (``encryptedKey`` and ``nonce``
  join the envelope). No size ceiling.
"""

from __future__ import annotations

import time
from functools import lru_cache
from typing import Any, Dict, Literal

import structlog
from cryptography.exceptions import InvalidTag

from ..config import CryptoDefaults
from ..crypto.asymmetric import RsaKeyPair
from ..crypto.symmetric import AesGcm
from ..exceptions import CryptoError, FieldDecryptFailure, MalformedEnvelope, PayloadTooLarge
from ..models import Envelope
from ..utils import b64d, b64e, pack_json, unpack_json

ENCRYPTED_PREFIX = "enc:"
DECRYPT_FAILED_SENTINEL = "***DECRYPTION FAILED***"
ALG_RSA_OAEP = "RSA-OAEP"
ALG_HYBRID = "RSA-OAEP+AES-256-GCM"

logger = structlog.get_logger(__name__)


@lru_cache(maxsize=8)
def _public_pair(public_key: str) -> RsaKeyPair:
    return RsaKeyPair.from_public(public_key)


def is_encrypted(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX)


def encode_envelope(envelope: Envelope) -> str:
    document: Dict[str, Any] = {
        "ciphertext": envelope.ciphertext,
        "algorithm": envelope.algorithm,
        "timestamp": envelope.timestamp,
    }
    if envelope.encrypted_key is not None:
        document["encryptedKey"] = envelope.encrypted_key
    if envelope.nonce is not None:
        document["nonce"] = envelope.nonce
    return ENCRYPTED_PREFIX + pack_json(document)


def decode_envelope(value: str) -> Envelope:
    if not is_encrypted(value):
        raise MalformedEnvelope("Value carries no encryption tag")
    try:
        document = unpack_json(value[len(ENCRYPTED_PREFIX):])
        ciphertext = document["ciphertext"]
        algorithm = document["algorithm"]
        timestamp = int(document.get("timestamp") or 0)
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedEnvelope("Encrypted value is not a valid envelope") from exc
    encrypted_key = document.get("encryptedKey")
    nonce = document.get("nonce")
    if not isinstance(ciphertext, str) or not isinstance(algorithm, str):
        raise MalformedEnvelope("Envelope ciphertext and algorithm must be strings")
    if not all(part is None or isinstance(part, str) for part in (encrypted_key, nonce)):
        raise MalformedEnvelope("Envelope encryptedKey and nonce must be strings")
    return Envelope(
        ciphertext=ciphertext,
        algorithm=algorithm,
        timestamp=timestamp,
        encrypted_key=encrypted_key,
        nonce=nonce,
    )


class FieldCipher:
    def __init__(self, crypto: CryptoDefaults | None = None) -> None:
        self.crypto = crypto or CryptoDefaults()

    @staticmethod
    def is_encrypted(value: Any) -> bool:
        return is_encrypted(value)

    @staticmethod
    def max_plaintext_size(public_key: str) -> int:
        return _public_pair(public_key).max_plaintext_size()

    def seal(self, plaintext: str, public_key: str) -> Envelope:
        pair = _public_pair(public_key)
        data = plaintext.encode("utf-8")
        scheme = self._pick_scheme(len(data), pair.max_plaintext_size())
        timestamp = int(time.time() * 1000)
        if scheme == ALG_RSA_OAEP:
            return Envelope(ciphertext=b64e(pair.encrypt(data)), algorithm=ALG_RSA_OAEP, timestamp=timestamp)

        content_key = AesGcm.gen_key()
        nonce = AesGcm.gen_nonce()
        ciphertext = AesGcm(content_key).encrypt(nonce, data, ALG_HYBRID.encode("ascii"))
        return Envelope(
            ciphertext=b64e(ciphertext),
            algorithm=ALG_HYBRID,
            timestamp=timestamp,
            encrypted_key=b64e(pair.encrypt(content_key)),
            nonce=b64e(nonce),
        )

    def encrypt_field(self, plaintext: str, public_key: str) -> str:
        if not isinstance(plaintext, str):
            raise TypeError("encrypt_field expects a string; serialize structured values first")
        return encode_envelope(self.seal(plaintext, public_key))

    def open(self, envelope: Envelope, private_key: str) -> str:
        pair = RsaKeyPair.from_private(private_key)
        if envelope.algorithm == ALG_RSA_OAEP:
            data = pair.decrypt(b64d(envelope.ciphertext))
        elif envelope.algorithm == ALG_HYBRID:
            if not envelope.encrypted_key or not envelope.nonce:
                raise MalformedEnvelope("Hybrid envelope lacks encryptedKey or nonce")
            content_key = pair.decrypt(b64d(envelope.encrypted_key))
            try:
                data = AesGcm(content_key).decrypt(
                    b64d(envelope.nonce), b64d(envelope.ciphertext), ALG_HYBRID.encode("ascii")
                )
            except (InvalidTag, ValueError) as exc:
                raise CryptoError("AES-GCM tag verification failed") from exc
        else:
            raise MalformedEnvelope(f"Unsupported field algorithm: {envelope.algorithm}")
        return data.decode("utf-8")

    def decrypt_field(self, value: str, private_key: str, *, strict: bool = False) -> str:
        """Decrypt one tagged value.

        Untagged values pass through unchanged. A tagged value that cannot be
        opened becomes :data:`DECRYPT_FAILED_SENTINEL`, or raises
        :class:`FieldDecryptFailure` when ``strict`` is set.
        """
        if not is_encrypted(value):
            return value
        try:
            return self.open(decode_envelope(value), private_key)
        except (CryptoError, ValueError) as exc:
            if strict:
                raise FieldDecryptFailure(str(exc)) from exc
            logger.warning("field_decrypt_failed", reason=type(exc).__name__)
            return DECRYPT_FAILED_SENTINEL

    def _pick_scheme(self, size: int, limit: int) -> Literal["RSA-OAEP", "RSA-OAEP+AES-256-GCM"]:
        mode = self.crypto.field_scheme
        if mode == "hybrid":
            return ALG_HYBRID
        if size <= limit:
            return ALG_RSA_OAEP
        if mode == "rsa-oaep":
            raise PayloadTooLarge(f"Value of {size} bytes exceeds the {limit}-byte RSA-OAEP ceiling")
        return ALG_HYBRID


__all__ = [
    "ALG_HYBRID",
    "ALG_RSA_OAEP",
    "DECRYPT_FAILED_SENTINEL",
    "ENCRYPTED_PREFIX",
    "FieldCipher",
    "decode_envelope",
    "encode_envelope",
    "is_encrypted",
]
