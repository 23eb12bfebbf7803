"""RSA-OAEP keypairs used for field-level encryption.

Keys travel as base64 strings (SPKI DER for the public half, PKCS#8 DER for
the private half) so they can sit in string-valued storage and JSON bodies.
"""

from __future__ import annotations

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..exceptions import CryptoError, PayloadTooLarge
from ..models import KeyPair
from ..utils import b64d, b64e
from .hasher import fingerprint

PUBLIC_EXPONENT = 65537
DEFAULT_KEY_BITS = 2048
OAEP_HASH_LEN = 32  #* SHA-256 digest size


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def load_public_key(encoded: str) -> rsa.RSAPublicKey:
    try:
        key = serialization.load_der_public_key(b64d(encoded))
    except ValueError as exc:
        raise CryptoError("Public key is not a valid SPKI document") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise CryptoError("Expected RSA public key")
    return key


def load_private_key(encoded: str) -> rsa.RSAPrivateKey:
    try:
        key = serialization.load_der_private_key(b64d(encoded), password=None)
    except (ValueError, TypeError) as exc:
        raise CryptoError("Private key is not a valid PKCS#8 document") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise CryptoError("Expected RSA private key")
    return key


def max_oaep_plaintext(public_key: rsa.RSAPublicKey) -> int:
    """Largest message RSA-OAEP-SHA256 accepts for this modulus"""
    return public_key.key_size // 8 - 2 * OAEP_HASH_LEN - 2


class RsaKeyPair:
    """Minimal OO wrapper providing OAEP encrypt/decrypt and serialization helpers."""

    def __init__(self, private: rsa.RSAPrivateKey | None = None, public: rsa.RSAPublicKey | None = None):
        self._priv = private
        self._pub = public or (private.public_key() if private else None)
        if self._pub is None:
            raise CryptoError("RsaKeyPair needs at least a public key")

    @staticmethod
    def generate(bits: int = DEFAULT_KEY_BITS) -> "RsaKeyPair":
        priv = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=bits)
        return RsaKeyPair(private=priv)

    @classmethod
    def from_public(cls, encoded: str) -> "RsaKeyPair":
        return cls(public=load_public_key(encoded))

    @classmethod
    def from_private(cls, encoded: str) -> "RsaKeyPair":
        return cls(private=load_private_key(encoded))

    @property
    def has_private(self) -> bool:
        return self._priv is not None

    @property
    def key_size(self) -> int:
        return self._pub.key_size

    # Serialization helpers
    def public_b64(self) -> str:
        return b64e(
            self._pub.public_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
        )

    def private_b64(self) -> str:
        if self._priv is None:
            raise CryptoError("Private key not available")
        return b64e(
            self._priv.private_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )

    def to_key_pair(self) -> KeyPair:
        public = self.public_b64()
        return KeyPair(public_key=public, private_key=self.private_b64(), fingerprint=fingerprint(public))

    def max_plaintext_size(self) -> int:
        return max_oaep_plaintext(self._pub)

    # RSA-OAEP encrypt/decrypt
    def encrypt(self, data: bytes) -> bytes:
        limit = self.max_plaintext_size()
        if len(data) > limit:
            raise PayloadTooLarge(f"RSA-OAEP payload limited to {limit} bytes, got {len(data)}")
        return self._pub.encrypt(data, _oaep())

    def decrypt(self, ct: bytes) -> bytes:
        if self._priv is None:
            raise CryptoError("Private key not available")
        try:
            return self._priv.decrypt(ct, _oaep())
        except ValueError as exc:
            raise CryptoError("RSA-OAEP decryption failed") from exc


def generate_key_pair(bits: int = DEFAULT_KEY_BITS) -> KeyPair:
    """Produce one fresh keypair with its fingerprint"""
    return RsaKeyPair.generate(bits).to_key_pair()


__all__ = [
    "DEFAULT_KEY_BITS",
    "RsaKeyPair",
    "generate_key_pair",
    "load_private_key",
    "load_public_key",
    "max_oaep_plaintext",
]
