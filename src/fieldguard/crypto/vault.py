"""Password-based wrapping of private key material.

PBKDF2-HMAC-SHA256 turns the password into an AES-256 key; AES-GCM seals the
bytes. Salt and nonce are drawn fresh on every call, so wrapping the same
input twice never yields the same blob. The GCM tag is the only check on the
way back: a wrong password and a tampered blob both surface as
:class:`InvalidPassword`.
"""

from __future__ import annotations

from cryptography.exceptions import InvalidTag

from ..config import KdfConfig
from ..exceptions import InvalidPassword
from ..models import WrappedPrivateKey
from .kdf import Pbkdf2Kdf
from .symmetric import AesGcm


class PrivateKeyVault:
    def __init__(self, cfg: KdfConfig | None = None) -> None:
        self.cfg = cfg or KdfConfig()
        self._kdf = Pbkdf2Kdf(self.cfg)

    def wrap(self, key_bytes: bytes, password: str) -> WrappedPrivateKey:
        if not password:
            raise ValueError("password must be non-empty")
        salt = self._kdf.random_salt()
        iv = AesGcm.gen_nonce(self.cfg.nonce_length)
        aead = AesGcm(self._kdf.derive(password, salt))
        return WrappedPrivateKey(salt=salt, iv=iv, ciphertext=aead.encrypt(iv, key_bytes))

    def unwrap(self, wrapped: WrappedPrivateKey, password: str) -> bytes:
        try:
            aead = AesGcm(self._kdf.derive(password, wrapped.salt))
            return aead.decrypt(wrapped.iv, wrapped.ciphertext)
        except (InvalidTag, ValueError) as exc:
            raise InvalidPassword("Unable to unwrap key: wrong password or damaged data") from exc

    def wrap_token(self, key_bytes: bytes, password: str) -> str:
        return self.wrap(key_bytes, password).to_token()

    def unwrap_token(self, token: str, password: str) -> bytes:
        try:
            wrapped = WrappedPrivateKey.from_token(token)
        except ValueError as exc:
            raise InvalidPassword("Unable to unwrap key: wrong password or damaged data") from exc
        return self.unwrap(wrapped, password)


__all__ = ["PrivateKeyVault"]
