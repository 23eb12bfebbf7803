"""AES-256-GCM used both for password wrapping and for hybrid field values."""
import secrets

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

AES_KEY_SIZE = 32  #* 256-bit
NONCE_SIZE = 12


class AesGcm:
    @staticmethod
    def gen_key() -> bytes:
        return secrets.token_bytes(AES_KEY_SIZE)

    @staticmethod
    def gen_nonce(size: int = NONCE_SIZE) -> bytes:
        return secrets.token_bytes(size)

    def __init__(self, key: bytes):
        if len(key) != AES_KEY_SIZE:
            raise ValueError(f"AES-256-GCM needs a {AES_KEY_SIZE}-byte key, got {len(key)}")
        self._aead = AESGCM(key)

    def encrypt(self, nonce: bytes, plaintext: bytes, aad: bytes | None = None) -> bytes:
        """Ciphertext with the 16-byte tag appended"""
        return self._aead.encrypt(nonce, plaintext, aad)

    def decrypt(self, nonce: bytes, ciphertext: bytes, aad: bytes | None = None) -> bytes:
        # raises cryptography's InvalidTag on a wrong key, nonce, aad or any tampering
        return self._aead.decrypt(nonce, ciphertext, aad)
