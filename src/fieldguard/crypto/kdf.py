# PBKDF2-HMAC-SHA256 password stretching for key wrapping and backups.
from __future__ import annotations
import secrets
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from ..config import KdfConfig

class Pbkdf2Kdf:
  def __init__(self, cfg: KdfConfig):
    self.cfg = cfg

  def random_salt(self) -> bytes:
    return secrets.token_bytes(self.cfg.salt_length)

  def derive(self, password: str, salt: bytes) -> bytes:
    if len(salt) < self.cfg.salt_length:
      raise ValueError(f"salt shorter than {self.cfg.salt_length} bytes")
    stretcher = PBKDF2HMAC(
      algorithm=hashes.SHA256(),
      length=self.cfg.length,
      salt=salt,
      iterations=self.cfg.iterations,
    )
    return stretcher.derive(password.encode("utf-8"))
