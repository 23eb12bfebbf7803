# Implement SHA-256 public key fingerprints.
from __future__ import annotations
import hashlib

FINGERPRINT_LENGTH = 23  #* eight hex pairs joined by colons


def fingerprint(public_key: str) -> str:
    """Short display identifier for an encoded public key; never an auth check"""
    digest = hashlib.sha256(public_key.encode("utf-8")).digest()
    return ":".join(f"{b:02x}" for b in digest)[:FINGERPRINT_LENGTH]
