"""Cryptographic primitives: RSA-OAEP keypairs, PBKDF2 and AES-GCM wrapping."""
