import pytest
from pydantic import ValidationError

from fieldguard.config import KdfConfig
from fieldguard.crypto.vault import PrivateKeyVault
from fieldguard.exceptions import InvalidPassword
from fieldguard.models import WrappedPrivateKey
from fieldguard.utils import b64d

PASSWORD = "Tr0ub4dor&3"


def test_wrap_unwrap_round_trip(key_pair, kdf: KdfConfig) -> None:
    vault = PrivateKeyVault(kdf)
    secret = b64d(key_pair.private_key)
    wrapped = vault.wrap(secret, PASSWORD)
    assert len(wrapped.salt) == 16
    assert len(wrapped.iv) == 12
    assert vault.unwrap(wrapped, PASSWORD) == secret


def test_wrap_is_fresh_every_call(kdf: KdfConfig) -> None:
    vault = PrivateKeyVault(kdf)
    first = vault.wrap(b"same key bytes", PASSWORD)
    second = vault.wrap(b"same key bytes", PASSWORD)
    assert first.salt != second.salt
    assert first.iv != second.iv
    assert first.ciphertext != second.ciphertext
    assert first.to_token() != second.to_token()


def test_wrong_password_is_rejected(kdf: KdfConfig) -> None:
    vault = PrivateKeyVault(kdf)
    wrapped = vault.wrap(b"private", PASSWORD)
    with pytest.raises(InvalidPassword):
        vault.unwrap(wrapped, "wrong")


def test_tampered_blob_looks_like_wrong_password(kdf: KdfConfig) -> None:
    vault = PrivateKeyVault(kdf)
    wrapped = vault.wrap(b"private", PASSWORD)
    flipped = bytes([wrapped.ciphertext[0] ^ 0x01]) + wrapped.ciphertext[1:]
    damaged = WrappedPrivateKey(salt=wrapped.salt, iv=wrapped.iv, ciphertext=flipped)
    with pytest.raises(InvalidPassword) as wrong_pw:
        vault.unwrap(wrapped, "wrong")
    with pytest.raises(InvalidPassword) as tampered:
        vault.unwrap(damaged, PASSWORD)
    assert str(wrong_pw.value) == str(tampered.value)


def test_token_round_trip(kdf: KdfConfig) -> None:
    vault = PrivateKeyVault(kdf)
    token = vault.wrap_token(b"private", PASSWORD)
    assert vault.unwrap_token(token, PASSWORD) == b"private"


def test_garbage_token_reports_invalid_password(kdf: KdfConfig) -> None:
    with pytest.raises(InvalidPassword):
        PrivateKeyVault(kdf).unwrap_token("not-a-token", PASSWORD)


def test_empty_password_refused(kdf: KdfConfig) -> None:
    with pytest.raises(ValueError):
        PrivateKeyVault(kdf).wrap(b"private", "")


def test_kdf_iteration_floor() -> None:
    with pytest.raises(ValidationError):
        KdfConfig(iterations=10_000)
    assert KdfConfig().iterations >= 100_000
