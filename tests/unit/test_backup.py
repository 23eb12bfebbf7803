import pytest

from fieldguard.config import KdfConfig
from fieldguard.crypto.vault import PrivateKeyVault
from fieldguard.exceptions import InvalidPassword, MalformedBackup
from fieldguard.models import StoredKeyRecord
from fieldguard.services.backup import BACKUP_TYPE, BACKUP_VERSION, BackupBlob, BackupCodec, parse_backup
from fieldguard.utils import pack_json, unpack_json

RECORD = StoredKeyRecord(public_key="pub", wrapped_private_key="wrapped", fingerprint="aa:bb", created_at="t0")


@pytest.fixture()
def codec(kdf: KdfConfig) -> BackupCodec:
    return BackupCodec(PrivateKeyVault(kdf))


def test_blob_shape(codec: BackupCodec) -> None:
    document = unpack_json(codec.encode(RECORD, "backup-pass"))
    assert document["type"] == BACKUP_TYPE
    assert document["version"] == BACKUP_VERSION
    assert set(document) == {"type", "version", "salt", "iv", "data"}
    assert "wrapped" not in document["data"]


def test_round_trip(codec: BackupCodec) -> None:
    assert codec.decode(codec.encode(RECORD, "backup-pass"), "backup-pass") == RECORD


def test_exports_are_fresh(codec: BackupCodec) -> None:
    assert codec.encode(RECORD, "backup-pass") != codec.encode(RECORD, "backup-pass")


def test_wrong_password(codec: BackupCodec) -> None:
    with pytest.raises(InvalidPassword):
        codec.decode(codec.encode(RECORD, "backup-pass"), "nope")


@pytest.mark.parametrize(
    "document",
    [
        {"type": "MSIA_KEY_BACKUP", "version": "1.0", "salt": "AA", "iv": "AA", "data": "AA"},
        {"type": BACKUP_TYPE, "version": "9.9", "salt": "AA", "iv": "AA", "data": "AA"},
        {"type": BACKUP_TYPE, "version": BACKUP_VERSION, "salt": "AA"},
        {"version": BACKUP_VERSION},
    ],
)
def test_shape_checks_fail_before_decryption(document) -> None:
    with pytest.raises(MalformedBackup):
        parse_backup(pack_json(document))


@pytest.mark.parametrize("token", ["", "!!!", pack_json({"a": 1})[:-3]])
def test_garbage_is_malformed(token: str) -> None:
    with pytest.raises(MalformedBackup):
        parse_backup(token)


def test_payload_without_key_material(kdf: KdfConfig) -> None:
    vault = PrivateKeyVault(kdf)
    sealed = vault.wrap(b'{"publicKey": ""}', "backup-pass")
    token = BackupBlob(BACKUP_TYPE, BACKUP_VERSION, sealed.salt, sealed.iv, sealed.ciphertext).to_token()
    with pytest.raises(MalformedBackup):
        BackupCodec(vault).decode(token, "backup-pass")
