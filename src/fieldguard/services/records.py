# Apply field encryption across sensitive fields of records and record lists.
from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional, Sequence

import structlog

from ..exceptions import FieldDecryptFailure, NoKeyMaterial
from ..models import EncryptionCapability
from ..utils import utc_now_iso
from .field_cipher import DECRYPT_FAILED_SENTINEL, FieldCipher, is_encrypted
from .field_sets import FieldSetRef, FieldSetRegistry
from .key_manager import KeyManager

ENCRYPTION_VERSION = "1.0"
VERSION_FIELD = "encryptionVersion"
TIMESTAMP_FIELD = "encryptedAt"

Record = Dict[str, Any]

logger = structlog.get_logger(__name__)


def _encryptable(value: Any) -> bool:
    # numbers, booleans, None and "" are stored as-is
    if isinstance(value, str):
        return value != "" and not is_encrypted(value)
    return isinstance(value, (dict, list))


def _serialize(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _restore(text: str) -> Any:
    """Bring back dicts and lists; anything else stays the decrypted string"""
    if not text or text[0] not in "[{":
        return text
    try:
        parsed = json.loads(text)
    except ValueError:
        return text
    return parsed if isinstance(parsed, (dict, list)) else text


class RecordEncryptionService:
    """Encrypts the sensitive fields of structured records.

    Each field is handled on its own: a field that fails to decrypt becomes
    :data:`DECRYPT_FAILED_SENTINEL` and the rest of the record (and batch) is
    still processed. Input records are never mutated.
    """

    def __init__(
        self,
        key_manager: KeyManager,
        cipher: FieldCipher | None = None,
        field_sets: FieldSetRegistry | None = None,
    ) -> None:
        self.key_manager = key_manager
        self.cipher = cipher or FieldCipher()
        self.field_sets = field_sets or FieldSetRegistry()

    # ----- Capability -----
    def check_encryption_capability(self) -> EncryptionCapability:
        status = self.key_manager.get_status()
        if not status.has_key_pair:
            return EncryptionCapability(
                can_encrypt=False,
                can_decrypt=False,
                has_key_pair=False,
                is_locked=True,
                reason="No encryption key has been created yet",
            )
        if status.is_locked:
            return EncryptionCapability(
                can_encrypt=True,
                can_decrypt=False,
                has_key_pair=True,
                is_locked=True,
                reason="Key is locked; unlock it to decrypt data",
            )
        return EncryptionCapability(can_encrypt=True, can_decrypt=True, has_key_pair=True, is_locked=False)

    # ----- Single records -----
    def encrypt_record(self, record: Mapping[str, Any], field_set: FieldSetRef, public_key: str) -> Record:
        result: Record = dict(record)
        for name in self.field_sets.resolve(field_set):
            value = result.get(name)
            if not _encryptable(value):
                continue
            result[name] = self.cipher.encrypt_field(_serialize(value), public_key)
        result[VERSION_FIELD] = ENCRYPTION_VERSION
        result[TIMESTAMP_FIELD] = utc_now_iso()
        return result

    def decrypt_record(self, record: Mapping[str, Any], field_set: FieldSetRef, private_key: str) -> Record:
        result: Record = dict(record)
        for name in self.field_sets.resolve(field_set):
            value = result.get(name)
            if not is_encrypted(value):
                continue
            try:
                result[name] = _restore(self.cipher.decrypt_field(value, private_key, strict=True))
            except FieldDecryptFailure as exc:
                logger.warning("record_field_decrypt_failed", field=name, reason=str(exc))
                result[name] = DECRYPT_FAILED_SENTINEL
        return result

    def has_encrypted_fields(self, record: Mapping[str, Any], field_set: FieldSetRef = "generic") -> bool:
        return any(is_encrypted(record.get(name)) for name in self.field_sets.resolve(field_set))

    # ----- Batches -----
    def encrypt_batch(
        self, records: Sequence[Mapping[str, Any]], field_set: FieldSetRef, public_key: str
    ) -> List[Record]:
        fields = self.field_sets.resolve(field_set)
        return [self.encrypt_record(record, fields, public_key) for record in records]

    def decrypt_batch(
        self, records: Sequence[Mapping[str, Any]], field_set: FieldSetRef, private_key: str
    ) -> List[Record]:
        fields = self.field_sets.resolve(field_set)
        return [self.decrypt_record(record, fields, private_key) for record in records]

    # ----- Bound to the key manager -----
    def encrypt_value(self, value: str) -> str:
        public_key = self.key_manager.get_public_key()
        if not public_key:
            raise NoKeyMaterial("No public key; create a keypair first")
        if is_encrypted(value):
            return value
        return self.cipher.encrypt_field(value, public_key)

    def decrypt_value(self, value: str) -> str:
        private_key = self.key_manager.get_private_key()
        return self.cipher.decrypt_field(value, private_key, strict=True)

    def encrypt_with_manager(self, record: Mapping[str, Any], field_set: FieldSetRef = "interview") -> Record:
        public_key = self.key_manager.get_public_key()
        if not public_key:
            logger.warning("record_left_unencrypted", reason="no public key")
            return dict(record)
        return self.encrypt_record(record, field_set, public_key)

    def decrypt_with_manager(self, record: Mapping[str, Any], field_set: FieldSetRef = "interview") -> Record:
        private_key = self._private_key_or_none()
        if private_key is None:
            logger.info("record_left_encrypted", reason="key locked")
            return dict(record)
        return self.decrypt_record(record, field_set, private_key)

    def decrypt_list(
        self, records: Sequence[Mapping[str, Any]], field_set: FieldSetRef = "interview"
    ) -> List[Record]:
        private_key = self._private_key_or_none()
        if private_key is None:
            return [dict(record) for record in records]
        return self.decrypt_batch(records, field_set, private_key)

    def _private_key_or_none(self) -> Optional[str]:
        try:
            return self.key_manager.get_private_key()
        except NoKeyMaterial:
            return None


__all__ = [
    "ENCRYPTION_VERSION",
    "RecordEncryptionService",
    "TIMESTAMP_FIELD",
    "VERSION_FIELD",
]
