import asyncio

import pytest

from fieldguard.config import KdfConfig
from fieldguard.exceptions import InvalidPassword, KeyAlreadyExists, MalformedBackup, NoKeyMaterial
from fieldguard.models import KeyState, ServerKeyState
from fieldguard.services.key_manager import KeyManager
from fieldguard.storage.keystore import MemoryKeyStorage
from fieldguard.utils import pack_json

PASSWORD = "Tr0ub4dor&3"


@pytest.mark.asyncio
async def test_lock_unlock_scenario(manager: KeyManager, storage) -> None:
    assert manager.state is KeyState.NO_KEY_PAIR

    status = await manager.generate_and_store(PASSWORD)
    assert status.has_key_pair is True
    assert status.is_locked is False
    assert status.fingerprint and status.created_at

    await manager.lock()
    assert manager.get_status().is_locked is True
    assert manager.state is KeyState.LOCKED

    before = manager.get_status()
    persisted = storage.get_many()
    assert await manager.unlock("wrong") is False
    assert manager.get_status() == before
    assert storage.get_many() == persisted

    assert await manager.unlock(PASSWORD) is True
    assert manager.get_status().is_locked is False
    assert manager.state is KeyState.UNLOCKED


@pytest.mark.asyncio
async def test_generate_pushes_to_server(manager: KeyManager, fake_server, storage) -> None:
    await manager.generate_and_store(PASSWORD)
    assert fake_server.record is not None
    assert fake_server.record["publicKey"] == storage.get("public_key")
    assert fake_server.record["encryptedPrivateKey"] == storage.get("wrapped_private_key")
    assert fake_server.record["keyFingerprint"] == manager.get_fingerprint()


@pytest.mark.asyncio
async def test_plaintext_private_key_is_never_persisted(manager: KeyManager, storage, fake_server) -> None:
    await manager.generate_and_store(PASSWORD)
    private_key = manager.get_private_key()
    assert all(private_key not in (value or "") for value in storage.get_many().values())
    assert private_key not in fake_server.record["encryptedPrivateKey"]


@pytest.mark.asyncio
async def test_generate_twice_is_refused(manager: KeyManager) -> None:
    await manager.generate_and_store(PASSWORD)
    with pytest.raises(KeyAlreadyExists):
        await manager.generate_and_store("another")


@pytest.mark.asyncio
async def test_server_failure_does_not_roll_back(manager: KeyManager, fake_server) -> None:
    fake_server.failing = True
    status = await manager.generate_and_store(PASSWORD)
    assert status.has_key_pair and not status.is_locked
    assert fake_server.record is None
    assert await manager.sync_to_server() is False


@pytest.mark.asyncio
async def test_lock_is_idempotent_and_keeps_public_key(manager: KeyManager) -> None:
    await manager.generate_and_store(PASSWORD)
    public_key = manager.get_public_key()
    await manager.lock()
    await manager.lock()
    assert manager.get_public_key() == public_key
    with pytest.raises(NoKeyMaterial):
        manager.get_private_key()


@pytest.mark.asyncio
async def test_unlock_without_key_pair(manager: KeyManager) -> None:
    assert await manager.unlock(PASSWORD) is False
    assert manager.state is KeyState.NO_KEY_PAIR


@pytest.mark.asyncio
async def test_change_password_wrong_old_mutates_nothing(manager: KeyManager, storage, fake_server) -> None:
    await manager.generate_and_store(PASSWORD)
    snapshot = storage.get_many()
    server_snapshot = dict(fake_server.record)

    assert await manager.change_password("wrong", "n3w-secret") is False
    assert storage.get_many() == snapshot
    assert fake_server.record == server_snapshot


@pytest.mark.asyncio
async def test_change_password_rewraps_and_syncs(manager: KeyManager, storage, fake_server) -> None:
    await manager.generate_and_store(PASSWORD)
    old_wrapped = storage.get("wrapped_private_key")
    old_public = storage.get("public_key")

    assert await manager.change_password(PASSWORD, "n3w-secret") is True
    assert storage.get("wrapped_private_key") != old_wrapped
    assert storage.get("public_key") == old_public
    assert fake_server.record["encryptedPrivateKey"] == storage.get("wrapped_private_key")

    await manager.lock()
    assert await manager.unlock(PASSWORD) is False
    assert await manager.unlock("n3w-secret") is True


@pytest.mark.asyncio
async def test_change_password_survives_server_outage(manager: KeyManager, fake_server) -> None:
    await manager.generate_and_store(PASSWORD)
    fake_server.failing = True
    assert await manager.change_password(PASSWORD, "n3w-secret") is True
    await manager.lock()
    assert await manager.unlock("n3w-secret") is True


@pytest.mark.asyncio
async def test_sync_from_server_pairs_a_new_device(manager: KeyManager, fake_server, kdf: KdfConfig) -> None:
    await manager.generate_and_store(PASSWORD)
    second_storage = MemoryKeyStorage()
    second = KeyManager(second_storage, fake_server.client(), kdf=kdf)

    assert second.state is KeyState.NO_KEY_PAIR
    assert await second.sync_from_server(PASSWORD) is True
    assert second.state is KeyState.UNLOCKED
    assert second.get_public_key() == manager.get_public_key()
    assert second.get_private_key() == manager.get_private_key()
    assert second.get_fingerprint() == manager.get_fingerprint()


@pytest.mark.asyncio
async def test_sync_from_server_failures_leave_state(fake_server, kdf: KdfConfig) -> None:
    storage = MemoryKeyStorage()
    device = KeyManager(storage, fake_server.client(), kdf=kdf)

    assert await device.sync_from_server(PASSWORD) is False

    origin = KeyManager(MemoryKeyStorage(), fake_server.client(), kdf=kdf)
    await origin.generate_and_store(PASSWORD)
    assert await device.sync_from_server("wrong") is False

    fake_server.failing = True
    assert await device.sync_from_server(PASSWORD) is False

    assert storage.get_many() == {name: None for name in storage.get_many()}
    assert device.state is KeyState.NO_KEY_PAIR


@pytest.mark.asyncio
async def test_sync_from_server_without_server(kdf: KdfConfig) -> None:
    assert await KeyManager(MemoryKeyStorage(), kdf=kdf).sync_from_server(PASSWORD) is False


@pytest.mark.asyncio
async def test_initialize_prefers_local_then_server(manager: KeyManager, fake_server, kdf: KdfConfig) -> None:
    await manager.generate_and_store(PASSWORD)
    await manager.lock()
    status = await manager.initialize(PASSWORD)
    assert status.is_locked is False

    fresh = KeyManager(MemoryKeyStorage(), fake_server.client(), kdf=kdf)
    status = await fresh.initialize(PASSWORD)
    assert status.has_key_pair and not status.is_locked

    empty = KeyManager(MemoryKeyStorage(), kdf=kdf)
    status = await empty.initialize()
    assert not status.has_key_pair


@pytest.mark.asyncio
async def test_check_server_key_is_three_valued(manager: KeyManager, fake_server) -> None:
    assert await manager.check_server_key() is ServerKeyState.ABSENT
    await manager.generate_and_store(PASSWORD)
    assert await manager.check_server_key() is ServerKeyState.PRESENT
    fake_server.authorized = False
    assert await manager.check_server_key() is ServerKeyState.UNAUTHORIZED
    fake_server.authorized = True
    fake_server.failing = True
    assert await manager.check_server_key() is ServerKeyState.ABSENT


@pytest.mark.asyncio
async def test_backup_round_trip_with_independent_password(manager: KeyManager, kdf: KdfConfig, fake_server) -> None:
    await manager.generate_and_store(PASSWORD)
    blob = await manager.export_backup("backup-pass")

    restored_storage = MemoryKeyStorage()
    restored = KeyManager(restored_storage, fake_server.client(), kdf=kdf)
    status = await restored.import_backup(blob, "backup-pass")

    assert status.has_key_pair is True
    assert status.is_locked is True
    assert status.fingerprint == manager.get_fingerprint()
    assert restored.get_public_key() == manager.get_public_key()
    assert await restored.unlock("backup-pass") is False
    assert await restored.unlock(PASSWORD) is True
    assert restored.get_private_key() == manager.get_private_key()


@pytest.mark.asyncio
async def test_import_backup_distinguishes_failures(manager: KeyManager, storage) -> None:
    await manager.generate_and_store(PASSWORD)
    blob = await manager.export_backup("backup-pass")
    snapshot = storage.get_many()

    with pytest.raises(InvalidPassword):
        await manager.import_backup(blob, "wrong")
    with pytest.raises(MalformedBackup):
        await manager.import_backup("definitely not a backup", "backup-pass")
    with pytest.raises(MalformedBackup):
        await manager.import_backup(pack_json({"type": "OTHER", "version": "1.0"}), "backup-pass")
    assert storage.get_many() == snapshot


@pytest.mark.asyncio
async def test_export_without_key_pair(manager: KeyManager) -> None:
    with pytest.raises(NoKeyMaterial):
        await manager.export_backup("backup-pass")


@pytest.mark.asyncio
async def test_delete_key_pair(manager: KeyManager, storage, fake_server) -> None:
    await manager.generate_and_store(PASSWORD)
    await manager.delete_key_pair()
    assert manager.state is KeyState.NO_KEY_PAIR
    assert manager.get_public_key() is None
    assert all(value is None for value in storage.get_many().values())
    assert fake_server.record is None
    assert ("DELETE", "keys") in fake_server.calls


@pytest.mark.asyncio
async def test_delete_survives_server_outage(manager: KeyManager, fake_server) -> None:
    await manager.generate_and_store(PASSWORD)
    fake_server.failing = True
    await manager.delete_key_pair()
    assert manager.state is KeyState.NO_KEY_PAIR


@pytest.mark.asyncio
async def test_overlapping_operations_are_serialized(manager: KeyManager) -> None:
    await manager.generate_and_store(PASSWORD)
    await manager.lock()
    results = await asyncio.gather(manager.unlock(PASSWORD), manager.lock(), manager.unlock("wrong"))
    assert results[0] is True
    assert results[2] is False
    # the lock queued behind the first unlock wins over it
    assert manager.get_status().is_locked is True


@pytest.mark.asyncio
async def test_change_password_refuses_mismatched_public_key(manager: KeyManager, storage, other_key_pair) -> None:
    await manager.generate_and_store(PASSWORD)
    storage.set_many({"public_key": other_key_pair.public_key})
    snapshot = storage.get_many()

    assert await manager.change_password(PASSWORD, "n3w-secret") is False
    assert storage.get_many() == snapshot
