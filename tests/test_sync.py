import pytest

from kanuka import audit, crypto, lifecycle
from kanuka.errors import DecryptFailed


@pytest.fixture()
def encrypted(shared, alice, secrets, as_user):
    lifecycle.encrypt(as_user(alice))
    return shared


def test_sync_preserves_plaintext(encrypted, alice, bob, secrets, as_user):
    old_key = as_user(alice).content_key(as_user(alice).registry())

    result = lifecycle.sync(as_user(alice))
    assert len(result.devices) == 2
    assert len(result.files) == 3

    registry = as_user(bob).registry()
    new_key = as_user(bob).content_key(registry)
    assert new_key != old_key
    assert as_user(alice).content_key(registry) == new_key

    for name, contents in secrets.items():
        ciphertext = (encrypted / f'{name}.kanuka').read_bytes()
        assert crypto.decrypt_content(new_key, ciphertext) == contents
        with pytest.raises(DecryptFailed):
            crypto.decrypt_content(old_key, ciphertext)


def test_sync_skips_pending_devices(encrypted, alice, carol, as_user):
    created = lifecycle.create(as_user(carol))
    result = lifecycle.sync(as_user(alice))
    assert created.device_uuid not in result.devices
    assert not as_user(alice).keystore.has_envelope(created.device_uuid)


def test_sync_dry_run(encrypted, alice, as_user, snapshot):
    before = snapshot(encrypted)
    result = lifecycle.sync(as_user(alice), dry_run=True)
    assert result.dry_run
    assert len(result.files) == 3
    assert snapshot(encrypted) == before


def test_sync_audit(encrypted, alice, as_user):
    lifecycle.sync(as_user(alice))
    entry = audit.read(as_user(alice).audit_path)[-1]
    assert (entry.op, entry.users_count, entry.files_count) == ('sync', 2, 3)
