import pytest

from kanuka import audit, crypto, lifecycle
from kanuka.errors import KeyDecryptFailed, NoAccess


def test_rotate_keeps_symmetric_key(shared, alice, bob, as_user):
    context = as_user(alice)
    registry = context.registry()
    device_uuid = context.own_device(registry)
    content_key = context.content_key(registry)
    old_private_key = context.private_key(registry)
    bob_envelope = context.keystore.get_envelope(as_user(bob).own_device(registry))

    result = lifecycle.rotate(as_user(alice))
    assert result.device_uuid == device_uuid
    assert result.device_name == 'laptop'

    assert as_user(alice).content_key(registry) == content_key
    assert context.keystore.get_envelope(as_user(bob).own_device(registry)) == bob_envelope
    with pytest.raises(KeyDecryptFailed):
        crypto.unwrap_key(context.keystore.get_envelope(device_uuid), old_private_key)


def test_rotate_dry_run(shared, alice, as_user, snapshot):
    before = snapshot(shared, alice.data_dir)
    assert lifecycle.rotate(as_user(alice), dry_run=True).dry_run
    assert snapshot(shared, alice.data_dir) == before


def test_rotate_requires_access(initialized, bob, as_user):
    lifecycle.create(as_user(bob))
    with pytest.raises(NoAccess):
        lifecycle.rotate(as_user(bob))


def test_rotate_audit(shared, alice, as_user):
    lifecycle.rotate(as_user(alice))
    entry = audit.read(as_user(alice).audit_path)[-1]
    assert (entry.op, entry.device_name) == ('rotate', 'laptop')
