import pytest

from kanuka import health, lifecycle
from kanuka.keystore import Status


@pytest.fixture()
def orphaned(shared, alice, bob, as_user):
    """Delete bob's public key but leave his envelope behind."""
    context = as_user(bob)
    device_uuid = context.own_device(context.registry())
    context.keystore.public_key_path(device_uuid).unlink()
    return device_uuid


def test_access_partitions_every_uuid(shared, alice, carol, as_user):
    lifecycle.create(as_user(carol))
    keystore = as_user(alice).keystore
    keystore.put_envelope('0b2d5a9e-6f1c-4c3e-9a57-2f4f8e1b7c11', b'orphan')

    report = health.access(as_user(alice))
    uuids = [entry.uuid for entry in report.entries]
    assert len(uuids) == len(set(uuids))
    assert set(uuids) == set(keystore.list_public_key_uuids()) | set(keystore.list_envelope_uuids())
    assert report.summary == {Status.ACTIVE: 2, Status.PENDING: 1, Status.ORPHAN: 1}
    assert [entry.status for entry in report.entries] == [
        Status.ACTIVE, Status.ACTIVE, Status.PENDING, Status.ORPHAN]
    assert [entry.email for entry in report.entries[:2]] == [
        'alice@example.com', 'bob@example.com']


def test_clean_removes_orphans(orphaned, alice, as_user):
    assert health.access(as_user(alice)).count(Status.ORPHAN) == 1

    result = lifecycle.clean(as_user(alice), force=True)
    assert result.orphans == [orphaned]
    assert not as_user(alice).keystore.has_envelope(orphaned)

    report = health.access(as_user(alice))
    assert orphaned not in [entry.uuid for entry in report.entries]


def test_clean_is_idempotent(orphaned, alice, as_user):
    lifecycle.clean(as_user(alice), force=True)
    result = lifecycle.clean(as_user(alice), force=True)
    assert result.orphans == []
    assert result.removed == ()


def test_clean_confirm(orphaned, alice, as_user):
    result = lifecycle.clean(as_user(alice), confirm=lambda orphans: False)
    assert result.cancelled
    assert as_user(alice).keystore.has_envelope(orphaned)

    result = lifecycle.clean(as_user(alice), confirm=lambda orphans: True)
    assert not result.cancelled
    assert not as_user(alice).keystore.has_envelope(orphaned)


def test_clean_without_confirm_is_cancelled(orphaned, alice, as_user):
    assert lifecycle.clean(as_user(alice)).cancelled


def test_clean_dry_run(orphaned, alice, as_user, snapshot):
    before = snapshot(as_user(alice).root)
    result = lifecycle.clean(as_user(alice), dry_run=True)
    assert result.orphans == [orphaned]
    assert snapshot(as_user(alice).root) == before
