import pytest

from kanuka import lifecycle
from kanuka.config import load_user_config
from kanuka.errors import (
    DeviceNameTaken,
    InvalidEmail,
    NoAccess,
    ProjectNotInitialized,
    PublicKeyExists,
)
from kanuka.keystore import Status


def test_create_is_pending(initialized, bob, as_user):
    result = lifecycle.create(as_user(bob))
    context = as_user(bob)

    assert result.email == 'bob@example.com'
    assert result.device_name == 'desktop'
    assert context.keystore.classify()[result.device_uuid] is Status.PENDING
    assert context.registry().devices[result.device_uuid].email == 'bob@example.com'
    assert load_user_config(bob).projects[context.registry().uuid] == 'desktop'

    with pytest.raises(NoAccess):
        context.content_key(context.registry())


def test_create_twice(initialized, bob, as_user):
    lifecycle.create(as_user(bob))
    with pytest.raises(PublicKeyExists):
        lifecycle.create(as_user(bob))


def test_create_force_keeps_uuid(shared, bob, as_user):
    context = as_user(bob)
    device_uuid = context.own_device(context.registry())
    old_public_key = context.keystore.public_key_path(device_uuid).read_bytes()

    result = lifecycle.create(as_user(bob), force=True)
    assert result.replaced
    assert result.removed_envelope
    assert result.device_uuid == device_uuid
    assert context.keystore.public_key_path(device_uuid).read_bytes() != old_public_key
    assert context.keystore.classify()[device_uuid] is Status.PENDING


def test_create_second_device(initialized, bob, make_user, as_user):
    lifecycle.create(as_user(bob))
    laptop = make_user('bob-laptop', 'bob@example.com', 'desktop')

    result = lifecycle.create(as_user(laptop))
    assert result.device_name == 'desktop-2'
    assert as_user(bob).registry().device_names_for_email('bob@example.com') == [
        'desktop', 'desktop-2']


def test_create_device_name_taken(initialized, bob, make_user, as_user):
    lifecycle.create(as_user(bob))
    laptop = make_user('bob-laptop', 'bob@example.com', 'laptop')
    with pytest.raises(DeviceNameTaken):
        lifecycle.create(as_user(laptop), device_name='desktop')


def test_create_invalid_email(initialized, bob, as_user):
    with pytest.raises(InvalidEmail):
        lifecycle.create(as_user(bob), email='not-an-email')


def test_create_uninitialized(project, bob, as_user):
    with pytest.raises(ProjectNotInitialized):
        lifecycle.create(as_user(bob))
