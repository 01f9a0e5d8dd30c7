import pytest

from kanuka import devices, lifecycle
from kanuka.config import load_user_config
from kanuka.errors import (
    AmbiguousTarget,
    DeviceNameTaken,
    DeviceNotFound,
    InvalidDeviceName,
    ProjectNotInitialized,
    TargetNotFound,
)


def test_rename_own_device(initialized, alice, as_user):
    context = as_user(alice)
    content_key = context.content_key(context.registry())

    result = devices.rename_device(context, email='alice@example.com', new_name='desktop')
    assert (result.old_name, result.new_name) == ('laptop', 'desktop')

    context = as_user(alice)
    registry = context.registry()
    assert registry.device_names_for_email('alice@example.com') == ['desktop']
    assert context.user.projects[registry.uuid] == 'desktop'
    assert context.content_key(registry) == content_key


def test_rename_other_device(shared, alice, bob, as_user):
    devices.rename_device(as_user(alice), email='bob@example.com', new_name='tower')

    registry = as_user(alice).registry()
    assert registry.device_names_for_email('bob@example.com') == ['tower']
    assert as_user(alice).user.projects[registry.uuid] == 'laptop'
    assert as_user(bob).content_key(registry) == as_user(alice).content_key(registry)


def test_rename_unchanged(initialized, alice, as_user, snapshot):
    before = snapshot(initialized)
    result = devices.rename_device(as_user(alice), email='alice@example.com', new_name='laptop')
    assert not result.changed
    assert snapshot(initialized) == before


def test_rename_needs_old_name(initialized, bob, make_user, as_user):
    lifecycle.create(as_user(bob))
    lifecycle.create(as_user(make_user('bob-laptop', 'bob@example.com', 'laptop')))

    with pytest.raises(AmbiguousTarget):
        devices.rename_device(as_user(bob), email='bob@example.com', new_name='tower')

    devices.rename_device(as_user(bob), email='bob@example.com', new_name='tower', old_name='desktop')
    assert as_user(bob).registry().device_names_for_email('bob@example.com') == ['laptop', 'tower']

    with pytest.raises(DeviceNameTaken):
        devices.rename_device(
            as_user(bob), email='bob@example.com', new_name='laptop', old_name='tower')


@pytest.mark.parametrize('kwargs,error', [
    ({'email': 'nobody@example.com', 'new_name': 'tower'}, TargetNotFound),
    ({'email': 'alice@example.com', 'new_name': 'tower', 'old_name': 'tablet'}, DeviceNotFound),
    ({'email': 'alice@example.com', 'new_name': 'my laptop'}, InvalidDeviceName),
])
def test_rename_errors(initialized, alice, as_user, kwargs, error):
    with pytest.raises(error):
        devices.rename_device(as_user(alice), **kwargs)


def test_set_project_device(initialized, alice, as_user):
    result = devices.set_project_device(as_user(alice), 'tablet')
    assert result.registry_updated
    assert result.project_name == 'example'

    context = as_user(alice)
    registry = context.registry()
    assert registry.device_names_for_email('alice@example.com') == ['tablet']
    assert context.user.projects[registry.uuid] == 'tablet'
    assert context.device_uuid(registry) is not None


def test_set_device_name_only_changes_config(initialized, alice, as_user):
    result = devices.set_project_device(as_user(alice), 'tablet', update_registry=False)
    assert not result.registry_updated
    assert as_user(alice).registry().device_names_for_email('alice@example.com') == ['laptop']
    assert as_user(alice).user.projects[as_user(alice).registry().uuid] == 'tablet'


def test_set_device_name_for_other_project(project, alice, as_user):
    project_uuid = '550e8400-e29b-41d4-a716-446655440000'
    with pytest.raises(ProjectNotInitialized):
        devices.set_project_device(as_user(alice), 'tablet')

    devices.set_project_device(as_user(alice), 'tablet', project_uuid=project_uuid)
    assert load_user_config(alice).projects[project_uuid] == 'tablet'


def test_set_default_device(alice, as_user):
    result = devices.set_default_device(as_user(alice), 'tablet')
    assert (result.old_name, result.new_name) == ('laptop', 'tablet')
    assert load_user_config(alice).default_device_name == 'tablet'
    assert not devices.set_default_device(as_user(alice), 'tablet').changed
