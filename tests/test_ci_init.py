import pytest

from kanuka import audit, lifecycle
from kanuka.config import Settings, UserConfig
from kanuka.context import Context
from kanuka.errors import CIAlreadyConfigured, NoAccess, TTYRequired
from kanuka.keystore import Status


def interactive():
    return True


def test_ci_init(initialized, alice, secrets, as_user, tmp_path):
    lifecycle.encrypt(as_user(alice))
    shown = []

    result = lifecycle.ci_init(as_user(alice), show_private_key=shown.append, interactive=interactive)

    assert len(shown) == 1
    assert result.email == lifecycle.CI_EMAIL
    assert result.workflow_created
    assert 'kanuka decrypt --private-key-stdin' in (initialized / result.workflow_path).read_text()
    assert as_user(alice).keystore.classify()[result.device_uuid] is Status.ACTIVE
    assert shown[0] not in b''.join(p.read_bytes() for p in initialized.rglob('*') if p.is_file())

    entry = audit.read(as_user(alice).audit_path)[-1]
    assert (entry.op, entry.target_uuid) == ('ci-init', result.device_uuid)

    (initialized / '.env').unlink()
    runner = Context(
        root=initialized,
        settings=Settings(config_dir=tmp_path / 'ci', data_dir=tmp_path / 'ci'),
        user=UserConfig(),
        private_key_data=shown[0])
    lifecycle.decrypt(runner)
    assert (initialized / '.env').read_bytes() == secrets['.env']


def test_ci_init_keeps_existing_workflow(initialized, alice, as_user):
    workflow = initialized / lifecycle.CI_WORKFLOW_PATH
    workflow.parent.mkdir(parents=True)
    workflow.write_text('custom')

    result = lifecycle.ci_init(as_user(alice), show_private_key=lambda key: None, interactive=interactive)
    assert not result.workflow_created
    assert workflow.read_text() == 'custom'


def test_ci_init_requires_tty(initialized, alice, as_user):
    with pytest.raises(TTYRequired):
        lifecycle.ci_init(as_user(alice), show_private_key=lambda key: None, interactive=lambda: False)


def test_ci_init_twice(initialized, alice, as_user):
    lifecycle.ci_init(as_user(alice), show_private_key=lambda key: None, interactive=interactive)
    with pytest.raises(CIAlreadyConfigured):
        lifecycle.ci_init(as_user(alice), show_private_key=lambda key: None, interactive=interactive)


def test_ci_init_requires_access(initialized, bob, as_user):
    lifecycle.create(as_user(bob))
    with pytest.raises(NoAccess):
        lifecycle.ci_init(as_user(bob), show_private_key=lambda key: None, interactive=interactive)


def test_ci_init_rolls_back(initialized, alice, as_user, snapshot):
    before = snapshot(initialized)

    def fail(key):
        raise KeyboardInterrupt()

    with pytest.raises(KeyboardInterrupt):
        lifecycle.ci_init(as_user(alice), show_private_key=fail, interactive=interactive)

    after = snapshot(initialized)
    assert sorted(after) == sorted(before)
    assert not as_user(alice).registry().devices_for_email(lifecycle.CI_EMAIL)
    assert not (initialized / lifecycle.CI_WORKFLOW_PATH).exists()


def test_ci_init_dry_run(initialized, alice, as_user, snapshot):
    before = snapshot(initialized)
    shown = []
    result = lifecycle.ci_init(
        as_user(alice), show_private_key=shown.append, interactive=interactive, dry_run=True)
    assert result.dry_run and result.workflow_created
    assert shown == []
    assert snapshot(initialized) == before
