import pathlib
import typing

import click.testing
import pytest

import kanuka.cli
from kanuka import lifecycle
from kanuka.config import Settings, UserConfig, generate_uuid, save_user_config
from kanuka.context import Context

Snapshot = typing.Dict[str, typing.Tuple[bytes, int]]


def make_settings(directory: pathlib.Path, email: str, device_name: str) -> Settings:
    settings = Settings(config_dir=directory / 'config', data_dir=directory / 'data')
    save_user_config(settings, UserConfig(
        email=email,
        uuid=generate_uuid(),
        default_device_name=device_name))
    return settings


def take_snapshot(*directories: pathlib.Path) -> Snapshot:
    """Every file under some directories, with its contents and mtime."""
    files = {}
    for directory in directories:
        for path in sorted(directory.rglob('*')):
            if path.is_file():
                files[path.as_posix()] = (path.read_bytes(), path.stat().st_mtime_ns)
    return files


@pytest.fixture()
def project(tmp_path) -> pathlib.Path:
    path = tmp_path / 'project'
    path.mkdir()
    return path


@pytest.fixture()
def make_user(tmp_path):
    def make_user_func(name: str, email: str, device_name: str) -> Settings:
        return make_settings(tmp_path / 'users' / name, email, device_name)

    return make_user_func


@pytest.fixture()
def alice(make_user) -> Settings:
    return make_user('alice', 'alice@example.com', 'laptop')


@pytest.fixture()
def bob(make_user) -> Settings:
    return make_user('bob', 'bob@example.com', 'desktop')


@pytest.fixture()
def carol(make_user) -> Settings:
    return make_user('carol', 'carol@example.com', 'workstation')


@pytest.fixture()
def as_user(project):
    def as_user_func(settings: Settings, **kwargs) -> Context:
        return Context.load(project, settings, **kwargs)

    return as_user_func


@pytest.fixture()
def initialized(project, alice, as_user) -> pathlib.Path:
    lifecycle.init(as_user(alice), project_name='example')
    return project


@pytest.fixture()
def shared(initialized, alice, bob, as_user) -> pathlib.Path:
    """A project that alice and bob both have access to."""
    lifecycle.create(as_user(bob))
    lifecycle.register(as_user(alice), email='bob@example.com')
    return initialized


@pytest.fixture()
def secrets(project) -> typing.Dict[str, bytes]:
    files = {
        '.env': b'API_KEY=one\n',
        'services/api/.env.production': b'API_KEY=two\nDEBUG=false\n',
        'services/web/.env.local': b'TOKEN=three\n',
    }
    for name, contents in files.items():
        path = project / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(contents)
    return files


@pytest.fixture()
def invoke(project, alice, monkeypatch):
    monkeypatch.setenv('KANUKA_CONFIG_DIR', str(alice.config_dir))
    monkeypatch.setenv('KANUKA_DATA_DIR', str(alice.data_dir))

    def invoke_func(
            arguments: typing.Sequence[str],
            input: typing.Optional[typing.Union[str, bytes]] = None,
            exit_code: int = 0) -> typing.List[str]:
        assert all(isinstance(arg, str) for arg in arguments)
        runner = click.testing.CliRunner()
        result = runner.invoke(kanuka.cli.main, ['-p', str(project), *arguments], input=input)
        if result.exit_code != exit_code:
            message = f"Command kanuka {' '.join(arguments)} exited with {result.exit_code}"
            raise Exception(f"{message}\n{result.output}") from result.exception
        return result.output.splitlines()

    return invoke_func


@pytest.fixture()
def snapshot():
    return take_snapshot
