"""
The identity store: who this user is, and which devices a project trusts.

Two TOML files are involved. The user configuration lives outside any
project and records the user's email, UUID and the device name they use in
each project. The project configuration is committed at
'.kanuka/config.toml' and is the registry of every device that may hold a
copy of the project's symmetric key.
"""

import datetime
import logging
import os
import pathlib
import tomllib
import typing
import uuid

import attr
import click
import tomli_w

from .errors import InvalidProjectConfig, InvalidUserConfig, ProjectNotInitialized
from .utils import PROJECT_DIRECTORY, write_atomic

log = logging.getLogger(__name__)

CONFIG_FILE = 'config.toml'


def generate_uuid() -> str:
    return str(uuid.uuid4())


def now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)


@attr.s(frozen=True, kw_only=True)
class Settings:
    """Locations of per-user state on this machine."""

    config_dir: pathlib.Path = attr.ib(converter=pathlib.Path)
    data_dir: pathlib.Path = attr.ib(converter=pathlib.Path)

    @classmethod
    def from_environment(
            cls,
            environ: typing.Mapping[str, str] = os.environ) -> 'Settings':
        config_dir = environ.get('KANUKA_CONFIG_DIR') or click.get_app_dir('kanuka')

        data_dir = environ.get('KANUKA_DATA_DIR')
        if not data_dir:
            data_home = environ.get('XDG_DATA_HOME') or pathlib.Path.home() / '.local' / 'share'
            data_dir = pathlib.Path(data_home) / 'kanuka'

        return cls(config_dir=config_dir, data_dir=data_dir)

    @property
    def user_config_path(self) -> pathlib.Path:
        return self.config_dir / CONFIG_FILE

    @property
    def keys_dir(self) -> pathlib.Path:
        return self.data_dir / 'keys'

    def key_dir(self, project_uuid: str) -> pathlib.Path:
        return self.keys_dir / project_uuid

    def private_key_path(self, project_uuid: str) -> pathlib.Path:
        return self.key_dir(project_uuid) / 'privkey'

    def public_key_path(self, project_uuid: str) -> pathlib.Path:
        return self.key_dir(project_uuid) / 'pubkey.pub'


@attr.s(frozen=True, kw_only=True)
class UserConfig:
    email: str = attr.ib(default='')
    uuid: str = attr.ib(default='')
    name: str = attr.ib(default='')
    default_device_name: str = attr.ib(default='')
    projects: typing.Dict[str, str] = attr.ib(factory=dict)

    @classmethod
    def from_toml(cls, data: typing.Mapping[str, typing.Any]) -> 'UserConfig':
        user = data.get('user', {})
        return cls(
            email=user.get('email', ''),
            uuid=user.get('uuid', ''),
            name=user.get('name', ''),
            default_device_name=user.get('default_device_name', ''),
            projects={str(k): str(v) for k, v in data.get('projects', {}).items()})

    def to_toml(self) -> typing.Dict[str, typing.Any]:
        user = {
            'email': self.email,
            'uuid': self.uuid,
            'name': self.name,
            'default_device_name': self.default_device_name,
        }
        return {
            'user': {k: v for k, v in user.items() if v},
            'projects': dict(sorted(self.projects.items())),
        }

    def with_project(self, project_uuid: str, device_name: str) -> 'UserConfig':
        return attr.evolve(self, projects={**self.projects, project_uuid: device_name})

    def without_project(self, project_uuid: str) -> 'UserConfig':
        projects = {k: v for k, v in self.projects.items() if k != project_uuid}
        return attr.evolve(self, projects=projects)


def load_user_config(settings: Settings) -> UserConfig:
    path = settings.user_config_path
    if not path.exists():
        log.debug(f"No user config at {path}")
        return UserConfig()

    try:
        with path.open('rb') as file:
            return UserConfig.from_toml(tomllib.load(file))
    except tomllib.TOMLDecodeError as error:
        raise InvalidUserConfig(
            f"{path} is not valid TOML: {error}",
            remedy=f"Fix or remove {path}") from error
    except (TypeError, AttributeError) as error:
        raise InvalidUserConfig(
            f"{path} has an unexpected structure: {error}",
            remedy=f"Fix or remove {path}") from error


def save_user_config(settings: Settings, config: UserConfig) -> None:
    log.debug(f"Saving user config to {settings.user_config_path}")
    write_atomic(settings.user_config_path, tomli_w.dumps(config.to_toml()).encode())


def ensure_user_config(settings: Settings) -> UserConfig:
    """Load the user config, assigning a user UUID the first time."""
    config = load_user_config(settings)
    if not config.uuid:
        config = attr.evolve(config, uuid=generate_uuid())
        save_user_config(settings, config)
    return config


@attr.s(frozen=True, kw_only=True)
class Device:
    email: str = attr.ib()
    name: str = attr.ib()
    created_at: datetime.datetime = attr.ib(factory=now)

    def __str__(self):
        return f"{self.email} ({self.name})"


@attr.s(frozen=True, kw_only=True)
class ProjectConfig:
    """The registry of devices trusted by a project, keyed by device UUID."""

    uuid: str = attr.ib()
    name: str = attr.ib()
    devices: typing.Dict[str, Device] = attr.ib(factory=dict)

    @classmethod
    def from_toml(cls, data: typing.Mapping[str, typing.Any]) -> 'ProjectConfig':
        project = data['project']
        devices = {}
        for device_uuid, device in data.get('devices', {}).items():
            created_at = device.get('created_at') or now()
            if isinstance(created_at, str):
                created_at = datetime.datetime.fromisoformat(created_at)
            devices[device_uuid] = Device(
                email=device['email'],
                name=device.get('name', ''),
                created_at=created_at)
        return cls(uuid=project['uuid'], name=project['name'], devices=devices)

    def to_toml(self) -> typing.Dict[str, typing.Any]:
        return {
            'project': {'uuid': self.uuid, 'name': self.name},
            'users': {k: d.email for k, d in sorted(self.devices.items())},
            'devices': {k: {
                'email': d.email,
                'name': d.name,
                'created_at': d.created_at,
            } for k, d in sorted(self.devices.items())},
        }

    def devices_for_email(self, email: str) -> typing.Dict[str, Device]:
        return {k: d for k, d in self.devices.items() if d.email.lower() == email.lower()}

    def device_names_for_email(self, email: str) -> typing.List[str]:
        return sorted(d.name for d in self.devices_for_email(email).values())

    def find_device(self, email: str, name: str) -> typing.Optional[str]:
        for device_uuid, device in self.devices_for_email(email).items():
            if device.name == name:
                return device_uuid
        return None

    def is_device_name_taken(self, email: str, name: str) -> bool:
        return self.find_device(email, name) is not None

    def with_device(self, device_uuid: str, device: Device) -> 'ProjectConfig':
        return attr.evolve(self, devices={**self.devices, device_uuid: device})

    def without_devices(self, device_uuids: typing.Iterable[str]) -> 'ProjectConfig':
        removed = set(device_uuids)
        devices = {k: d for k, d in self.devices.items() if k not in removed}
        return attr.evolve(self, devices=devices)


def project_config_path(root: pathlib.Path) -> pathlib.Path:
    return root / PROJECT_DIRECTORY / CONFIG_FILE


def load_project_config(root: pathlib.Path) -> ProjectConfig:
    path = project_config_path(root)
    if not path.exists():
        raise ProjectNotInitialized()

    log.debug(f"Loading project config from {path}")
    try:
        with path.open('rb') as file:
            return ProjectConfig.from_toml(tomllib.load(file))
    except tomllib.TOMLDecodeError as error:
        raise InvalidProjectConfig(f"{path} is not valid TOML: {error}") from error
    except (KeyError, TypeError, ValueError, AttributeError) as error:
        raise InvalidProjectConfig(f"{path} is missing required fields: {error}") from error


def save_project_config(root: pathlib.Path, config: ProjectConfig) -> None:
    path = project_config_path(root)
    log.debug(f"Saving project config with {len(config.devices)} devices to {path}")
    write_atomic(path, tomli_w.dumps(config.to_toml()).encode(), mode=0o644)
