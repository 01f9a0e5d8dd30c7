"""
Operations on device names.

Renaming a device never touches a key: devices are identified by UUID in the
key store, and private keys are stored by project UUID. Only the registry and
the '[projects]' table of the user config change.
"""

import logging
import typing

import attr

from .config import ensure_user_config, save_project_config, save_user_config
from .context import Context
from .errors import (
    AmbiguousTarget,
    DeviceNameTaken,
    DeviceNotFound,
    InvalidDeviceName,
    ProjectNotInitialized,
    TargetNotFound,
)
from .utils import is_valid_device_name

log = logging.getLogger(__name__)


@attr.s(frozen=True, kw_only=True)
class RenameResult:
    old_name: str = attr.ib()
    new_name: str = attr.ib()
    device_uuid: str = attr.ib(default='')
    project_name: str = attr.ib(default='')
    registry_updated: bool = attr.ib(default=False)

    @property
    def changed(self) -> bool:
        return self.old_name != self.new_name


def _valid_name(device_name: str) -> str:
    if not is_valid_device_name(device_name):
        raise InvalidDeviceName(device_name)
    return device_name


def rename_device(
        ctx: Context,
        email: str,
        new_name: str,
        old_name: typing.Optional[str] = None) -> RenameResult:
    """
    Rename one of a user's devices in the project registry.

    old_name is only needed when the user has more than one device. If the
    device is the current user's own, their '[projects]' entry follows it.
    """
    new_name = _valid_name(new_name)
    registry = ctx.registry()
    devices = registry.devices_for_email(email)
    if not devices:
        raise TargetNotFound(email)

    if old_name:
        device_uuid = registry.find_device(email, old_name)
        if device_uuid is None:
            raise DeviceNotFound(email, old_name)
    elif len(devices) == 1:
        device_uuid = next(iter(devices))
    else:
        raise AmbiguousTarget(
            email, [d.name for d in devices.values()],
            remedy="Pass --old-name to choose one of them")

    device = devices[device_uuid]
    result = RenameResult(
        old_name=device.name,
        new_name=new_name,
        device_uuid=device_uuid,
        project_name=registry.name,
        registry_updated=device.name != new_name)
    if not result.changed:
        return result
    if registry.is_device_name_taken(email, new_name):
        raise DeviceNameTaken(new_name)

    own_device = ctx.device_uuid(registry)
    log.info(f"Renaming {device} to {new_name}")
    save_project_config(
        ctx.root, registry.with_device(device_uuid, attr.evolve(device, name=new_name)))
    if own_device == device_uuid:
        save_user_config(ctx.settings, ctx.user.with_project(registry.uuid, new_name))
    return result


def set_project_device(
        ctx: Context,
        device_name: str,
        project_uuid: typing.Optional[str] = None,
        update_registry: bool = True) -> RenameResult:
    """
    Set the device name this user uses for a project.

    The project defaults to the current one. With update_registry, the
    user's device in the current project's registry is renamed as well;
    without it only the user config changes, which is what 'create' reads
    when it names a new device.
    """
    device_name = _valid_name(device_name)
    registry = ctx.registry() if ctx.initialized else None
    if project_uuid is None:
        if registry is None:
            raise ProjectNotInitialized(remedy="Pass --project-uuid to choose a project")
        project_uuid = registry.uuid
    if registry is not None and registry.uuid != project_uuid:
        registry = None

    device_uuid = None
    if update_registry and registry is not None:
        device_uuid = ctx.device_uuid(registry)
        if device_uuid is None:
            log.warning(f"No device of yours in {registry.name}, only your config will change")
        elif registry.devices[device_uuid].name != device_name \
                and registry.is_device_name_taken(ctx.user.email, device_name):
            raise DeviceNameTaken(device_name)

    old_name = ctx.user.projects.get(project_uuid, '')
    if device_uuid is not None:
        old_name = registry.devices[device_uuid].name
    result = RenameResult(
        old_name=old_name,
        new_name=device_name,
        device_uuid=device_uuid or '',
        project_name=registry.name if registry else '',
        registry_updated=device_uuid is not None and old_name != device_name)

    if ctx.user.projects.get(project_uuid) != device_name:
        log.info(f"Setting device name for project {project_uuid} to {device_name}")
        user = ensure_user_config(ctx.settings).with_project(project_uuid, device_name)
        save_user_config(ctx.settings, user)
    if result.registry_updated:
        device = registry.devices[device_uuid]
        save_project_config(
            ctx.root, registry.with_device(device_uuid, attr.evolve(device, name=device_name)))
    return result


def set_default_device(ctx: Context, device_name: str) -> RenameResult:
    """Set the name used for devices in projects this user joins later."""
    device_name = _valid_name(device_name)
    user = ensure_user_config(ctx.settings)
    result = RenameResult(old_name=user.default_device_name, new_name=device_name)
    if result.changed:
        save_user_config(ctx.settings, attr.evolve(user, default_device_name=device_name))
    return result
