"""
Operations that change who can read a project's secrets.

Each operation takes a Context and keyword arguments, checks every
precondition before its first write, and returns a frozen result describing
what it did (or, with dry_run, what it would do). Nothing here prints or
prompts: where a decision is needed the caller passes a confirm callback.
"""

import logging
import pathlib
import shutil
import typing

import attr

from . import audit, crypto
from .config import (
    Device,
    ProjectConfig,
    Settings,
    UserConfig,
    ensure_user_config,
    generate_uuid,
    save_project_config,
    save_user_config,
)
from .context import Context
from .errors import (
    AmbiguousTarget,
    CIAlreadyConfigured,
    DeviceNameTaken,
    DeviceNotFound,
    FileNotFound,
    InvalidDeviceName,
    InvalidEmail,
    InvalidFileType,
    NoAccess,
    NoFilesFound,
    PublicKeyExists,
    TargetNotFound,
    TTYRequired,
    UserNotConfigured,
)
from .keystore import ENVELOPE_SUFFIX, PUBLIC_KEY_SUFFIX, KeyStore, Status
from .secrets import Secret, Transfer
from .spells import kanuka
from .utils import (
    generate_device_name,
    is_tty_available,
    is_uuid,
    is_valid_device_name,
    is_valid_email,
    write_atomic,
)

log = logging.getLogger(__name__)

CI_EMAIL = '41898282+github-actions[bot]@users.noreply.github.com'
CI_DEVICE_NAME = 'github-actions'
CI_WORKFLOW_PATH = pathlib.Path('.github/workflows/kanuka-decrypt.yml')
CI_WORKFLOW = """\
# Kānuka secrets for GitHub Actions
# Generated by: kanuka ci-init
#
# Decrypts the project's .kanuka files so later steps can use them.
# Store the private key shown by 'kanuka ci-init' as the KANUKA_PRIVATE_KEY
# repository secret, then adjust the trigger and add your own steps.

name: Kanuka Secrets Example

on: [pull_request]

jobs:
  example:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v4

      - uses: actions/setup-python@v5
        with:
          python-version: '3.12'

      - name: Install Kanuka
        run: pip install kanuka

      - name: Decrypt secrets
        env:
          KANUKA_PRIVATE_KEY: ${{ secrets.KANUKA_PRIVATE_KEY }}
        run: printenv KANUKA_PRIVATE_KEY | kanuka decrypt --private-key-stdin

      - name: Use secrets
        run: |
          source .env
          echo "Secrets are now available as environment variables"
"""

Confirm = typing.Callable[[typing.Sequence[typing.Any]], bool]
ShowPrivateKey = typing.Callable[[bytes], None]


@attr.s(frozen=True, kw_only=True)
class InitResult:
    already_initialized: bool = attr.ib(default=False)
    project_uuid: str = attr.ib(default='')
    project_name: str = attr.ib(default='')
    device_uuid: str = attr.ib(default='')
    device_name: str = attr.ib(default='')
    private_key_path: typing.Optional[pathlib.Path] = attr.ib(default=None)


@attr.s(frozen=True, kw_only=True)
class CreateResult:
    email: str = attr.ib()
    device_uuid: str = attr.ib()
    device_name: str = attr.ib()
    public_key_path: pathlib.Path = attr.ib()
    private_key_path: pathlib.Path = attr.ib()
    replaced: bool = attr.ib(default=False)
    removed_envelope: bool = attr.ib(default=False)


@attr.s(frozen=True, kw_only=True)
class RegisterResult:
    email: str = attr.ib()
    device_uuid: str = attr.ib()
    device_name: str = attr.ib()
    already_active: bool = attr.ib()
    created: typing.Sequence[pathlib.Path] = attr.ib(default=())
    updated: typing.Sequence[pathlib.Path] = attr.ib(default=())
    dry_run: bool = attr.ib(default=False)


@attr.s(frozen=True, kw_only=True)
class RevokeResult:
    cancelled: bool = attr.ib(default=False)
    email: str = attr.ib(default='')
    devices: typing.Dict[str, typing.Optional[Device]] = attr.ib(factory=dict)
    removed: typing.Sequence[pathlib.Path] = attr.ib(default=())
    remaining: typing.Sequence[str] = attr.ib(default=())
    reencrypted: typing.Sequence[pathlib.Path] = attr.ib(default=())
    unreadable: typing.Sequence[pathlib.Path] = attr.ib(default=())
    self_revoked: bool = attr.ib(default=False)
    dry_run: bool = attr.ib(default=False)


@attr.s(frozen=True, kw_only=True)
class RotateResult:
    device_uuid: str = attr.ib()
    device_name: str = attr.ib()
    public_key_path: pathlib.Path = attr.ib()
    private_key_path: pathlib.Path = attr.ib()
    dry_run: bool = attr.ib(default=False)


@attr.s(frozen=True, kw_only=True)
class SyncResult:
    devices: typing.Sequence[str] = attr.ib()
    files: typing.Sequence[pathlib.Path] = attr.ib()
    dry_run: bool = attr.ib(default=False)


@attr.s(frozen=True, kw_only=True)
class CleanResult:
    orphans: typing.Sequence[str] = attr.ib(default=())
    removed: typing.Sequence[pathlib.Path] = attr.ib(default=())
    cancelled: bool = attr.ib(default=False)
    dry_run: bool = attr.ib(default=False)


@attr.s(frozen=True, kw_only=True)
class TransferResult:
    transfers: typing.Sequence[Transfer] = attr.ib()
    dry_run: bool = attr.ib(default=False)

    @property
    def overwrites(self) -> typing.List[Transfer]:
        return [t for t in self.transfers if t.overwrites]


@attr.s(frozen=True, kw_only=True)
class CIInitResult:
    email: str = attr.ib()
    device_uuid: str = attr.ib()
    device_name: str = attr.ib()
    workflow_path: pathlib.Path = attr.ib()
    workflow_created: bool = attr.ib()
    dry_run: bool = attr.ib(default=False)


@attr.s(frozen=True, kw_only=True)
class Rekey:
    """A new symmetric key wrapped for some devices, with files re-encrypted under it."""

    envelopes: typing.Dict[str, bytes] = attr.ib()
    ciphertexts: typing.Dict[Secret, bytes] = attr.ib()
    unreadable: typing.Sequence[pathlib.Path] = attr.ib(default=())

    @classmethod
    def prepare(
            cls,
            ctx: Context,
            old_key: bytes,
            device_uuids: typing.Iterable[str],
            skip_unreadable: bool = False) -> 'Rekey':
        new_key = crypto.generate_content_key()
        keystore = ctx.keystore
        envelopes = {
            uuid: crypto.wrap_key(new_key, keystore.get_public_key(uuid))
            for uuid in device_uuids
        }
        ciphertexts, unreadable = kanuka(ctx.root).reencrypt(
            old_key, new_key, skip_unreadable=skip_unreadable)
        return cls(envelopes=envelopes, ciphertexts=ciphertexts, unreadable=unreadable)

    @property
    def files(self) -> typing.List[pathlib.Path]:
        return sorted(secret.encrypted for secret in self.ciphertexts)

    def commit(self, keystore: KeyStore) -> None:
        for uuid, envelope in self.envelopes.items():
            keystore.put_envelope(uuid, envelope)
        for secret, ciphertext in self.ciphertexts.items():
            log.debug(f"Re-encrypting {secret.encrypted}")
            write_atomic(secret.encrypted, ciphertext, mode=0o644)


def _require_email(email: typing.Optional[str]) -> str:
    if not email:
        raise UserNotConfigured()
    if not is_valid_email(email):
        raise InvalidEmail(email)
    return email


def _target_email(email: typing.Optional[str]) -> str:
    if not email or not is_valid_email(email):
        raise InvalidEmail(email or '')
    return email


def _require_device_name(device_name: str) -> str:
    if not is_valid_device_name(device_name):
        raise InvalidDeviceName(device_name)
    return device_name


def _store_keypair(
        settings: Settings,
        project_uuid: str,
        public_key: crypto.PublicKey,
        private_key: crypto.PrivateKey) -> pathlib.Path:
    """Write a device keypair to this user's data directory, outside any project."""
    path = settings.private_key_path(project_uuid)
    log.debug(f"Writing private key to {path}")
    write_atomic(path, crypto.serialize_private_key(private_key), mode=0o600)
    write_atomic(
        settings.public_key_path(project_uuid),
        crypto.serialize_public_key(public_key),
        mode=0o644)
    return path


def _record(ctx: Context, op: str, user: typing.Optional[UserConfig] = None, **fields) -> None:
    audit.record(ctx.audit_path, user or ctx.user, op, **fields)


def init(
        ctx: Context,
        project_name: typing.Optional[str] = None,
        device_name: typing.Optional[str] = None) -> InitResult:
    """Create '.kanuka/' with a single active device for the current user."""
    if ctx.initialized:
        log.info(f"{ctx.directory} already exists")
        return InitResult(already_initialized=True)

    email = _require_email(ctx.user.email)
    device_name = _require_device_name(
        device_name or ctx.user.default_device_name or generate_device_name(()))
    project_name = project_name or ctx.root.name

    project_uuid = generate_uuid()
    device_uuid = generate_uuid()
    public_key, private_key = crypto.generate_device_keypair()
    content_key = crypto.generate_content_key()
    registry = ProjectConfig(
        uuid=project_uuid,
        name=project_name,
        devices={device_uuid: Device(email=email, name=device_name)})

    log.info(f"Initializing project {project_name} in {ctx.root}")
    keystore = ctx.keystore
    try:
        keystore.create()
        keystore.put_public_key(device_uuid, crypto.serialize_public_key(public_key))
        keystore.put_envelope(device_uuid, crypto.wrap_key(content_key, public_key))
        save_project_config(ctx.root, registry)
        private_key_path = _store_keypair(ctx.settings, project_uuid, public_key, private_key)
    except BaseException:
        log.warning(f"Removing partially initialized {ctx.directory}")
        shutil.rmtree(ctx.directory, ignore_errors=True)
        raise

    user = ensure_user_config(ctx.settings).with_project(project_uuid, device_name)
    save_user_config(ctx.settings, user)

    _record(ctx, 'init', user, project_name=project_name, project_uuid=project_uuid)
    return InitResult(
        project_uuid=project_uuid,
        project_name=project_name,
        device_uuid=device_uuid,
        device_name=device_name,
        private_key_path=private_key_path)


def create(
        ctx: Context,
        email: typing.Optional[str] = None,
        device_name: typing.Optional[str] = None,
        force: bool = False) -> CreateResult:
    """
    Generate a keypair for this machine and publish its public key.

    The new device is pending until someone with access registers it. With
    force, an existing device for this machine keeps its UUID but gets a new
    keypair, and its envelope (which the new key could not open) is removed.
    """
    registry = ctx.registry()
    email = _require_email(email or ctx.user.email)

    current_name = ctx.user.projects.get(registry.uuid)
    existing = registry.find_device(email, current_name) if current_name else None
    if existing is not None and not force:
        raise PublicKeyExists()

    if existing is not None:
        device_uuid = existing
        if device_name and device_name != current_name:
            if registry.is_device_name_taken(email, device_name):
                raise DeviceNameTaken(device_name)
        device_name = device_name or current_name
    else:
        device_uuid = generate_uuid()
        taken = registry.device_names_for_email(email)
        if device_name:
            if device_name in taken:
                raise DeviceNameTaken(device_name)
        else:
            device_name = generate_device_name(taken, ctx.user.default_device_name or None)
    device_name = _require_device_name(device_name)

    public_key, private_key = crypto.generate_device_keypair()
    keystore = ctx.keystore

    log.info(f"Creating device {device_name} for {email}")
    public_key_path = keystore.put_public_key(
        device_uuid, crypto.serialize_public_key(public_key))
    removed_envelope = existing is not None and keystore.delete_envelope(device_uuid)
    save_project_config(ctx.root, registry.with_device(
        device_uuid, Device(email=email, name=device_name)))
    private_key_path = _store_keypair(ctx.settings, registry.uuid, public_key, private_key)

    user = ensure_user_config(ctx.settings)
    if not user.email:
        user = attr.evolve(user, email=email)
    user = user.with_project(registry.uuid, device_name)
    save_user_config(ctx.settings, user)

    _record(ctx, 'create', user, device_name=device_name, target_uuid=device_uuid)
    return CreateResult(
        email=email,
        device_uuid=device_uuid,
        device_name=device_name,
        public_key_path=public_key_path,
        private_key_path=private_key_path,
        replaced=existing is not None,
        removed_envelope=removed_envelope)


def _register_target(
        ctx: Context,
        registry: ProjectConfig,
        email: typing.Optional[str],
        device_name: typing.Optional[str],
        public_key_path: typing.Optional[pathlib.Path],
        public_key_text: typing.Optional[str],
) -> typing.Tuple[str, Device, typing.Optional[bytes]]:
    """
    Resolve a register target to (device UUID, device, public key to write).

    The public key is None when the project already holds it.
    """
    if public_key_text is not None:
        email = _target_email(email)
        public_key = crypto.load_public_key(public_key_text)
        device_name = _require_device_name(
            device_name or generate_device_name(registry.device_names_for_email(email)))
        device_uuid = registry.find_device(email, device_name) or generate_uuid()
        return device_uuid, Device(email=email, name=device_name), \
            crypto.serialize_public_key(public_key)

    if public_key_path is not None:
        path = pathlib.Path(public_key_path)
        device_uuid = path.name[:-len(PUBLIC_KEY_SUFFIX)]
        if not path.name.endswith(PUBLIC_KEY_SUFFIX) or not is_uuid(device_uuid):
            raise InvalidFileType(
                f"{path.name} is not named <uuid>{PUBLIC_KEY_SUFFIX}",
                remedy="Pass the .pub file created by 'kanuka create'")
        if not path.is_file():
            raise FileNotFound(path)
        public_key = crypto.load_public_key(path.read_bytes())

        device = registry.devices.get(device_uuid)
        if device is None:
            email = _target_email(email)
            device = Device(email=email, name=_require_device_name(
                device_name or generate_device_name(registry.device_names_for_email(email))))
        return device_uuid, device, crypto.serialize_public_key(public_key)

    if not email:
        raise TargetNotFound(remedy="Pass --user, --file or --pubkey to choose who to register")

    devices = registry.devices_for_email(email)
    if not devices:
        raise TargetNotFound(email)
    if device_name:
        device_uuid = registry.find_device(email, device_name)
        if device_uuid is None:
            raise DeviceNotFound(email, device_name)
    elif len(devices) > 1:
        raise AmbiguousTarget(email, [d.name for d in devices.values()])
    else:
        device_uuid = next(iter(devices))

    if not ctx.keystore.has_public_key(device_uuid):
        raise TargetNotFound(
            f"The public key of {registry.devices[device_uuid]}",
            remedy="Ask them to run 'kanuka create' again")
    return device_uuid, registry.devices[device_uuid], None


def register(
        ctx: Context,
        email: typing.Optional[str] = None,
        device_name: typing.Optional[str] = None,
        public_key_path: typing.Optional[pathlib.Path] = None,
        public_key_text: typing.Optional[str] = None,
        dry_run: bool = False) -> RegisterResult:
    """
    Give a device access by wrapping the symmetric key for its public key.

    The target is found by email (and device name, if the email has several
    devices), by a '<uuid>.pub' file, or by public key text plus an email.
    """
    registry = ctx.registry()
    device_uuid, device, public_key = _register_target(
        ctx, registry, email, device_name, public_key_path, public_key_text)

    content_key = ctx.content_key(registry)
    keystore = ctx.keystore
    target_key = (crypto.load_public_key(public_key) if public_key is not None
                  else keystore.get_public_key(device_uuid))
    envelope = crypto.wrap_key(content_key, target_key)

    already_active = keystore.has_envelope(device_uuid)
    created, updated = [], []
    write_public_key = public_key is not None and (
        not keystore.has_public_key(device_uuid)
        or keystore.public_key_path(device_uuid).read_bytes() != public_key)
    if write_public_key:
        path = keystore.public_key_path(device_uuid)
        (updated if path.exists() else created).append(path)
    (updated if already_active else created).append(keystore.envelope_path(device_uuid))
    new_device = device_uuid not in registry.devices

    result = RegisterResult(
        email=device.email,
        device_uuid=device_uuid,
        device_name=device.name,
        already_active=already_active,
        created=created,
        updated=updated,
        dry_run=dry_run)
    if dry_run:
        return result

    log.info(f"Registering {device} ({device_uuid})")
    if write_public_key:
        keystore.put_public_key(device_uuid, public_key)
    keystore.put_envelope(device_uuid, envelope)
    if new_device:
        save_project_config(ctx.root, registry.with_device(device_uuid, device))

    _record(ctx, 'register', target_user=device.email, target_uuid=device_uuid)
    return result


def _revoke_targets(
        ctx: Context,
        registry: ProjectConfig,
        email: typing.Optional[str],
        device_name: typing.Optional[str],
        envelope_path: typing.Optional[pathlib.Path],
) -> typing.Tuple[str, typing.Dict[str, typing.Optional[Device]]]:
    if envelope_path is not None:
        path = pathlib.Path(envelope_path)
        device_uuid = path.name[:-len(ENVELOPE_SUFFIX)]
        if not path.name.endswith(ENVELOPE_SUFFIX) or not is_uuid(device_uuid):
            raise InvalidFileType(
                f"{path.name} is not named <uuid>{ENVELOPE_SUFFIX}",
                remedy="Pass a file from .kanuka/secrets/")
        keystore = ctx.keystore
        if path.resolve().parent != keystore.secrets.resolve():
            raise InvalidFileType(
                f"{path} is not in {keystore.secrets}",
                remedy="Pass a file from .kanuka/secrets/")
        if not path.is_file() and not keystore.has_public_key(device_uuid) \
                and device_uuid not in registry.devices:
            raise FileNotFound(path)
        device = registry.devices.get(device_uuid)
        return (device.email if device else ''), {device_uuid: device}

    if not email:
        raise TargetNotFound(remedy="Pass --user or --file to choose who to revoke")

    devices = registry.devices_for_email(email)
    if not devices:
        raise TargetNotFound(email)
    if device_name:
        device_uuid = registry.find_device(email, device_name)
        if device_uuid is None:
            raise DeviceNotFound(email, device_name)
        return email, {device_uuid: devices[device_uuid]}
    return email, dict(devices)


def revoke(
        ctx: Context,
        email: typing.Optional[str] = None,
        device_name: typing.Optional[str] = None,
        envelope_path: typing.Optional[pathlib.Path] = None,
        yes: bool = False,
        confirm: typing.Optional[Confirm] = None,
        dry_run: bool = False) -> RevokeResult:
    """
    Remove devices from a project and re-key it for everyone who is left.

    The target devices' public keys and envelopes are deleted and they are
    removed from the registry. If any active devices remain, a new symmetric
    key is wrapped for each of them and every encrypted file is re-encrypted
    under it, so the revoked devices cannot read anything committed later.
    Files the current key cannot decrypt do not stop the revocation: they are
    left untouched and listed in the result's unreadable files.
    When an email has several devices and no device name was given, confirm
    is called with the devices first unless yes is set.
    """
    registry = ctx.registry()
    email, targets = _revoke_targets(ctx, registry, email, device_name, envelope_path)

    if len(targets) > 1 and not yes and not dry_run:
        if confirm is None or not confirm(sorted(targets.values(), key=lambda d: d.name)):
            log.info(f"Revoking {email} was cancelled")
            return RevokeResult(cancelled=True, email=email, devices=targets)

    keystore = ctx.keystore
    removed = [path for uuid in targets for path in (
        keystore.public_key_path(uuid), keystore.envelope_path(uuid)) if path.exists()]
    remaining = [uuid for uuid in keystore.uuids_with_status(Status.ACTIVE)
                 if uuid not in targets]

    own_device = ctx.own_device(registry)
    rekey = None
    if remaining:
        rekey = Rekey.prepare(
            ctx, ctx.content_key(registry), remaining, skip_unreadable=True)

    result = RevokeResult(
        email=email,
        devices=targets,
        removed=removed,
        remaining=remaining,
        reencrypted=rekey.files if rekey else (),
        unreadable=rekey.unreadable if rekey else (),
        self_revoked=own_device in targets,
        dry_run=dry_run)
    if dry_run:
        return result

    for uuid, device in targets.items():
        log.info(f"Revoking {device or uuid}")
        keystore.delete_public_key(uuid)
        keystore.delete_envelope(uuid)
    save_project_config(ctx.root, registry.without_devices(targets))
    if result.self_revoked and registry.uuid in ctx.user.projects:
        save_user_config(ctx.settings, ctx.user.without_project(registry.uuid))
    if rekey is not None:
        log.info(f"Re-keying for {len(remaining)} remaining devices")
        rekey.commit(keystore)

    names = [d.name for d in targets.values() if d is not None]
    _record(
        ctx, 'revoke',
        target_user=email,
        target_uuid=next(iter(targets)) if len(targets) == 1 else '',
        device=names[0] if len(names) == 1 else '',
        removed_count=len(removed),
        users_count=len(remaining))
    return result


def rotate(ctx: Context, dry_run: bool = False) -> RotateResult:
    """
    Replace this device's keypair without changing the symmetric key.

    Nothing else in the project changes: the same symmetric key is wrapped
    for the new public key, and the old private key stops working.
    """
    registry = ctx.registry()
    device_uuid = ctx.own_device(registry)
    if device_uuid is None:
        raise NoAccess()
    content_key = ctx.content_key(registry)

    public_key, private_key = crypto.generate_device_keypair()
    envelope = crypto.wrap_key(content_key, public_key)

    keystore = ctx.keystore
    device = registry.devices.get(device_uuid)
    result = RotateResult(
        device_uuid=device_uuid,
        device_name=device.name if device else '',
        public_key_path=keystore.public_key_path(device_uuid),
        private_key_path=ctx.settings.private_key_path(registry.uuid),
        dry_run=dry_run)
    if dry_run:
        return result

    log.info(f"Rotating keypair of device {device_uuid}")
    keystore.put_public_key(device_uuid, crypto.serialize_public_key(public_key))
    keystore.put_envelope(device_uuid, envelope)
    _store_keypair(ctx.settings, registry.uuid, public_key, private_key)

    _record(ctx, 'rotate', device_name=result.device_name, target_uuid=device_uuid)
    return result


def sync(ctx: Context, dry_run: bool = False) -> SyncResult:
    """Re-key the project and re-encrypt every encrypted file under the new key."""
    registry = ctx.registry()
    content_key = ctx.content_key(registry)
    devices = ctx.keystore.uuids_with_status(Status.ACTIVE)
    rekey = Rekey.prepare(ctx, content_key, devices)

    result = SyncResult(devices=devices, files=rekey.files, dry_run=dry_run)
    if dry_run:
        return result

    log.info(f"Syncing {len(rekey.files)} files for {len(devices)} devices")
    rekey.commit(ctx.keystore)

    _record(ctx, 'sync', users_count=len(devices), files_count=len(rekey.files))
    return result


def clean(
        ctx: Context,
        force: bool = False,
        confirm: typing.Optional[Confirm] = None,
        dry_run: bool = False) -> CleanResult:
    """Delete envelopes that have no matching public key."""
    ctx.registry()
    keystore = ctx.keystore
    orphans = keystore.uuids_with_status(Status.ORPHAN)
    paths = [keystore.envelope_path(uuid) for uuid in orphans]

    if not orphans or dry_run:
        return CleanResult(orphans=orphans, removed=paths if dry_run else (), dry_run=dry_run)

    if not force and (confirm is None or not confirm(orphans)):
        return CleanResult(orphans=orphans, cancelled=True)

    for uuid in orphans:
        log.info(f"Removing orphaned envelope {uuid}")
        keystore.delete_envelope(uuid)

    _record(ctx, 'clean', removed_count=len(orphans))
    return CleanResult(orphans=orphans, removed=paths)


def encrypt(
        ctx: Context,
        patterns: typing.Sequence[str] = (),
        dry_run: bool = False) -> TransferResult:
    """Encrypt plaintext files, by default every '.env' file in the project."""
    registry = ctx.registry()
    keeper = kanuka(ctx.root, patterns, encrypting=True)
    if not keeper.plaintexts():
        raise NoFilesFound(
            "No .env files were found to encrypt",
            remedy="Create a .env file, or pass the files to encrypt")

    transfers = keeper.encrypt(ctx.content_key(registry), dry_run=dry_run)
    if not dry_run:
        _record(ctx, 'encrypt', files=[keeper.rel(t.source) for t in transfers])
    return TransferResult(transfers=transfers, dry_run=dry_run)


def decrypt(
        ctx: Context,
        patterns: typing.Sequence[str] = (),
        dry_run: bool = False) -> TransferResult:
    """Decrypt '.kanuka' files, by default every one in the project."""
    registry = ctx.registry()
    keeper = kanuka(ctx.root, patterns, encrypting=False)
    if not keeper.ciphertexts():
        raise NoFilesFound(
            "No .kanuka files were found to decrypt",
            remedy="Run 'kanuka encrypt' first, or pass the files to decrypt")

    transfers = keeper.decrypt(ctx.content_key(registry), dry_run=dry_run)
    if not dry_run:
        _record(ctx, 'decrypt', files=[keeper.rel(t.source) for t in transfers])
    return TransferResult(transfers=transfers, dry_run=dry_run)


def ci_init(
        ctx: Context,
        show_private_key: ShowPrivateKey,
        interactive: typing.Callable[[], bool] = is_tty_available,
        dry_run: bool = False) -> CIInitResult:
    """
    Register a device for GitHub Actions.

    Its private key is passed to show_private_key exactly once and never
    written anywhere. If anything fails, every file this operation created
    is removed again.
    """
    registry = ctx.registry()
    if not interactive():
        raise TTYRequired()
    if registry.devices_for_email(CI_EMAIL):
        raise CIAlreadyConfigured()

    content_key = ctx.content_key(registry)
    public_key, private_key = crypto.generate_device_keypair()
    device_uuid = generate_uuid()
    device = Device(email=CI_EMAIL, name=CI_DEVICE_NAME)

    workflow = ctx.root / CI_WORKFLOW_PATH
    result = CIInitResult(
        email=CI_EMAIL,
        device_uuid=device_uuid,
        device_name=CI_DEVICE_NAME,
        workflow_path=CI_WORKFLOW_PATH,
        workflow_created=not workflow.exists(),
        dry_run=dry_run)
    if dry_run:
        return result

    keystore = ctx.keystore
    log.info(f"Registering CI device {device_uuid}")
    try:
        keystore.put_public_key(device_uuid, crypto.serialize_public_key(public_key))
        keystore.put_envelope(device_uuid, crypto.wrap_key(content_key, public_key))
        save_project_config(ctx.root, registry.with_device(device_uuid, device))
        if result.workflow_created:
            write_atomic(workflow, CI_WORKFLOW.encode(), mode=0o644)
        show_private_key(crypto.serialize_private_key(private_key))
    except BaseException:
        log.warning(f"Rolling back CI device {device_uuid}")
        keystore.delete_public_key(device_uuid)
        keystore.delete_envelope(device_uuid)
        save_project_config(ctx.root, registry)
        if result.workflow_created:
            workflow.unlink(missing_ok=True)
        raise

    _record(ctx, 'ci-init', target_user=CI_EMAIL, target_uuid=device_uuid)
    return result
