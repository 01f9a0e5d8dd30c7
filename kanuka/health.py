"""
Read-only reports on the state of a project.

access lists every device the key store knows about, doctor cross-checks the
registry, key store, local keys and git, and status compares every secret
with its encrypted copy. None of these write anything.
"""

import datetime
import enum
import logging
import os
import pathlib
import stat
import typing

import attr

from .context import Context
from .errors import InvalidKeyFormat, InvalidProjectConfig, ProjectNotInitialized
from .incantations import EnvIncantation, is_tracked
from .keystore import Status
from .spells import kanuka
from .utils import git_ignored

log = logging.getLogger(__name__)

STATUS_ORDER = {Status.ACTIVE: 0, Status.PENDING: 1, Status.ORPHAN: 2}


@attr.s(frozen=True, kw_only=True)
class AccessEntry:
    uuid: str = attr.ib()
    status: Status = attr.ib()
    email: str = attr.ib(default='')
    device_name: str = attr.ib(default='')


@attr.s(frozen=True, kw_only=True)
class AccessReport:
    project_name: str = attr.ib()
    entries: typing.Sequence[AccessEntry] = attr.ib()

    def count(self, status: Status) -> int:
        return sum(1 for entry in self.entries if entry.status is status)

    @property
    def summary(self) -> typing.Dict[Status, int]:
        return {status: self.count(status) for status in Status}


def access(ctx: Context) -> AccessReport:
    """Classify every device UUID found in the key store."""
    registry = ctx.registry()
    entries = []
    for uuid, status in ctx.keystore.classify().items():
        device = registry.devices.get(uuid)
        entries.append(AccessEntry(
            uuid=uuid,
            status=status,
            email=device.email if device else '',
            device_name=device.name if device else ''))

    entries.sort(key=lambda e: (STATUS_ORDER[e.status], e.email.lower(), e.device_name, e.uuid))
    return AccessReport(project_name=registry.name, entries=entries)


class Level(enum.Enum):
    PASS = 'pass'
    WARNING = 'warning'
    ERROR = 'error'

    def __str__(self):
        return self.value


@attr.s(frozen=True, kw_only=True)
class Check:
    name: str = attr.ib()
    level: Level = attr.ib()
    message: str = attr.ib()
    suggestion: str = attr.ib(default='')


@attr.s(frozen=True, kw_only=True)
class DoctorReport:
    checks: typing.Sequence[Check] = attr.ib()

    def count(self, level: Level) -> int:
        return sum(1 for check in self.checks if check.level is level)

    @property
    def exit_code(self) -> int:
        if self.count(Level.ERROR):
            return 2
        if self.count(Level.WARNING):
            return 1
        return 0

    @property
    def suggestions(self) -> typing.List[str]:
        suggestions = []
        for check in self.checks:
            if check.level is not Level.PASS and check.suggestion \
                    and check.suggestion not in suggestions:
                suggestions.append(check.suggestion)
        return suggestions


def doctor(ctx: Context) -> DoctorReport:
    checks = []
    try:
        registry = ctx.registry()
    except ProjectNotInitialized:
        checks.append(Check(
            name="Project configuration",
            level=Level.ERROR,
            message="No .kanuka/config.toml found",
            suggestion="kanuka init"))
        registry = None
    except InvalidProjectConfig as error:
        checks.append(Check(
            name="Project configuration",
            level=Level.ERROR,
            message=error.message,
            suggestion="Fix .kanuka/config.toml"))
        registry = None
    else:
        checks.append(Check(
            name="Project configuration",
            level=Level.PASS,
            message=f"Project {registry.name} ({len(registry.devices)} devices)"))

    if ctx.user.email:
        checks.append(Check(
            name="User configuration", level=Level.PASS, message=f"Email is {ctx.user.email}"))
    else:
        checks.append(Check(
            name="User configuration",
            level=Level.WARNING,
            message="No email address is configured",
            suggestion="kanuka config init --email <email>"))

    if registry is None:
        return DoctorReport(checks=checks)

    checks.extend(_check_private_key(ctx, registry.uuid))
    checks.extend(_check_key_store(ctx, registry))
    checks.extend(_check_plaintexts(ctx))
    return DoctorReport(checks=checks)


def _check_private_key(ctx: Context, project_uuid: str) -> typing.Iterator[Check]:
    path = ctx.settings.private_key_path(project_uuid)
    if not path.is_file():
        yield Check(
            name="Private key",
            level=Level.ERROR,
            message=f"No private key at {path}",
            suggestion="kanuka create")
        return
    yield Check(name="Private key", level=Level.PASS, message=f"Found {path}")

    mode = stat.S_IMODE(path.stat().st_mode)
    if os.name == 'posix' and mode & 0o077:
        yield Check(
            name="Private key permissions",
            level=Level.WARNING,
            message=f"{path} has mode {mode:o}, other users can read it",
            suggestion=f"chmod 600 {path}")
    else:
        yield Check(name="Private key permissions", level=Level.PASS, message="Only you can read it")


def _check_key_store(ctx: Context, registry) -> typing.Iterator[Check]:
    keystore = ctx.keystore
    statuses = keystore.classify()

    invalid = []
    for uuid in keystore.list_public_key_uuids():
        try:
            keystore.get_public_key(uuid)
        except InvalidKeyFormat:
            invalid.append(uuid)

    pending = [uuid for uuid, s in statuses.items() if s is Status.PENDING]
    if invalid:
        yield Check(
            name="Public keys",
            level=Level.ERROR,
            message=f"{len(invalid)} public keys cannot be read: {', '.join(invalid)}",
            suggestion="kanuka access")
    elif pending:
        yield Check(
            name="Public keys",
            level=Level.WARNING,
            message=f"{len(pending)} devices are waiting to be registered",
            suggestion="kanuka register --user <email>")
    else:
        yield Check(name="Public keys", level=Level.PASS, message="Every public key has an envelope")

    orphans = [uuid for uuid, s in statuses.items() if s is Status.ORPHAN]
    if orphans:
        yield Check(
            name="Envelopes",
            level=Level.ERROR,
            message=f"{len(orphans)} envelopes have no public key",
            suggestion="kanuka clean")
    else:
        yield Check(name="Envelopes", level=Level.PASS, message="Every envelope has a public key")

    unkeyed = sorted(uuid for uuid in registry.devices if uuid not in statuses)
    unregistered = sorted(uuid for uuid in statuses if uuid not in registry.devices)
    problems = []
    if unkeyed:
        problems.append(f"{len(unkeyed)} registered devices have no keys")
    if unregistered:
        problems.append(f"{len(unregistered)} keys belong to unregistered devices")
    if problems:
        yield Check(
            name="Registry",
            level=Level.WARNING,
            message='; '.join(problems),
            suggestion="kanuka access")
    else:
        yield Check(name="Registry", level=Level.PASS, message="Registry matches the key store")


def _check_plaintexts(ctx: Context) -> typing.Iterator[Check]:
    plaintexts = [p for p in EnvIncantation.files(ctx.root) if is_tracked(p)]

    ignored = git_ignored(ctx.root, plaintexts)
    if ignored is None:
        exposed = [] if _gitignore_mentions_env(ctx.root) else plaintexts
    else:
        exposed = [p for p in plaintexts if p.resolve() not in ignored]

    if exposed:
        yield Check(
            name="Gitignore",
            level=Level.WARNING,
            message=f"{len(exposed)} .env files are not ignored by git",
            suggestion="Add .env* to .gitignore")
    else:
        yield Check(name="Gitignore", level=Level.PASS, message=".env files are ignored")

    unencrypted = [p for p in plaintexts if not p.with_name(p.name + '.kanuka').exists()]
    if unencrypted:
        yield Check(
            name="Unencrypted files",
            level=Level.WARNING,
            message=f"{len(unencrypted)} .env files have never been encrypted",
            suggestion="kanuka encrypt")
    else:
        yield Check(name="Unencrypted files", level=Level.PASS, message="Every .env file is encrypted")


def _gitignore_mentions_env(root: pathlib.Path) -> bool:
    path = root / '.gitignore'
    if not path.is_file():
        return False
    lines = (line.strip() for line in path.read_text().splitlines())
    return any('.env' in line for line in lines if line and not line.startswith('#'))


class State(enum.Enum):
    CURRENT = 'current'
    STALE = 'stale'
    UNENCRYPTED = 'unencrypted'
    ENCRYPTED_ONLY = 'encrypted_only'

    def __str__(self):
        return self.value


@attr.s(frozen=True, kw_only=True)
class FileStatus:
    path: str = attr.ib()
    state: State = attr.ib()
    plaintext_modified: typing.Optional[datetime.datetime] = attr.ib(default=None)
    encrypted_modified: typing.Optional[datetime.datetime] = attr.ib(default=None)


@attr.s(frozen=True, kw_only=True)
class StatusReport:
    project_name: str = attr.ib()
    files: typing.Sequence[FileStatus] = attr.ib()

    def count(self, state: State) -> int:
        return sum(1 for f in self.files if f.state is state)


def _modified(path: pathlib.Path) -> typing.Optional[datetime.datetime]:
    try:
        return datetime.datetime.fromtimestamp(path.stat().st_mtime, datetime.timezone.utc)
    except FileNotFoundError:
        return None


def status(ctx: Context) -> StatusReport:
    """Compare every secret with its encrypted copy by modification time."""
    registry = ctx.registry()
    keeper = kanuka(ctx.root)

    files = []
    for secret in keeper:
        plaintext = _modified(secret.decrypted)
        encrypted = _modified(secret.encrypted)
        if plaintext is None:
            state = State.ENCRYPTED_ONLY
        elif encrypted is None:
            state = State.UNENCRYPTED
        elif encrypted >= plaintext:
            state = State.CURRENT
        else:
            state = State.STALE
        files.append(FileStatus(
            path=keeper.rel(secret.decrypted),
            state=state,
            plaintext_modified=plaintext,
            encrypted_modified=encrypted))

    return StatusReport(project_name=registry.name, files=files)
