import functools
import logging
import os.path
import pathlib
import sys
import typing

import attr
import click

from . import __doc__, __version__, audit, devices, health, lifecycle
from .config import ensure_user_config, save_user_config
from .context import Context
from .errors import InvalidDeviceName, InvalidEmail, InvalidPrivateKey, TTYRequired
from .keystore import Status
from .secrets import Transfer
from .utils import default_project_path, is_valid_device_name, is_valid_email

log = logging.getLogger(__name__)

STATUS_COLOURS = {
    Status.ACTIVE: 'green',
    Status.PENDING: 'yellow',
    Status.ORPHAN: 'red',
}
LEVEL_COLOURS = {
    health.Level.PASS: 'green',
    health.Level.WARNING: 'yellow',
    health.Level.ERROR: 'red',
}
STATE_COLOURS = {
    health.State.CURRENT: 'green',
    health.State.STALE: 'yellow',
    health.State.UNENCRYPTED: 'red',
    health.State.ENCRYPTED_ONLY: 'blue',
}


@functools.lru_cache()
def rel(path: pathlib.Path) -> str:
    """
    Convert a path to a relative Path.

    Returns a string as these should only be used for presentation.
    """
    return os.path.relpath(path.as_posix(), pathlib.Path.cwd().as_posix())


def enc(path: pathlib.Path) -> str:
    """Style a path to a encrypted file."""
    return click.style(rel(path), fg='green')


def dec(path: pathlib.Path) -> str:
    """Style a path to a decrypted file."""
    return click.style(rel(path), fg='red')


def would(dry_run: bool, verb: str, done: str) -> str:
    return f"Would {verb}" if dry_run else done


class PathType(click.Path):
    def convert(self, value, param, ctx):
        return pathlib.Path(super().convert(value, param, ctx))


def prompt_passphrase() -> bytes:
    return click.prompt("Passphrase for private key", hide_input=True, err=True).encode()


def with_private_key(context: Context, private_key_stdin: bool) -> Context:
    """Replace the on-disk private key with one piped to standard input."""
    if not private_key_stdin:
        return context

    data = click.get_binary_stream('stdin').read()
    if not data.strip():
        raise InvalidPrivateKey("No private key was given on standard input")
    return attr.evolve(context, private_key_data=data, passphrase=None)


private_key_stdin_option = click.option(
    '--private-key-stdin',
    default=False,
    is_flag=True,
    help="Read the private key from standard input instead of from disk.")

dry_run_option = click.option(
    '--dry-run',
    default=False,
    is_flag=True,
    help="Show what would change without writing anything.")

user_option = click.option(
    '-u', '--user', 'email',
    metavar='EMAIL',
    type=click.STRING,
    help="Email address of the device owner.")

device_option = click.option(
    '--device', 'device_name',
    metavar='NAME',
    type=click.STRING,
    help="Name of one of the owner's devices.")

patterns_argument = click.argument(
    'patterns',
    metavar='[PATHS]...',
    type=click.STRING,
    required=False,
    nargs=-1)


@click.group(help=__doc__)
@click.option(
    '-p', '--path',
    type=PathType(
        file_okay=False,
        dir_okay=True,
        exists=True),
    default=default_project_path,
    required=True,
    help="Defaults to the nearest directory containing .kanuka/, or the git repository.")
@click.option(
    '-d', '--debug', 'debug',
    default=False,
    is_flag=True,
    help="Enable debug logging.")
@click.pass_context
def main(
        ctx,
        debug: bool,
        path: pathlib.Path):
    logging.basicConfig(level=(logging.DEBUG if debug else logging.WARNING))
    ctx.obj = Context.load(path, passphrase=prompt_passphrase)


@main.command()
def version():
    """Show the application version."""
    click.echo(f"kanuka {__version__}")


@main.command()
@click.option('--name', 'project_name', help="Defaults to the directory name.")
@click.option('-e', '--email', help="Your email address, if it is not configured yet.")
@device_option
@click.pass_obj
def init(
        context: Context,
        project_name: typing.Optional[str],
        email: typing.Optional[str],
        device_name: typing.Optional[str]):
    """Set up a new project with yourself as the first device."""
    if context.initialized:
        click.secho(f"Kānuka is already initialized in {rel(context.root)}", fg='yellow')
        return

    if email or not context.user.email:
        email = email or click.prompt("Your email address")
        if not is_valid_email(email):
            raise InvalidEmail(email)
        save_user_config(context.settings, attr.evolve(
            ensure_user_config(context.settings), email=email))
        context = Context.load(context.root, context.settings, passphrase=prompt_passphrase)

    result = lifecycle.init(context, project_name=project_name, device_name=device_name)
    click.secho(f"Initialized project {result.project_name}", fg='green')
    click.echo(f"Your device {result.device_name} ({result.device_uuid}) has access.")
    click.echo(f"Your private key is at {result.private_key_path}")
    click.echo("Commit the .kanuka/ directory, then run 'kanuka encrypt'.")


@main.command()
@user_option
@device_option
@click.option(
    '--force',
    default=False,
    is_flag=True,
    help="Replace the keypair of your existing device.")
@click.pass_obj
def create(
        context: Context,
        email: typing.Optional[str],
        device_name: typing.Optional[str],
        force: bool):
    """Create a keypair for this device and publish its public key."""
    result = lifecycle.create(context, email=email, device_name=device_name, force=force)
    verb = "Replaced the keypair of" if result.replaced else "Created"
    click.secho(f"{verb} device {result.device_name} for {result.email}", fg='green')
    click.echo(f"Public key written to {rel(result.public_key_path)}")
    if result.removed_envelope:
        click.secho("Your old access was removed; ask to be registered again.", fg='yellow')
    click.echo("Commit it and ask someone with access to run:")
    click.echo(f"    kanuka register --user {result.email} --device {result.device_name}")


@main.command()
@user_option
@device_option
@click.option(
    '--file', 'public_key_path',
    type=PathType(dir_okay=False),
    help="A <uuid>.pub public key file.")
@click.option(
    '--pubkey', 'public_key_text',
    metavar='TEXT',
    help="Public key text in PEM or ssh-rsa format (requires --user).")
@dry_run_option
@private_key_stdin_option
@click.pass_obj
def register(
        context: Context,
        email: typing.Optional[str],
        device_name: typing.Optional[str],
        public_key_path: typing.Optional[pathlib.Path],
        public_key_text: typing.Optional[str],
        dry_run: bool,
        private_key_stdin: bool):
    """Give a device access to the project's secrets."""
    result = lifecycle.register(
        with_private_key(context, private_key_stdin),
        email=email,
        device_name=device_name,
        public_key_path=public_key_path,
        public_key_text=public_key_text,
        dry_run=dry_run)

    for path in result.created:
        click.echo(f"{would(dry_run, 'create', 'Created')} {enc(path)}")
    for path in result.updated:
        click.echo(f"{would(dry_run, 'update', 'Updated')} {enc(path)}")

    device = f"{result.email} ({result.device_name})"
    if dry_run:
        click.secho(f"Dry run: {device} was not registered", fg='yellow')
    elif result.already_active:
        click.secho(f"Renewed access for {device}", fg='green')
    else:
        click.secho(f"Registered {device}", fg='green')


def confirm_devices(devices: typing.Sequence) -> bool:
    click.echo("This will revoke every one of these devices:")
    for device in devices:
        click.echo(f"  - {device}")
    return click.confirm("Continue?", default=False)


@main.command()
@user_option
@device_option
@click.option(
    '--file', 'envelope_path',
    type=PathType(dir_okay=False),
    help="A .kanuka/secrets/<uuid>.kanuka file.")
@click.option(
    '-y', '--yes',
    default=False,
    is_flag=True,
    help="Revoke every device of the user without asking.")
@dry_run_option
@private_key_stdin_option
@click.pass_obj
def revoke(
        context: Context,
        email: typing.Optional[str],
        device_name: typing.Optional[str],
        envelope_path: typing.Optional[pathlib.Path],
        yes: bool,
        dry_run: bool,
        private_key_stdin: bool):
    """
    Remove a device's access and re-key the project.

    Every remaining device gets a new symmetric key, and every encrypted
    file is re-encrypted with it.
    """
    result = lifecycle.revoke(
        with_private_key(context, private_key_stdin),
        email=email,
        device_name=device_name,
        envelope_path=envelope_path,
        yes=yes,
        confirm=confirm_devices,
        dry_run=dry_run)

    if result.cancelled:
        click.secho("Cancelled, nothing was revoked", fg='yellow')
        return

    for path in result.removed:
        click.echo(f"{would(dry_run, 'delete', 'Deleted')} {dec(path)}")
    for path in result.reencrypted:
        click.echo(f"{would(dry_run, 're-encrypt', 'Re-encrypted')} {enc(path)}")
    for path in result.unreadable:
        click.secho(f"Could not re-encrypt {dec(path)}, it was left as it is", fg='yellow')

    for uuid, device in result.devices.items():
        click.secho(f"{would(dry_run, 'revoke', 'Revoked')} {device or uuid}", fg='green')
    if result.remaining:
        click.echo(f"{would(dry_run, 're-key', 'Re-keyed')} the project for "
                   f"{len(result.remaining)} remaining devices")
    if result.self_revoked:
        click.secho("You revoked your own access to this project", fg='yellow')


@main.command()
@dry_run_option
@private_key_stdin_option
@click.pass_obj
def rotate(context: Context, dry_run: bool, private_key_stdin: bool):
    """
    Replace your device's keypair, keeping your access.

    With --private-key-stdin the current key is read from standard input and
    the new private key is written to your data directory.
    """
    result = lifecycle.rotate(with_private_key(context, private_key_stdin), dry_run=dry_run)
    click.echo(f"{would(dry_run, 'replace', 'Replaced')} {enc(result.public_key_path)}")
    click.echo(f"{would(dry_run, 'replace', 'Replaced')} {result.private_key_path}")
    if not dry_run:
        click.secho(f"Rotated the keypair of {result.device_name or result.device_uuid}",
                    fg='green')


@main.command()
@dry_run_option
@private_key_stdin_option
@click.pass_obj
def sync(context: Context, dry_run: bool, private_key_stdin: bool):
    """Re-key the project and re-encrypt every encrypted file."""
    result = lifecycle.sync(with_private_key(context, private_key_stdin), dry_run=dry_run)
    for path in result.files:
        click.echo(f"{would(dry_run, 're-encrypt', 'Re-encrypted')} {enc(path)}")
    click.secho(
        f"{would(dry_run, 'sync', 'Synced')} {len(result.files)} files "
        f"for {len(result.devices)} devices",
        fg='yellow' if dry_run else 'green')


@main.command()
@click.pass_obj
def access(context: Context):
    """List every device and whether it can decrypt secrets."""
    report = health.access(context)
    click.echo(f"Project: {report.project_name}")
    for entry in report.entries:
        status = click.style(f"{str(entry.status):<8}", fg=STATUS_COLOURS[entry.status])
        owner = f"{entry.email} ({entry.device_name})" if entry.email else "unknown device"
        click.echo(f"  {status} {owner} {click.style(entry.uuid, dim=True)}")

    summary = ', '.join(f"{count} {status}" for status, count in report.summary.items())
    click.echo(f"Total: {len(report.entries)} ({summary})")
    if report.count(Status.ORPHAN):
        click.echo("Run 'kanuka clean' to remove orphaned envelopes.")


def confirm_orphans(orphans: typing.Sequence[str]) -> bool:
    click.echo("These envelopes have no public key:")
    for uuid in orphans:
        click.echo(f"  - {uuid}")
    return click.confirm("Delete them?", default=False)


@main.command()
@click.option(
    '--force',
    default=False,
    is_flag=True,
    help="Delete without asking.")
@dry_run_option
@click.pass_obj
def clean(context: Context, force: bool, dry_run: bool):
    """Delete envelopes whose public key is gone."""
    result = lifecycle.clean(context, force=force, confirm=confirm_orphans, dry_run=dry_run)
    if not result.orphans:
        click.secho("No orphaned envelopes found", fg='green')
    elif result.cancelled:
        click.secho("Cancelled, nothing was deleted", fg='yellow')
    else:
        for path in result.removed:
            click.echo(f"{would(dry_run, 'delete', 'Deleted')} {dec(path)}")


def show_transfers(
        transfers: typing.Sequence[Transfer],
        dry_run: bool,
        verb: str,
        done: str) -> None:
    for transfer in transfers:
        line = f"{would(dry_run, verb, done)} {rel(transfer.source)} -> {rel(transfer.destination)}"
        if transfer.overwrites:
            line += click.style(" (overwrites)", fg='yellow')
        click.echo(line)


@main.command()
@patterns_argument
@dry_run_option
@private_key_stdin_option
@click.pass_obj
def encrypt(
        context: Context,
        patterns: typing.Sequence[str],
        dry_run: bool,
        private_key_stdin: bool):
    """
    Encrypt .env files to .kanuka files.

    Paths may be files, directories or glob patterns relative to the project
    root. Without paths, every .env file in the project is encrypted.
    """
    result = lifecycle.encrypt(
        with_private_key(context, private_key_stdin), patterns=patterns, dry_run=dry_run)
    show_transfers(result.transfers, dry_run, 'encrypt', 'Encrypted')


@main.command()
@patterns_argument
@dry_run_option
@private_key_stdin_option
@click.pass_obj
def decrypt(
        context: Context,
        patterns: typing.Sequence[str],
        dry_run: bool,
        private_key_stdin: bool):
    """
    Decrypt .kanuka files to .env files.

    Paths may be files, directories or glob patterns relative to the project
    root. Without paths, every .kanuka file in the project is decrypted.
    """
    result = lifecycle.decrypt(
        with_private_key(context, private_key_stdin), patterns=patterns, dry_run=dry_run)
    show_transfers(result.transfers, dry_run, 'decrypt', 'Decrypted')
    if result.overwrites and dry_run:
        click.secho(f"{len(result.overwrites)} existing files would be overwritten", fg='yellow')


def show_on_tty(private_key: bytes) -> None:
    """Write the private key to the terminal, never to a redirected stdout."""
    try:
        with open('/dev/tty', 'w') as tty:
            tty.write("\nCopy this private key into the KANUKA_PRIVATE_KEY secret.\n")
            tty.write("It will not be shown again.\n\n")
            tty.write(private_key.decode())
            tty.write("\n")
    except OSError as error:
        raise TTYRequired() from error


@main.command(name='ci-init')
@dry_run_option
@click.pass_obj
def ci_init(context: Context, dry_run: bool):
    """Register a device for GitHub Actions and show its private key once."""
    result = lifecycle.ci_init(context, show_private_key=show_on_tty, dry_run=dry_run)
    if result.workflow_created:
        click.echo(f"{would(dry_run, 'create', 'Created')} {result.workflow_path}")
    click.secho(
        f"{would(dry_run, 'register', 'Registered')} {result.email} ({result.device_name})",
        fg='yellow' if dry_run else 'green')


@main.command()
@click.pass_obj
def doctor(context: Context):
    """
    Check the project for problems.

    Exits with 0 if everything passed, 1 if there were warnings and 2 if
    there were errors.
    """
    report = health.doctor(context)
    for check in report.checks:
        level = click.style(f"{str(check.level):<7}", fg=LEVEL_COLOURS[check.level])
        click.echo(f"{level} {check.name}: {check.message}")

    if report.suggestions:
        click.echo("\nSuggestions:")
        for suggestion in report.suggestions:
            click.echo(f"  → {suggestion}")

    click.echo(
        f"\n{report.count(health.Level.PASS)} passed, "
        f"{report.count(health.Level.WARNING)} warnings, "
        f"{report.count(health.Level.ERROR)} errors")
    sys.exit(report.exit_code)


@main.command()
@click.pass_obj
def status(context: Context):
    """Show whether each secret's encrypted copy is up to date."""
    report = health.status(context)
    click.echo(f"Project: {report.project_name}")
    for file in report.files:
        state = click.style(f"{str(file.state):<14}", fg=STATE_COLOURS[file.state])
        click.echo(f"  {state} {file.path}")

    if not report.files:
        click.echo("No secrets found")
    elif report.count(health.State.STALE) or report.count(health.State.UNENCRYPTED):
        click.echo("Run 'kanuka encrypt' to update the encrypted files.")


@main.command(name='log')
@user_option
@click.option('--operation', 'operations', metavar='OPS', help="Comma separated operations.")
@click.option('--since', metavar='YYYY-MM-DD', help="Only show entries on or after a date.")
@click.option('--until', metavar='YYYY-MM-DD', help="Only show entries on or before a date.")
@click.option('--reverse', default=False, is_flag=True, help="Show the most recent first.")
@click.option('-n', '--limit', default=0, type=click.IntRange(min=0), help="Show at most N entries.")
@click.option('--oneline', default=False, is_flag=True, help="One short line per entry.")
@click.pass_obj
def log_(
        context: Context,
        email: typing.Optional[str],
        operations: typing.Optional[str],
        since: typing.Optional[str],
        until: typing.Optional[str],
        reverse: bool,
        limit: int,
        oneline: bool):
    """Show the audit log of operations on this project."""
    entries = audit.query(
        audit.read(context.audit_path),
        user=email,
        operations=operations,
        since=since,
        until=until,
        reverse=reverse,
        limit=limit)

    for entry in entries:
        details = audit.details(entry, oneline=oneline)
        if oneline:
            click.echo(f"{entry.ts[:10]} {entry.user} {entry.op} {details}".rstrip())
        else:
            when = click.style(entry.ts[:19].replace('T', ' '), fg='yellow')
            click.echo(f"{when}  {entry.user:<30} {entry.op:<10} {details}".rstrip())


@main.group()
def config():
    """Manage your user configuration."""


@config.command(name='init')
@click.option('-e', '--email', required=True, help="Your email address.")
@click.option('--name', default=None, help="Your name.")
@click.option('--device', 'device_name', default=None, help="Default name for new devices.")
@click.pass_obj
def config_init(
        context: Context,
        email: str,
        name: typing.Optional[str],
        device_name: typing.Optional[str]):
    """Set your email address and defaults."""
    if not is_valid_email(email):
        raise InvalidEmail(email)
    if device_name is not None and not is_valid_device_name(device_name):
        raise InvalidDeviceName(device_name)

    user = attr.evolve(ensure_user_config(context.settings), email=email)
    if name is not None:
        user = attr.evolve(user, name=name)
    if device_name is not None:
        user = attr.evolve(user, default_device_name=device_name)
    save_user_config(context.settings, user)
    click.secho(f"Saved {context.settings.user_config_path}", fg='green')


@config.command(name='show')
@click.pass_obj
def config_show(context: Context):
    """Show your user configuration."""
    user = context.user
    click.echo(f"Config:         {context.settings.user_config_path}")
    click.echo(f"Email:          {user.email or '(not set)'}")
    click.echo(f"Name:           {user.name or '(not set)'}")
    click.echo(f"UUID:           {user.uuid or '(not set)'}")
    click.echo(f"Default device: {user.default_device_name or '(not set)'}")
    for project_uuid, device_name in sorted(user.projects.items()):
        click.echo(f"  {project_uuid}: {device_name}")


def show_rename(result: devices.RenameResult, what: str) -> None:
    if not result.changed:
        click.secho(f"{what} is already {result.new_name}", fg='yellow')
    elif result.old_name:
        click.secho(f"{what} changed from {result.old_name} to {result.new_name}", fg='green')
    else:
        click.secho(f"{what} set to {result.new_name}", fg='green')


@config.command(name='rename-device')
@click.argument('new_name')
@click.option('-u', '--user', 'email', required=True, metavar='EMAIL', help="Owner of the device.")
@click.option('--old-name', help="Current name, if the owner has several devices.")
@click.pass_obj
def config_rename_device(
        context: Context,
        new_name: str,
        email: str,
        old_name: typing.Optional[str]):
    """Rename a device in the project registry."""
    result = devices.rename_device(context, email=email, new_name=new_name, old_name=old_name)
    show_rename(result, f"Device name of {email}")


project_uuid_option = click.option(
    '--project-uuid',
    metavar='UUID',
    help="Defaults to the current project.")


@config.command(name='set-device-name')
@click.argument('device_name')
@project_uuid_option
@click.pass_obj
def config_set_device_name(
        context: Context,
        device_name: str,
        project_uuid: typing.Optional[str]):
    """Set the device name your config uses for a project."""
    result = devices.set_project_device(
        context, device_name, project_uuid=project_uuid, update_registry=False)
    show_rename(result, "Device name")


@config.command(name='set-project-device')
@click.argument('device_name')
@project_uuid_option
@click.pass_obj
def config_set_project_device(
        context: Context,
        device_name: str,
        project_uuid: typing.Optional[str]):
    """Rename your device in both your config and the project registry."""
    result = devices.set_project_device(context, device_name, project_uuid=project_uuid)
    show_rename(result, "Device name")
    if result.registry_updated:
        click.echo(f"Updated the registry of {result.project_name}; commit .kanuka/config.toml")


@config.command(name='set-default-device')
@click.argument('device_name')
@click.pass_obj
def config_set_default_device(context: Context, device_name: str):
    """Set the device name used for projects you join later."""
    show_rename(devices.set_default_device(context, device_name), "Default device name")


@config.command(name='list-devices')
@click.pass_obj
def config_list_devices(context: Context):
    """List the devices registered in this project."""
    registry = context.registry()
    own = context.device_uuid(registry)
    for uuid, device in sorted(registry.devices.items(), key=lambda i: (i[1].email, i[1].name)):
        marker = click.style('*', fg='green') if uuid == own else ' '
        created = device.created_at.strftime('%Y-%m-%d')
        click.echo(f"{marker} {device.email:<30} {device.name:<20} {created}  {uuid}")
