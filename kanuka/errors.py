"""
Every condition a user can do something about.

These are shown by click as a short error and a suggested command, and exit
with status 0. Anything not listed here is a bug or an environment problem
and is left to propagate.
"""

import typing

import click


class KanukaError(click.ClickException):
    default_message: str = "Something went wrong"
    remedy: typing.Optional[str] = None
    exit_code = 0

    def __init__(
            self,
            message: typing.Optional[str] = None, *,
            remedy: typing.Optional[str] = None):
        super().__init__(message or self.default_message)
        if remedy is not None:
            self.remedy = remedy

    def show(self, file: typing.Optional[typing.IO] = None) -> None:
        super().show(file)
        if self.remedy:
            click.echo(f"  → {self.remedy}", file=file, err=True)


class ProjectNotInitialized(KanukaError):
    default_message = "Kānuka has not been initialized in this directory"
    remedy = "Run 'kanuka init' to set up a new project"


class InvalidProjectConfig(KanukaError):
    default_message = ".kanuka/config.toml is not valid"
    remedy = "Check .kanuka/config.toml for syntax errors"


class InvalidUserConfig(KanukaError):
    default_message = "Your user configuration is not valid"
    remedy = "Fix it, or run 'kanuka config init' after removing it"


class UserNotConfigured(KanukaError):
    default_message = "Your user configuration has no email address"
    remedy = "Run 'kanuka config init --email <email>'"


class TargetNotFound(KanukaError):
    default_message = "No matching device was found in this project"
    remedy = "Run 'kanuka access' to see who has access"

    def __init__(self, target: str = '', **kwargs):
        self.target = target
        message = f"{target} was not found in this project" if target else None
        super().__init__(message, **kwargs)


class DeviceNotFound(TargetNotFound):
    def __init__(self, email: str, device_name: str, **kwargs):
        self.email = email
        self.device_name = device_name
        super().__init__(f"device {device_name!r} of {email}", **kwargs)


class AmbiguousTarget(KanukaError):
    remedy = "Pass --device to choose one of them"

    def __init__(self, email: str, device_names: typing.Sequence[str], **kwargs):
        self.email = email
        self.device_names = tuple(sorted(device_names))
        super().__init__(
            f"{email} has {len(self.device_names)} devices: "
            f"{', '.join(self.device_names)}", **kwargs)


class NoAccess(KanukaError):
    default_message = "You do not have access to this project's secrets"
    remedy = "Run 'kanuka create' and ask someone with access to register you"


class PrivateKeyNotFound(KanukaError):
    default_message = "Your private key for this project could not be found"
    remedy = "Run 'kanuka create' to generate a new keypair"

    def __init__(self, path: typing.Optional[object] = None, **kwargs):
        self.path = path
        message = f"No private key at {path}" if path else None
        super().__init__(message, **kwargs)


class InvalidPrivateKey(KanukaError):
    default_message = "The private key is invalid or in an unsupported format"
    remedy = "Provide an RSA private key in PEM or OpenSSH format"


class PassphraseRequired(InvalidPrivateKey):
    default_message = "The private key is protected by a passphrase"
    remedy = "Run the command from a terminal so the passphrase can be entered"


class KeyDecryptFailed(KanukaError):
    default_message = "Failed to decrypt the project's symmetric key"
    remedy = "Your key may have been rotated or revoked; ask to be registered again"


class DecryptFailed(KanukaError):
    default_message = "Failed to decrypt file"
    remedy = "The file is corrupt or was encrypted with a different key; try 'kanuka sync'"

    def __init__(self, path: typing.Optional[object] = None, **kwargs):
        self.path = path
        message = f"Failed to decrypt {path}" if path else None
        super().__init__(message, **kwargs)


class NoFilesFound(KanukaError):
    default_message = "No matching files were found"


class FileNotFound(KanukaError):
    def __init__(self, path: object, **kwargs):
        self.path = path
        super().__init__(f"File not found: {path}", **kwargs)


class InvalidFileType(KanukaError):
    default_message = "Invalid file type"


class InvalidArchive(KanukaError):
    default_message = "Invalid archive structure"


class CIAlreadyConfigured(KanukaError):
    default_message = "CI integration is already configured for this project"
    remedy = "Run 'kanuka revoke --user <ci email>' first to set it up again"


class TTYRequired(KanukaError):
    default_message = "This command must be run from an interactive terminal"
    remedy = "The private key is only ever shown on a terminal, never on a pipe"


class InvalidEmail(KanukaError):
    remedy = "Pass an address like alice@example.com with --user"

    def __init__(self, email: str = ''):
        self.email = email
        super().__init__(
            f"Invalid email address: {email!r}" if email else "An email address is required")


class DeviceNameTaken(KanukaError):
    remedy = "Pass a different --device name"

    def __init__(self, device_name: str):
        self.device_name = device_name
        super().__init__(f"Device name {device_name!r} is already in use")


class InvalidDeviceName(KanukaError):
    remedy = "Use letters, digits, hyphens and underscores, starting with a letter or digit"

    def __init__(self, device_name: str):
        self.device_name = device_name
        super().__init__(f"Invalid device name: {device_name!r}")


class PublicKeyExists(KanukaError):
    default_message = "You already have a device registered in this project"
    remedy = "Run 'kanuka create --force' to replace its keypair"


class InvalidDateFormat(KanukaError):
    default_message = "Dates must be in the format YYYY-MM-DD"


class NotFound(KanukaError):
    def __init__(self, path: object):
        self.path = path
        super().__init__(f"{path} does not exist")


class InvalidKeyFormat(KanukaError):
    default_message = "Public key is not a valid RSA public key"


class InvalidEnvelope(KanukaError):
    default_message = "Encrypted symmetric key is empty or corrupt"
