"""
The execution context shared by every operation.

A Context is built once per command from the project root, the per-user
settings and configuration, and (for automation) private key bytes read from
a pipe. It is immutable: operations that change the user configuration save
it to disk and the next command sees the change.
"""

import logging
import pathlib
import typing

import attr

from . import audit, crypto
from .config import (
    ProjectConfig,
    Settings,
    UserConfig,
    load_project_config,
    load_user_config,
)
from .errors import InvalidKeyFormat, NoAccess, PassphraseRequired, PrivateKeyNotFound
from .keystore import KeyStore
from .utils import PROJECT_DIRECTORY

log = logging.getLogger(__name__)

PASSPHRASE_ATTEMPTS = 3

PassphrasePrompt = typing.Callable[[], bytes]


@attr.s(frozen=True, kw_only=True)
class Context:
    root: pathlib.Path = attr.ib(converter=pathlib.Path)
    settings: Settings = attr.ib()
    user: UserConfig = attr.ib()
    private_key_data: typing.Optional[bytes] = attr.ib(default=None, repr=False)
    passphrase: typing.Optional[PassphrasePrompt] = attr.ib(default=None, repr=False)

    @classmethod
    def load(
            cls,
            root: pathlib.Path,
            settings: typing.Optional[Settings] = None,
            **kwargs) -> 'Context':
        settings = settings or Settings.from_environment()
        return cls(
            root=pathlib.Path(root).resolve(),
            settings=settings,
            user=load_user_config(settings),
            **kwargs)

    @property
    def directory(self) -> pathlib.Path:
        return self.root / PROJECT_DIRECTORY

    @property
    def initialized(self) -> bool:
        return self.directory.is_dir()

    @property
    def keystore(self) -> KeyStore:
        return KeyStore(self.directory)

    @property
    def audit_path(self) -> pathlib.Path:
        return self.directory / audit.AUDIT_FILE

    def registry(self) -> ProjectConfig:
        return load_project_config(self.root)

    def device_uuid(self, registry: ProjectConfig) -> typing.Optional[str]:
        """The device this user uses in the project, according to their config."""
        device_name = self.user.projects.get(registry.uuid)
        if device_name and self.user.email:
            return registry.find_device(self.user.email, device_name)
        return None

    def has_private_key(self, registry: ProjectConfig) -> bool:
        return (self.private_key_data is not None
                or self.settings.private_key_path(registry.uuid).is_file())

    def private_key(self, registry: ProjectConfig) -> crypto.PrivateKey:
        data = self.private_key_data
        if data is None:
            path = self.settings.private_key_path(registry.uuid)
            log.debug(f"Loading private key from {path}")
            try:
                data = path.read_bytes()
            except FileNotFoundError as error:
                raise PrivateKeyNotFound(path) from error

        try:
            return crypto.load_private_key(data)
        except PassphraseRequired:
            if self.passphrase is None:
                raise

        for attempt in range(1, PASSPHRASE_ATTEMPTS + 1):
            try:
                return crypto.load_private_key(data, self.passphrase())
            except PassphraseRequired:
                log.warning(f"Incorrect passphrase ({attempt}/{PASSPHRASE_ATTEMPTS})")

        raise PassphraseRequired(
            f"Failed to decrypt private key after {PASSPHRASE_ATTEMPTS} attempts")

    def own_device(self, registry: ProjectConfig) -> typing.Optional[str]:
        """
        Find the actor's device UUID.

        Falls back to matching the private key against every public key in
        the project, which is how a CI runner with no user config finds its
        device.
        """
        device_uuid = self.device_uuid(registry)
        if device_uuid is not None or not self.has_private_key(registry):
            return device_uuid

        numbers = self.private_key(registry).public_key().public_numbers()
        for candidate in self.keystore.list_public_key_uuids():
            try:
                public_key = self.keystore.get_public_key(candidate)
            except InvalidKeyFormat:
                continue
            if public_key.public_numbers() == numbers:
                log.debug(f"Matched private key to device {candidate}")
                return candidate
        return None

    def content_key(self, registry: ProjectConfig) -> bytes:
        """Unwrap the project's symmetric key with the actor's private key."""
        device_uuid = self.own_device(registry)
        if device_uuid is None or not self.keystore.has_envelope(device_uuid):
            raise NoAccess()

        envelope = self.keystore.get_envelope(device_uuid)
        return crypto.unwrap_key(envelope, self.private_key(registry))
