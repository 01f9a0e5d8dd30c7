"""
The on-disk layout of public keys and symmetric key envelopes.

    .kanuka/public_keys/<uuid>.pub      PEM public key of a device
    .kanuka/secrets/<uuid>.kanuka       symmetric key wrapped for that device

A device UUID with both files is active, with only a public key is pending,
and with only an envelope is an orphan.
"""

import enum
import logging
import pathlib
import typing

import attr

from . import crypto
from .errors import InvalidEnvelope, NotFound
from .utils import write_atomic

log = logging.getLogger(__name__)

PUBLIC_KEY_SUFFIX = '.pub'
ENVELOPE_SUFFIX = '.kanuka'


class Status(enum.Enum):
    ACTIVE = 'active'
    PENDING = 'pending'
    ORPHAN = 'orphan'

    def __str__(self):
        return self.value


@attr.s(frozen=True)
class KeyStore:
    directory: pathlib.Path = attr.ib()

    @property
    def public_keys(self) -> pathlib.Path:
        return self.directory / 'public_keys'

    @property
    def secrets(self) -> pathlib.Path:
        return self.directory / 'secrets'

    def public_key_path(self, uuid: str) -> pathlib.Path:
        return self.public_keys / f'{uuid}{PUBLIC_KEY_SUFFIX}'

    def envelope_path(self, uuid: str) -> pathlib.Path:
        return self.secrets / f'{uuid}{ENVELOPE_SUFFIX}'

    def has_public_key(self, uuid: str) -> bool:
        return self.public_key_path(uuid).is_file()

    def has_envelope(self, uuid: str) -> bool:
        return self.envelope_path(uuid).is_file()

    def create(self) -> None:
        self.public_keys.mkdir(parents=True, exist_ok=True)
        self.secrets.mkdir(parents=True, exist_ok=True)

    def put_public_key(self, uuid: str, key: bytes) -> pathlib.Path:
        path = self.public_key_path(uuid)
        log.debug(f"Writing public key for {uuid} to {path}")
        write_atomic(path, key, mode=0o644)
        return path

    def get_public_key(self, uuid: str) -> crypto.PublicKey:
        return crypto.load_public_key(self._read(self.public_key_path(uuid)))

    def delete_public_key(self, uuid: str) -> bool:
        return self._delete(self.public_key_path(uuid))

    def put_envelope(self, uuid: str, envelope: bytes) -> pathlib.Path:
        path = self.envelope_path(uuid)
        log.debug(f"Writing encrypted symmetric key for {uuid} to {path}")
        write_atomic(path, envelope, mode=0o600)
        return path

    def get_envelope(self, uuid: str) -> bytes:
        envelope = self._read(self.envelope_path(uuid))
        if not envelope:
            raise InvalidEnvelope(f"{self.envelope_path(uuid)} is empty")
        return envelope

    def delete_envelope(self, uuid: str) -> bool:
        return self._delete(self.envelope_path(uuid))

    def list_public_key_uuids(self) -> typing.List[str]:
        return self._list(self.public_keys, PUBLIC_KEY_SUFFIX)

    def list_envelope_uuids(self) -> typing.List[str]:
        return self._list(self.secrets, ENVELOPE_SUFFIX)

    def classify(self) -> typing.Dict[str, Status]:
        """Classify every UUID found in either directory exactly once."""
        public_keys = set(self.list_public_key_uuids())
        envelopes = set(self.list_envelope_uuids())

        statuses = {}
        for uuid in sorted(public_keys | envelopes):
            if uuid in public_keys and uuid in envelopes:
                statuses[uuid] = Status.ACTIVE
            elif uuid in public_keys:
                statuses[uuid] = Status.PENDING
            else:
                statuses[uuid] = Status.ORPHAN
        return statuses

    def uuids_with_status(self, status: Status) -> typing.List[str]:
        return [uuid for uuid, s in self.classify().items() if s is status]

    @staticmethod
    def _read(path: pathlib.Path) -> bytes:
        try:
            return path.read_bytes()
        except FileNotFoundError as error:
            raise NotFound(path) from error

    @staticmethod
    def _delete(path: pathlib.Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        log.debug(f"Deleted {path}")
        return True

    @staticmethod
    def _list(directory: pathlib.Path, suffix: str) -> typing.List[str]:
        if not directory.is_dir():
            return []
        return sorted(
            path.name[:-len(suffix)] for path in directory.iterdir()
            if path.is_file() and path.name.endswith(suffix))
