import logging
import os.path
import pathlib
import typing

import attr

from . import crypto
from .errors import DecryptFailed, KanukaError
from .utils import write_atomic

log = logging.getLogger(__name__)


@attr.s(frozen=True, kw_only=True)
class Secret:
    encrypted: pathlib.Path = attr.ib()
    decrypted: pathlib.Path = attr.ib()

    def __attrs_post_init__(self):
        if self.encrypted.suffix != '.kanuka':
            raise KanukaError(
                f"I don't know how to decrypt {self.encrypted.name}")

    def __str__(self):
        return self.encrypted.name

    def ciphertext(self) -> bytes:
        log.debug(f"Reading contents of {self.encrypted}")
        return self.encrypted.read_bytes()

    def plaintext(self) -> bytes:
        log.debug(f"Reading contents of {self.decrypted}")
        return self.decrypted.read_bytes()

    def contents(self, key: bytes) -> bytes:
        """Decrypt the encrypted file in memory."""
        try:
            return crypto.decrypt_content(key, self.ciphertext())
        except DecryptFailed as error:
            raise DecryptFailed(self.encrypted) from error

    def encrypt(self, key: bytes) -> None:
        log.debug(f"Encrypting {self.decrypted} to {self.encrypted}")
        self.write_encrypted(key, self.plaintext())

    def write_decrypted(self, plaintext: bytes) -> None:
        log.debug(f"Writing plaintext of {self.encrypted} to {self.decrypted}")
        self.decrypted.parent.mkdir(parents=True, exist_ok=True)
        write_atomic(self.decrypted, plaintext, mode=0o644)

    def write_encrypted(self, key: bytes, plaintext: bytes) -> None:
        write_atomic(self.encrypted, crypto.encrypt_content(key, plaintext), mode=0o644)


@attr.s(frozen=True)
class Transfer:
    """A planned or completed write from one half of a secret to the other."""

    source: pathlib.Path = attr.ib()
    destination: pathlib.Path = attr.ib()
    overwrites: bool = attr.ib()


@attr.s(frozen=True)
class SecretKeeper:
    secrets: typing.Dict[pathlib.Path, Secret] = attr.ib()

    directory: pathlib.Path = attr.ib(factory=pathlib.Path.cwd)

    def __iter__(self):
        return iter(sorted(self.secrets.values(), key=lambda s: s.encrypted))

    def __len__(self):
        return len(self.secrets)

    def rel(self, path: pathlib.Path) -> str:
        return os.path.relpath(path.as_posix(), self.directory.as_posix())

    def plaintexts(self) -> typing.List[Secret]:
        """Secrets whose plaintext exists and can be encrypted."""
        return [s for s in self if s.decrypted.is_file()]

    def ciphertexts(self) -> typing.List[Secret]:
        """Secrets whose encrypted file exists and can be decrypted."""
        return [s for s in self if s.encrypted.is_file()]

    def encrypt(self, key: bytes, dry_run: bool = False) -> typing.List[Transfer]:
        selected = self.plaintexts()
        log.info(f"Encrypting {len(selected)} secrets")
        transfers = []
        for secret in selected:
            transfers.append(Transfer(
                secret.decrypted, secret.encrypted, secret.encrypted.exists()))
            if not dry_run:
                log.info(f"Encrypting {self.rel(secret.decrypted)} "
                         f"to {self.rel(secret.encrypted)}")
                secret.encrypt(key)
        return transfers

    def decrypt(self, key: bytes, dry_run: bool = False) -> typing.List[Transfer]:
        selected = self.ciphertexts()
        log.info(f"Decrypting {len(selected)} secrets")

        # Every file is decrypted before any plaintext is written.
        contents = {secret: secret.contents(key) for secret in selected}

        transfers = []
        for secret, plaintext in contents.items():
            transfers.append(Transfer(
                secret.encrypted, secret.decrypted, secret.decrypted.exists()))
            if not dry_run:
                log.info(f"Decrypting {self.rel(secret.encrypted)} "
                         f"to {self.rel(secret.decrypted)}")
                secret.write_decrypted(plaintext)
        return transfers

    def reencrypt(
            self,
            old_key: bytes,
            new_key: bytes,
            skip_unreadable: bool = False,
    ) -> typing.Tuple[typing.Dict[Secret, bytes], typing.List[pathlib.Path]]:
        """
        Decrypt every encrypted file with old_key and return new ciphertext.

        Nothing is written; the caller decides when to commit the result.
        With skip_unreadable, files that old_key cannot decrypt are left out
        and returned as the second item instead of raising DecryptFailed.
        """
        ciphertexts = {}
        unreadable = []
        for secret in self.ciphertexts():
            try:
                plaintext = secret.contents(old_key)
            except DecryptFailed:
                if not skip_unreadable:
                    raise
                log.warning(f"Skipping {self.rel(secret.encrypted)}, it cannot be decrypted")
                unreadable.append(secret.encrypted)
                continue
            ciphertexts[secret] = crypto.encrypt_content(new_key, plaintext)
        return ciphertexts, unreadable
