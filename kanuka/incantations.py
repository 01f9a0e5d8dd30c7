"""
Each Incantation can be converted to a list of secrets.

A secret is a plaintext file with '.env' in its name, paired with an
encrypted sibling that has '.kanuka' appended to the name. Nothing inside
the '.kanuka/' directory is ever a secret.
"""

import logging
import os
import pathlib
import typing

import attr

from .errors import FileNotFound, InvalidFileType, NoFilesFound
from .secrets import Secret
from .utils import PROJECT_DIRECTORY, in_project_directory

log = logging.getLogger(__name__)

Pair = typing.Tuple[pathlib.Path, pathlib.Path]
Pairs = typing.Sequence[Pair]
PairMap = typing.Dict[pathlib.Path, Secret]

ENCRYPTED_SUFFIX = '.kanuka'
GLOB_CHARACTERS = frozenset('*?[')


def is_tracked(path: pathlib.Path) -> bool:
    """Plaintext secrets are files with '.env' in their name."""
    return '.env' in path.name and not path.name.endswith(ENCRYPTED_SUFFIX)


def is_encrypted(path: pathlib.Path) -> bool:
    return '.env' in path.name and path.name.endswith(ENCRYPTED_SUFFIX)


def pair(path: pathlib.Path) -> Pair:
    """Return the (encrypted, decrypted) pair that a path belongs to."""
    if path.name.endswith(ENCRYPTED_SUFFIX):
        return path, path.with_name(path.name[:-len(ENCRYPTED_SUFFIX)])
    return path.with_name(path.name + ENCRYPTED_SUFFIX), path


class Incantation:
    def search(self, directory: pathlib.Path) -> Pairs:
        raise NotImplementedError

    def secrets(self, directory: pathlib.Path) -> PairMap:
        return {encrypted.resolve(): Secret(
            encrypted=encrypted.resolve(),
            decrypted=decrypted.resolve(),
        ) for encrypted, decrypted in self.search(directory)}


class EnvIncantation(Incantation):
    """
    Search for secrets to encrypt/decrypt in a directory.

    Selects every plaintext '.env' file and every '.env*.kanuka' file,
    skipping the '.kanuka/' metadata directory.
    """

    def search(self, directory: pathlib.Path) -> Pairs:
        log.info(f"Searching for secrets in {directory}")
        found: typing.Dict[pathlib.Path, Pair] = {}

        for path in self.files(directory):
            if is_tracked(path) or is_encrypted(path):
                encrypted, decrypted = pair(path)
                found[decrypted] = (encrypted, decrypted)

        log.info(f"Search found {len(found)} secrets in {directory}")
        return tuple(found[k] for k in sorted(found))

    @staticmethod
    def files(directory: pathlib.Path) -> typing.Iterator[pathlib.Path]:
        """Walk a directory for regular files, never entering '.kanuka/'."""
        for current, directories, files in os.walk(directory):
            directories[:] = sorted(d for d in directories if d != PROJECT_DIRECTORY)
            for name in sorted(files):
                path = pathlib.Path(current) / name
                if path.is_file() and not path.is_symlink():
                    yield path


@attr.s(frozen=True, kw_only=True)
class PatternIncantation(Incantation):
    """
    Select secrets from explicit paths, directories and glob patterns.

    Relative patterns are resolved against the directory being searched.
    When encrypting, explicit files must be plaintext secrets; when
    decrypting, they must be encrypted secrets.
    """

    patterns: typing.Sequence[str] = attr.ib()
    encrypting: bool = attr.ib()

    def search(self, directory: pathlib.Path) -> Pairs:
        found: typing.Dict[pathlib.Path, Pair] = {}

        for pattern in self.patterns:
            for encrypted, decrypted in self.resolve(directory, pattern):
                found.setdefault(decrypted, (encrypted, decrypted))

        if not found:
            raise NoFilesFound(
                f"No files matched {', '.join(self.patterns)}",
                remedy="Check the paths, or run without arguments to select every secret")

        log.info(f"Patterns selected {len(found)} secrets")
        return tuple(found.values())

    def resolve(self, directory: pathlib.Path, pattern: str) -> Pairs:
        path = pathlib.Path(pattern)
        if not path.is_absolute():
            path = directory / path

        if path.is_dir():
            return self.filter(EnvIncantation().search(path))

        if GLOB_CHARACTERS & set(pattern):
            return self.filter(self.glob(directory, pattern))

        if not path.exists():
            raise FileNotFound(pattern)

        if self.encrypting and not is_tracked(path):
            raise InvalidFileType(f"Not a .env file: {pattern}")
        if not self.encrypting and not is_encrypted(path):
            raise InvalidFileType(f"Not a .kanuka file: {pattern}")

        return (pair(path),)

    def filter(self, pairs: Pairs) -> Pairs:
        """Keep the pairs that have the file this direction starts from."""
        index = 1 if self.encrypting else 0
        return tuple(p for p in pairs if p[index].is_file())

    @staticmethod
    def glob(directory: pathlib.Path, pattern: str) -> Pairs:
        path = pathlib.Path(pattern)
        if path.is_absolute():
            base, pattern = pathlib.Path(path.anchor), str(path.relative_to(path.anchor))
        else:
            base = directory

        pairs = []
        for match in sorted(base.glob(pattern)):
            if match.is_file() and not in_project_directory(match.relative_to(base)):
                if is_tracked(match) or is_encrypted(match):
                    pairs.append(pair(match))
        return tuple(pairs)
