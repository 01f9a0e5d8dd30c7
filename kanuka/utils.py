import logging
import os
import pathlib
import re
import socket
import tempfile
import typing

import git

log = logging.getLogger(__name__)

PROJECT_DIRECTORY = '.kanuka'

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$')
DEVICE_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9_-]*$')
UUID_PATTERN = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$')


def find_git_directory(
        path: typing.Optional[pathlib.Path] = None) -> typing.Optional[pathlib.Path]:
    try:
        repo = git.Repo(path or pathlib.Path.cwd(), search_parent_directories=True)
    except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
        return None
    if repo.working_dir is None:
        return None
    return pathlib.Path(repo.working_dir)


def find_project_root(
        path: typing.Optional[pathlib.Path] = None) -> typing.Optional[pathlib.Path]:
    """Find the nearest directory at or above path that contains '.kanuka/'."""
    start = (path or pathlib.Path.cwd()).resolve()
    for directory in (start, *start.parents):
        if (directory / PROJECT_DIRECTORY).is_dir():
            return directory
    return None


def default_project_path() -> pathlib.Path:
    return find_project_root() or find_git_directory() or pathlib.Path.cwd()


def in_project_directory(path: pathlib.Path) -> bool:
    return PROJECT_DIRECTORY in path.parts


def git_ignored(
        root: pathlib.Path,
        paths: typing.Iterable[pathlib.Path]) -> typing.Optional[typing.Set[pathlib.Path]]:
    """
    Return the subset of paths ignored by git.

    Returns None when root is not inside a git work tree.
    """
    try:
        repo = git.Repo(root, search_parent_directories=True)
    except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
        return None

    paths = [path.resolve() for path in paths]
    if not paths:
        return set()

    ignored = repo.ignored(*(path.as_posix() for path in paths))
    working_dir = pathlib.Path(repo.working_dir)
    return {(working_dir / path).resolve() for path in ignored}


def write_atomic(path: pathlib.Path, data: bytes, mode: int = 0o600) -> None:
    """Replace the contents of path in a single rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temporary = tempfile.mkstemp(dir=path.parent, prefix=f'.{path.name}.')
    try:
        with os.fdopen(fd, 'wb') as file:
            file.write(data)
        os.chmod(temporary, mode)
        os.replace(temporary, path)
    except BaseException:
        pathlib.Path(temporary).unlink(missing_ok=True)
        raise
    log.debug(f"Wrote {len(data)} bytes to {path}")


def is_valid_email(email: typing.Optional[str]) -> bool:
    return bool(email) and EMAIL_PATTERN.match(email) is not None


def is_valid_device_name(name: typing.Optional[str]) -> bool:
    return bool(name) and DEVICE_NAME_PATTERN.match(name) is not None


def is_uuid(value: str) -> bool:
    return UUID_PATTERN.match(value) is not None


def sanitize_device_name(name: str) -> str:
    """Reduce a name to letters, digits, hyphens and underscores."""
    name = re.sub(r'[^a-zA-Z0-9_-]+', '-', name.strip()).strip('-_')
    return name or 'device'


def generate_device_name(
        existing: typing.Iterable[str],
        base: typing.Optional[str] = None) -> str:
    """Name a device after this host, adding a numeric suffix if it is taken."""
    base = sanitize_device_name(base or socket.gethostname().split('.')[0])
    taken = set(existing)
    name, suffix = base, 2
    while name in taken:
        name = f'{base}-{suffix}'
        suffix += 1
    return name


def is_tty_available() -> bool:
    """Check that a controlling terminal can be opened, whatever stdout is."""
    try:
        with open('/dev/tty', 'r') as tty:
            return tty.isatty()
    except OSError:
        return False
