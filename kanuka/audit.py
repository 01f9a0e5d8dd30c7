"""
The audit trail, an append-only JSON Lines file at '.kanuka/audit.jsonl'.

Each line records one operation: when it happened, who did it and the
fields relevant to that operation. Empty fields are left out of the line.
"""

import datetime
import json
import logging
import pathlib
import typing

import attr

from .errors import InvalidDateFormat, NoFilesFound

log = logging.getLogger(__name__)

AUDIT_FILE = 'audit.jsonl'
DATE_FORMAT = '%Y-%m-%d'


def timestamp() -> str:
    return datetime.datetime.now(datetime.timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')


@attr.s(frozen=True, kw_only=True)
class Entry:
    ts: str = attr.ib(factory=timestamp)
    user: str = attr.ib(default='')
    uuid: str = attr.ib(default='')
    op: str = attr.ib()

    files: typing.Sequence[str] = attr.ib(default=(), converter=tuple)
    target_user: str = attr.ib(default='')
    target_uuid: str = attr.ib(default='')
    device: str = attr.ib(default='')
    users_count: int = attr.ib(default=0)
    files_count: int = attr.ib(default=0)
    removed_count: int = attr.ib(default=0)
    mode: str = attr.ib(default='')
    output_path: str = attr.ib(default='')
    project_name: str = attr.ib(default='')
    project_uuid: str = attr.ib(default='')
    device_name: str = attr.ib(default='')

    @classmethod
    def from_json(cls, data: typing.Mapping[str, typing.Any]) -> 'Entry':
        names = {a.name for a in attr.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})

    def to_json(self) -> typing.Dict[str, typing.Any]:
        data = attr.asdict(self, retain_collection_types=False)
        required = ('ts', 'user', 'uuid', 'op')
        return {k: v for k, v in data.items() if k in required or v}

    @property
    def when(self) -> datetime.datetime:
        return datetime.datetime.fromisoformat(self.ts.replace('Z', '+00:00'))


def record(path: pathlib.Path, user, op: str, **fields) -> Entry:
    """Append an entry for a user's operation. Never raises on I/O errors."""
    entry = Entry(user=user.email, uuid=user.uuid, op=op, **fields)
    append(path, entry)
    return entry


def append(path: pathlib.Path, entry: Entry) -> None:
    if not path.parent.is_dir():
        log.warning(f"Not writing audit entry for {entry.op}, {path.parent} does not exist")
        return

    try:
        with path.open('a', encoding='utf-8') as file:
            file.write(json.dumps(entry.to_json(), separators=(',', ':')) + '\n')
    except OSError as error:
        log.warning(f"Failed to write audit entry to {path}: {error}")
    else:
        log.debug(f"Recorded {entry.op} in {path}")


def parse(text: str) -> typing.List[Entry]:
    """Parse JSON Lines, skipping any line that is not a valid entry."""
    entries = []
    for number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            data = json.loads(line)
            if not isinstance(data, dict):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            entries.append(Entry.from_json(data))
        except (ValueError, TypeError) as error:
            log.debug(f"Skipping malformed audit line {number}: {error}")
    return entries


def read(path: pathlib.Path) -> typing.List[Entry]:
    try:
        return parse(path.read_text(encoding='utf-8'))
    except FileNotFoundError as error:
        raise NoFilesFound(
            "No audit log found",
            remedy="Operations are recorded once you encrypt, decrypt or manage access") from error


def parse_date(value: str) -> datetime.datetime:
    try:
        date = datetime.datetime.strptime(value, DATE_FORMAT)
    except ValueError as error:
        raise InvalidDateFormat(f"Invalid date {value!r}, expected YYYY-MM-DD") from error
    return date.replace(tzinfo=datetime.timezone.utc)


def query(
        entries: typing.Sequence[Entry],
        user: typing.Optional[str] = None,
        operations: typing.Optional[str] = None,
        since: typing.Optional[str] = None,
        until: typing.Optional[str] = None,
        reverse: bool = False,
        limit: int = 0) -> typing.List[Entry]:
    """
    Filter entries the way 'kanuka log' does.

    Dates are inclusive: until='2024-01-31' keeps every entry on that day.
    The limit keeps the most recent entries, whichever order is used.
    """
    # Parse both dates first so a bad date fails before anything else.
    start = parse_date(since) if since else None
    end = parse_date(until) + datetime.timedelta(days=1) if until else None

    selected = list(entries)
    if user:
        selected = [e for e in selected if e.user.lower() == user.lower()]
    if operations:
        ops = {op.strip().lower() for op in operations.split(',') if op.strip()}
        selected = [e for e in selected if e.op.lower() in ops]
    if start is not None:
        selected = [e for e in selected if _when(e) is not None and _when(e) >= start]
    if end is not None:
        selected = [e for e in selected if _when(e) is not None and _when(e) < end]

    if reverse:
        selected.reverse()

    if limit > 0 and len(selected) > limit:
        selected = selected[:limit] if reverse else selected[-limit:]

    return selected


def _when(entry: Entry) -> typing.Optional[datetime.datetime]:
    try:
        return entry.when
    except ValueError:
        return None


def details(entry: Entry, oneline: bool = False) -> str:
    """A short summary of what an entry did."""
    if entry.op in ('encrypt', 'decrypt'):
        if not entry.files:
            return ''
        if oneline or len(entry.files) > 3:
            return f"{len(entry.files)} files"
        return ', '.join(entry.files)
    if entry.op in ('register', 'ci-init'):
        return entry.target_user
    if entry.op == 'revoke':
        return f"{entry.target_user} ({entry.device})" if entry.device else entry.target_user
    if entry.op == 'sync':
        return f"{entry.users_count} users, {entry.files_count} files"
    if entry.op == 'clean':
        return f"removed {entry.removed_count}" if oneline else \
            f"removed {entry.removed_count} entries"
    if entry.op == 'init':
        return entry.project_name
    if entry.op in ('create', 'rotate'):
        return entry.device_name
    return ''
