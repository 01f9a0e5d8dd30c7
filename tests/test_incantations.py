import pathlib

import pytest

from kanuka.errors import FileNotFound, InvalidFileType, KanukaError, NoFilesFound
from kanuka.incantations import EnvIncantation, PatternIncantation, is_encrypted, is_tracked, pair
from kanuka.secrets import Secret


@pytest.mark.parametrize('name,tracked,encrypted', [
    ('.env', True, False),
    ('.env.production', True, False),
    ('prod.env', True, False),
    ('.env.kanuka', False, True),
    ('config.toml', False, False),
    ('notes.kanuka', False, False),
])
def test_classification(name, tracked, encrypted):
    assert is_tracked(pathlib.Path(name)) is tracked
    assert is_encrypted(pathlib.Path(name)) is encrypted


def test_pair():
    assert pair(pathlib.Path('a/.env')) == (pathlib.Path('a/.env.kanuka'), pathlib.Path('a/.env'))
    assert pair(pathlib.Path('a/.env.kanuka')) == (pathlib.Path('a/.env.kanuka'), pathlib.Path('a/.env'))


def test_secret_requires_kanuka_suffix():
    with pytest.raises(KanukaError):
        Secret(encrypted=pathlib.Path('.env.gpg'), decrypted=pathlib.Path('.env'))


def test_search_skips_project_directory(project, secrets):
    (project / '.kanuka').mkdir()
    (project / '.kanuka' / 'stray.env').write_text('')
    (project / 'old.env.kanuka').write_bytes(b'')

    names = [d.relative_to(project).as_posix() for _, d in EnvIncantation().search(project)]
    assert names == ['.env', 'old.env', 'services/api/.env.production', 'services/web/.env.local']


def test_patterns(project, secrets):
    incantation = PatternIncantation(patterns=['services', '.env'], encrypting=True)
    assert len(incantation.secrets(project)) == 3

    incantation = PatternIncantation(patterns=['services/*/.env.*'], encrypting=True)
    assert len(incantation.secrets(project)) == 2


def test_patterns_missing_file(project, secrets):
    with pytest.raises(FileNotFound):
        PatternIncantation(patterns=['missing.env'], encrypting=True).search(project)


def test_patterns_wrong_direction(project, secrets):
    with pytest.raises(InvalidFileType):
        PatternIncantation(patterns=['.env'], encrypting=False).search(project)


def test_patterns_no_matches(project, secrets):
    with pytest.raises(NoFilesFound):
        PatternIncantation(patterns=['*.json'], encrypting=True).search(project)
