from datetime import datetime
import os
from pathlib import Path

from freezegun import freeze_time
import pytest

from jotdir.crypto import is_encrypted
from jotdir.errors import AlreadyExists, DecryptionError, EncryptionError, InvalidName, MigrationError,\
    NotebookNotFound, ParseError
from jotdir.models import ActiveNotebookContext, AddTagsCmd, ByPrefix, ByRecency, DelTagsCmd, Frontmatter,\
    NotebookInfo, SetPinnedCmd, SetTagsCmd, TogglePinnedCmd
from jotdir.notebooks import NotebookRepo, default_ignore, validate_notebook_name


def test_default_ignore():
    assert default_ignore('/jots', '.2025-07-21-103000.md.abc123')
    assert default_ignore('/jots', '2025-07-21-103000.md.icloud')
    assert not default_ignore('/jots', '2025-07-21-103000.md')


def test_validate_notebook_name():
    for name in ['default', 'work', 'my-notes', 'a_b.c', '2025']:
        validate_notebook_name(name)
    for name in ['', '.hidden', 'a/b', '..', 'has space', 'x' * 65, 'tab\t']:
        with pytest.raises(InvalidName):
            validate_notebook_name(name)


def test_fresh_root_gets_default_notebook(fs):
    repo = NotebookRepo('/jots')
    assert repo.notebook_names() == ['default']
    assert os.path.isdir('/jots/notebooks/default')


def test_create_notebook(fs):
    repo = NotebookRepo('/jots')
    assert repo.create_notebook('work') == NotebookInfo('work', '/jots/notebooks/work')
    assert repo.notebook_names() == ['default', 'work']
    with pytest.raises(AlreadyExists):
        repo.create_notebook('work')
    with pytest.raises(InvalidName):
        repo.create_notebook('../escape')
    assert repo.notebooks(ActiveNotebookContext('work')) == [
        NotebookInfo('default', '/jots/notebooks/default', False),
        NotebookInfo('work', '/jots/notebooks/work', True),
    ]


def test_notebook_not_created_implicitly(fs):
    repo = NotebookRepo('/jots')
    with pytest.raises(NotebookNotFound, match='jotdir notebook new personal'):
        repo.create_jot('personal', 'hi')
    assert not os.path.exists('/jots/notebooks/personal')


def test_hidden_dirs_are_not_notebooks(fs):
    fs.create_dir('/jots/notebooks/default')
    fs.create_dir('/jots/notebooks/.trash')
    fs.create_file('/jots/notebooks/stray.md')
    assert NotebookRepo('/jots').notebook_names() == ['default']


@freeze_time('2025-07-21 10:30:00')
def test_create_jot(fs):
    repo = NotebookRepo('/jots')
    jot = repo.create_jot('default', 'Hello **world**\n', ['Idea', 'cli', 'idea'])
    assert jot.id == '2025-07-21-103000'
    assert jot.path == '/jots/notebooks/default/2025-07-21-103000.md'
    assert jot.tags == {'idea', 'cli'}
    assert Path(jot.path).read_text() == """---
tags:
- cli
- idea
created: 2025-07-21 10:30:00
---
Hello **world**
"""
    loaded = repo.load('default', jot.id)
    assert loaded.frontmatter == jot.frontmatter
    assert loaded.body == 'Hello **world**\n'


@freeze_time('2025-07-21 10:30:00')
def test_same_second_creation_never_overwrites(fs):
    repo = NotebookRepo('/jots')
    first = repo.create_jot('default', 'first')
    second = repo.create_jot('default', 'second')
    third = repo.create_jot('default', 'third')
    assert [first.id, second.id, third.id] == ['2025-07-21-103000', '2025-07-21-103000-01', '2025-07-21-103000-02']
    assert repo.ids('default') == [first.id, second.id, third.id]
    assert [j.body for j in repo.jots('default')] == ['first', 'second', 'third']


@freeze_time('2025-07-21 10:30:00')
def test_collision_with_file_from_elsewhere(fs):
    fs.create_file('/jots/notebooks/default/2025-07-21-103000.md', contents='written by another process')
    repo = NotebookRepo('/jots')
    jot = repo.create_jot('default', 'mine')
    assert jot.id == '2025-07-21-103000-01'
    assert Path('/jots/notebooks/default/2025-07-21-103000.md').read_text() == 'written by another process'


@freeze_time('2025-07-21 10:30:00')
def test_collision_exhausted(fs):
    fs.create_file('/jots/notebooks/default/2025-07-21-103000.md')
    for i in range(1, 100):
        fs.create_file(f'/jots/notebooks/default/2025-07-21-103000-{i:02d}.md')
    with pytest.raises(AlreadyExists):
        NotebookRepo('/jots').create_jot('default', 'no room')


def test_ids_skip_other_files(fs):
    fs.create_file('/jots/notebooks/default/2025-07-21-103000.md')
    fs.create_file('/jots/notebooks/default/.2025-07-21-103000.md.tmp1234')
    fs.create_file('/jots/notebooks/default/notes.txt')
    fs.create_dir('/jots/notebooks/default/subdir.md')
    assert NotebookRepo('/jots').ids('default') == ['2025-07-21-103000']


def test_find(fs):
    fs.create_file('/jots/notebooks/default/2025-07-20-090000.md', contents='A')
    fs.create_file('/jots/notebooks/default/2025-07-21-090000.md', contents='B')
    fs.create_file('/jots/notebooks/default/2025-07-22-090000.md', contents='C')
    fs.create_file('/jots/notebooks/work/2025-07-23-090000.md', contents='elsewhere')
    repo = NotebookRepo('/jots')
    assert repo.find('default', ByRecency(1)).body == 'C'
    assert repo.find('default', ByRecency(3)).body == 'A'
    assert repo.find('default', ByPrefix('2025-07-21')).body == 'B'
    assert repo.find('work', ByRecency()).body == 'elsewhere'


def test_load_parse_error_names_path(fs):
    fs.create_file('/jots/notebooks/default/2025-07-20-090000.md', contents='---\ntags: nope\n---\n')
    with pytest.raises(ParseError, match='/jots/notebooks/default/2025-07-20-090000.md'):
        NotebookRepo('/jots').load('default', '2025-07-20-090000')


def test_change(fs):
    path = '/jots/notebooks/default/2025-07-20-090000.md'
    fs.create_file(path, contents='---\ntags: [cli]\nmood: ok\n---\nbody\n')
    repo = NotebookRepo('/jots')
    assert repo.change([AddTagsCmd(path, {'idea', 'idea'}), SetPinnedCmd(path, True)]) == [path]
    assert Path(path).read_text() == '---\ntags:\n- cli\n- idea\npinned: true\nmood: ok\n---\nbody\n'
    assert repo.change([DelTagsCmd(path, {'idea'}), TogglePinnedCmd(path)]) == [path]
    assert Path(path).read_text() == '---\ntags:\n- cli\nmood: ok\n---\nbody\n'
    assert repo.change([SetTagsCmd(path, {'x', 'y'})]) == [path]
    assert repo.load('default', '2025-07-20-090000').tags == {'x', 'y'}


def test_change_without_effect_leaves_file_alone(fs):
    path = '/jots/notebooks/default/2025-07-20-090000.md'
    original = '---\ntags: [CLI]\n---\nbody'
    fs.create_file(path, contents=original)
    repo = NotebookRepo('/jots')
    assert repo.change([AddTagsCmd(path, {'cli'}), DelTagsCmd(path, {'missing'})]) == []
    assert Path(path).read_text() == original


def test_change_leaves_no_temp_files(fs):
    path = '/jots/notebooks/default/2025-07-20-090000.md'
    fs.create_file(path, contents='body')
    repo = NotebookRepo('/jots')
    repo.change([AddTagsCmd(path, {'a'})])
    assert os.listdir('/jots/notebooks/default') == ['2025-07-20-090000.md']


def test_failed_replace_keeps_original(tmp_path, mocker):
    notebook = tmp_path / 'notebooks' / 'default'
    notebook.mkdir(parents=True)
    path = notebook / '2025-07-20-090000.md'
    path.write_text('body')
    repo = NotebookRepo(str(tmp_path))
    mocker.patch('os.replace', side_effect=OSError('disk full'))
    with pytest.raises(OSError, match='disk full'):
        repo.change([AddTagsCmd(str(path), {'a'})])
    assert path.read_text() == 'body'
    assert os.listdir(notebook) == ['2025-07-20-090000.md']


def test_save(fs):
    fs.create_file('/jots/notebooks/default/2025-07-20-090000.md', contents='---\nmood: ok\n---\nold body')
    repo = NotebookRepo('/jots')
    jot = repo.load('default', '2025-07-20-090000')
    jot.body = 'new body'
    repo.save(jot)
    assert Path(jot.path).read_text() == '---\nmood: ok\n---\nnew body'
    assert os.listdir('/jots/notebooks/default') == ['2025-07-20-090000.md']


def test_delete(fs):
    fs.create_file('/jots/notebooks/default/2025-07-20-090000.md', contents='bye')
    repo = NotebookRepo('/jots')
    repo.delete(repo.find('default', ByRecency()))
    assert repo.ids('default') == []


def test_import_jot(fs):
    repo = NotebookRepo('/jots')
    fm = Frontmatter(tags={'old'}, created=datetime(2020, 1, 2, 3, 4, 5))
    jot = repo.import_jot('default', '2020-01-02-030405', fm, 'imported')
    assert repo.load('default', jot.id).frontmatter == fm
    with pytest.raises(AlreadyExists):
        repo.import_jot('default', '2020-01-02-030405', Frontmatter(), 'again')
    assert repo.load('default', jot.id).body == 'imported'
    with pytest.raises(InvalidName):
        repo.import_jot('default', '../escape', Frontmatter(), 'x')


# Migration tests use the real filesystem because they patch os.rename.

def test_migrate(tmp_path):
    legacy = tmp_path / 'entries'
    legacy.mkdir()
    (legacy / '2024-01-01-000000.md').write_text('old jot')
    repo = NotebookRepo(str(tmp_path))
    assert repo.migrate()
    assert not legacy.exists()
    assert (tmp_path / 'notebooks' / 'default' / '2024-01-01-000000.md').read_text() == 'old jot'
    assert not repo.migrate()
    assert NotebookRepo(str(tmp_path)).notebook_names() == ['default']
    assert [j.body for j in NotebookRepo(str(tmp_path)).jots('default')] == ['old jot']


def test_migrate_skipped_when_notebooks_exist(tmp_path):
    (tmp_path / 'entries').mkdir()
    (tmp_path / 'notebooks' / 'work').mkdir(parents=True)
    repo = NotebookRepo(str(tmp_path))
    assert not repo.migrate()
    assert (tmp_path / 'entries').is_dir()
    assert repo.notebook_names() == ['work']


def test_migrate_nothing_to_do(tmp_path):
    assert not NotebookRepo(str(tmp_path)).migrate()
    assert not (tmp_path / 'notebooks').exists()


def test_migrate_failure_is_retryable(tmp_path, mocker):
    legacy = tmp_path / 'entries'
    legacy.mkdir()
    (legacy / 'a.md').write_text('keep me')
    mocker.patch('os.rename', side_effect=OSError('interrupted'))
    with pytest.raises(MigrationError, match='interrupted'):
        NotebookRepo(str(tmp_path)).notebook_names()
    assert (legacy / 'a.md').read_text() == 'keep me'
    assert not (tmp_path / 'notebooks').exists()

    mocker.stopall()
    repo = NotebookRepo(str(tmp_path))
    assert repo.notebook_names() == ['default']
    assert repo.load('default', 'a').body == 'keep me'


def test_migrate_after_crash_left_empty_notebooks_dir(tmp_path):
    legacy = tmp_path / 'entries'
    legacy.mkdir()
    (legacy / '2024-01-01-000000.md').write_text('old jot')
    (tmp_path / 'notebooks').mkdir()
    repo = NotebookRepo(str(tmp_path))
    assert repo.notebook_names() == ['default']
    assert not legacy.exists()
    assert [j.body for j in repo.jots('default')] == ['old jot']


def test_empty_notebooks_dir_gets_default(tmp_path):
    (tmp_path / 'notebooks').mkdir()
    assert NotebookRepo(str(tmp_path)).notebook_names() == ['default']


def test_migrate_concurrent_invocation(tmp_path, mocker):
    (tmp_path / 'entries').mkdir()
    real_rename = os.rename

    def lose_race(src, dst):
        real_rename(src, dst)
        raise FileNotFoundError(src)

    mocker.patch('os.rename', side_effect=lose_race)
    repo = NotebookRepo(str(tmp_path))
    assert not repo.migrate()
    assert (tmp_path / 'notebooks' / 'default').is_dir()


# Encryption

def test_encrypted_jots(fs):
    repo = NotebookRepo('/jots')
    repo.create_jot('default', 'plaintext from before')
    repo.init_encryption()
    jot = repo.create_jot('default', 'top secret', ['spy'])
    data = Path(jot.path).read_bytes()
    assert is_encrypted(data)
    assert b'secret' not in data and b'spy' not in data

    fresh = NotebookRepo('/jots')
    assert sorted(j.body for j in fresh.jots('default')) == ['plaintext from before', 'top secret']
    fresh.change([AddTagsCmd(jot.path, {'more'})])
    assert is_encrypted(Path(jot.path).read_bytes())
    assert fresh.load('default', jot.id).tags == {'spy', 'more'}


def test_init_encryption_twice(fs):
    repo = NotebookRepo('/jots')
    repo.init_encryption()
    with pytest.raises(EncryptionError):
        NotebookRepo('/jots').init_encryption()


def test_decrypt_all(fs):
    repo = NotebookRepo('/jots')
    repo.create_notebook('work')
    plain = repo.create_jot('default', 'was never encrypted')
    repo.init_encryption('pw')
    secret = repo.create_jot('work', 'secret', ['x'])

    fresh = NotebookRepo('/jots', lambda: 'pw')
    summary = fresh.decrypt_all()
    assert summary.ok
    assert summary.decrypted == [secret.path]
    assert summary.skipped == [plain.path]
    assert summary.keys_removed
    assert Path(secret.path).read_text().endswith('---\nsecret')
    assert not os.path.exists('/jots/identity.pem')
    assert not os.path.exists('/jots/recipient.pub')
    assert NotebookRepo('/jots').load('work', secret.id).tags == {'x'}

    with pytest.raises(EncryptionError, match='Nothing to do'):
        NotebookRepo('/jots').decrypt_all()


def test_decrypt_all_keeps_keys_after_failure(fs):
    repo = NotebookRepo('/jots')
    repo.init_encryption()
    good = repo.create_jot('default', 'good')
    bad_path = '/jots/notebooks/default/2000-01-01-000000.md'
    Path(bad_path).write_bytes(Path(good.path).read_bytes()[:-3] + b'bad')

    summary = NotebookRepo('/jots').decrypt_all()
    assert not summary.ok
    assert not summary.keys_removed
    assert summary.decrypted == [good.path]
    assert list(summary.failed) == [bad_path]
    assert isinstance(summary.failed[bad_path], DecryptionError)
    assert Path(good.path).read_text().endswith('good')
    assert os.path.exists('/jots/identity.pem')


def test_invalid_notebook_dirs_are_skipped(fs):
    repo = NotebookRepo('/jots')
    repo.init_encryption()
    jot = repo.create_jot('default', 'secret')
    fs.create_file('/jots/notebooks/My Notes/2025-07-20-090000.md', contents='hand-made')
    fresh = NotebookRepo('/jots')
    assert fresh.notebook_names() == ['default']
    assert [j.body for j in fresh.all_jots()] == ['secret']
    summary = fresh.decrypt_all()
    assert summary.ok
    assert summary.decrypted == [jot.path]
    assert Path('/jots/notebooks/My Notes/2025-07-20-090000.md').read_text() == 'hand-made'
