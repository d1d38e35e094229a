from datetime import datetime
import os.path

from freezegun import freeze_time
import pytest

from jotdir.api import Jotdir
from jotdir.conf import JotdirConf
from jotdir.errors import Ambiguous, NotebookNotFound, OutOfRange
from jotdir.models import ByPrefix, ByRecency, DateRange, JotQuery


def config(notebook=None):
    return JotdirConf(root='/jots', notebook=notebook, passphrase=lambda: None)


def test_for_user(fs, monkeypatch):
    monkeypatch.setenv('JOTDIR_ROOT', '/jots')
    monkeypatch.delenv('JOTDIR_NOTEBOOK', raising=False)
    with Jotdir.for_user() as jd:
        assert jd.conf.root == '/jots'
        assert jd.context().name == 'default'
        assert jd.context('work').name == 'work'


def test_context_uses_configured_notebook(fs):
    jd = config('work').instantiate()
    assert jd.context().name == 'work'
    assert jd.context('personal').name == 'personal'


@freeze_time('2025-07-21 10:30:00')
def test_jot_and_task(fs):
    jd = config().instantiate()
    ctx = jd.context()
    jot = jd.jot(ctx, 'An idea', ['idea'])
    task = jd.task(ctx, 'Write tests', ['todo'])
    assert (jot.id, task.id) == ('2025-07-21-103000', '2025-07-21-103000-01')
    loaded = jd.find(ctx, ByRecency())
    assert loaded.body == '- [ ] Write tests'
    assert loaded.tags == {'todo'}
    assert loaded.frontmatter.created == datetime(2025, 7, 21, 10, 30)


def test_recency_targets(fs):
    fs.create_file('/jots/notebooks/default/2025-07-20-090000.md', contents='A')
    fs.create_file('/jots/notebooks/default/2025-07-21-090000.md', contents='B')
    fs.create_file('/jots/notebooks/default/2025-07-22-090000.md', contents='C')
    jd = config().instantiate()
    ctx = jd.context()
    assert jd.find(ctx, ByRecency(1)).body == 'C'
    assert jd.find(ctx, ByRecency(3)).body == 'A'
    with pytest.raises(OutOfRange, match='only 3 jots exist'):
        jd.find(ctx, ByRecency(4))
    with pytest.raises(Ambiguous):
        jd.find(ctx, ByPrefix('2025-07'))


def test_change_and_pin(fs):
    fs.create_file('/jots/notebooks/default/2025-07-20-090000.md', contents='---\ntags: [cli]\nx: 1\n---\nbody')
    jd = config().instantiate()
    ctx = jd.context()
    target = ByPrefix('2025-07-20')
    jot = jd.change(ctx, target, add_tags={'idea'})
    assert jot.tags == {'cli', 'idea'}
    jot = jd.change(ctx, target, set_tags={'a', 'b'}, add_tags={'c'}, del_tags={'a'})
    assert jot.tags == {'b', 'c'}
    assert jd.pin(ctx, target).frontmatter.pinned
    assert not jd.unpin(ctx, target).frontmatter.pinned
    assert jd.toggle_pinned(ctx, target).frontmatter.pinned
    assert jot.frontmatter.extra == {'x': 1}


def test_delete(fs):
    fs.create_file('/jots/notebooks/default/2025-07-20-090000.md', contents='bye')
    jd = config().instantiate()
    deleted = jd.delete(jd.context(), ByRecency())
    assert deleted.body == 'bye'
    assert not os.path.exists(deleted.path)


def test_recent(fs):
    fs.create_file('/jots/notebooks/default/2025-07-20-090000.md', contents='---\npinned: true\n---\n- [ ] a')
    fs.create_file('/jots/notebooks/default/2025-07-21-090000.md', contents='B')
    fs.create_file('/jots/notebooks/default/2025-07-22-090000.md', contents='- [x] done')
    jd = config().instantiate()
    ctx = jd.context()
    assert [j.body for j in jd.recent(ctx, 2)] == ['- [x] done', 'B']
    assert len(jd.recent(ctx, None)) == 3
    assert [j.id for j in jd.recent(ctx, pinned=True)] == ['2025-07-20-090000']
    assert [j.id for j in jd.recent(ctx, pending_tasks=True)] == ['2025-07-20-090000']


def test_notebooks_are_isolated(fs):
    jd = config().instantiate()
    jd.create_notebook('work')
    jd.jot(jd.context('work'), 'work stuff', ['cli'])
    jd.jot(jd.context(), 'home stuff', ['cli'])
    assert [j.body for j in jd.query(jd.context('work'), 'tag:cli')] == ['work stuff']
    assert sorted(j.notebook for j in jd.query(jd.context(), 'tag:cli', all_notebooks=True)) == ['default', 'work']
    assert jd.tag_counts(jd.context(), all_notebooks=True) == {'cli': 2}
    assert jd.stats(jd.context('work')).count == 1
    assert [n.name for n in jd.notebooks(jd.context('work')) if n.active] == ['work']
    with pytest.raises(NotebookNotFound):
        jd.jot(jd.context('missing'), 'nowhere')


def test_compile(fs):
    fs.create_file('/jots/notebooks/default/2025-07-21-090000.md', contents='Second')
    fs.create_file('/jots/notebooks/default/2025-07-20-090000.md', contents='First')
    jd = config().instantiate()
    jots = jd.query(jd.context(), JotQuery(date_range=DateRange.parse('2025-07-20..2025-07-21')))
    assert jd.compile(jots).index('First') < jd.compile(jots).index('Second')


def test_export_and_import(fs):
    fs.create_file('/jots/notebooks/default/2025-07-20-090000.md', contents='---\ntags: [a]\n---\nFirst')
    fs.create_file('/jots/notebooks/default/2025-07-21-090000.md', contents='Second')
    fs.create_file('/jots/notebooks/archive/2025-07-21-090000.md', contents='already here')
    jd = config().instantiate()
    name, jots = jd.export_notebook('default')
    assert name == 'default'
    assert [j.body for j in jots] == ['First', 'Second']

    assert jd.import_jots('copy', jots) == (['2025-07-20-090000', '2025-07-21-090000'], [])
    assert [j.tags for j in jd.repo.jots('copy')] == [{'a'}, set()]

    assert jd.import_jots('archive', jots) == (['2025-07-20-090000'], ['2025-07-21-090000'])
    assert jd.repo.load('archive', '2025-07-21-090000').body == 'already here'


def test_encryption_lifecycle(fs):
    jd = config().instantiate()
    jd.init_encryption()
    jot = jd.jot(jd.context(), 'secret')
    with open(jot.path, 'rb') as file:
        assert b'secret' not in file.read()
    summary = config().instantiate().decrypt_all()
    assert summary.ok and summary.keys_removed
    with open(jot.path, 'r') as file:
        assert file.read().endswith('---\nsecret')
