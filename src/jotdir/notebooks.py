"""Provides the :class:`NotebookRepo` class, which owns the on-disk layout of a jotdir root.

The layout looks like this::

   <root>/
     identity.pem, recipient.pub   (only when encryption is enabled)
     notebooks/
       default/
         2025-07-21-103000.md
         2025-07-21-103000-01.md
       work/
         ...

Older versions kept every jot directly in ``<root>/entries``. The first time a root is accessed, that directory is
moved to ``notebooks/default`` (see :meth:`NotebookRepo.migrate`).
"""

from datetime import datetime
import logging
import os
import os.path
import re
from tempfile import mkstemp
from typing import Callable, Iterable, Iterator, List, Optional

from jotdir import frontmatter
from jotdir.addressing import candidate_ids, generate_id, resolve
from jotdir.crypto import EncryptionState, PassphraseFn, is_encrypted
from jotdir.errors import AlreadyExists, EncryptionError, Error, InvalidName, MigrationError, NotebookNotFound
from jotdir.models import ActiveNotebookContext, AddTagsCmd, DecryptSummary, DelTagsCmd, DEFAULT_NOTEBOOK,\
    Frontmatter, Jot, JotEditCmd, NotebookInfo, SetPinnedCmd, SetTagsCmd, TargetSpec, TogglePinnedCmd

logger = logging.getLogger(__name__)

NOTEBOOKS_DIRNAME = 'notebooks'
LEGACY_DIRNAME = 'entries'
JOT_SUFFIX = '.md'
NOTEBOOK_NAME_RE = re.compile(r'\A[A-Za-z0-9_-][A-Za-z0-9_.-]{0,63}\Z')


def default_ignore(parentpath: str, filename: str) -> bool:
    return filename.startswith('.') or filename.endswith('.icloud')


def validate_notebook_name(name: str) -> None:
    """Raises :exc:`jotdir.errors.InvalidName` unless ``name`` is usable as a notebook directory name.

    Names may contain letters, digits, ``-``, ``_`` and ``.``, must not start with ``.``, and must be at most 64
    characters long.
    """
    if not name:
        raise InvalidName('Notebook name cannot be empty.')
    if not NOTEBOOK_NAME_RE.match(name):
        raise InvalidName(f"Invalid notebook name: '{name}'. Use letters, digits, '-', '_' and '.' "
                          f"(not as the first character), at most 64 characters.")


def _group_edits(edits: List[JotEditCmd]) -> List[List[JotEditCmd]]:
    group = None
    result = []
    for edit in edits:
        if group and edit.path == group[0].path:
            group.append(edit)
        else:
            group = [edit]
            result.append(group)
    return result


def _apply_edit(fm: Frontmatter, edit: JotEditCmd) -> Frontmatter:
    if isinstance(edit, AddTagsCmd):
        return frontmatter.add_tags(fm, edit.values)
    elif isinstance(edit, DelTagsCmd):
        return frontmatter.remove_tags(fm, edit.values)
    elif isinstance(edit, SetTagsCmd):
        return frontmatter.set_tags(fm, edit.values)
    elif isinstance(edit, SetPinnedCmd):
        return frontmatter.set_pinned(fm, edit.value)
    elif isinstance(edit, TogglePinnedCmd):
        return frontmatter.toggle_pinned(fm)
    raise ValueError(f'Unsupported edit: {edit}')


class NotebookRepo:
    """Reads, creates, changes and deletes jots in the notebooks under one root directory.

    The layout migration runs, and the encryption settings are read, on first access rather than in the
    constructor.

    .. attribute:: root
       :type: str

    .. attribute:: clock

       Returns the current local time; used to generate IDs for new jots.
    """
    def __init__(self, root: str, passphrase: PassphraseFn = None, clock: Callable[[], datetime] = None):
        self.root = os.path.abspath(root)
        self.passphrase = passphrase
        self.clock = clock or datetime.now
        self._migrated = False
        self._encryption = None

    @property
    def notebooks_dir(self) -> str:
        return os.path.join(self.root, NOTEBOOKS_DIRNAME)

    @property
    def legacy_dir(self) -> str:
        return os.path.join(self.root, LEGACY_DIRNAME)

    @property
    def encryption(self) -> EncryptionState:
        if self._encryption is None:
            self._encryption = EncryptionState.load(self.root, self.passphrase)
        return self._encryption

    def init_encryption(self, passphrase: Optional[str] = None) -> EncryptionState:
        """Creates key material so that jots written from now on are encrypted.

        Existing plaintext jots stay readable and are encrypted the next time they are rewritten.
        """
        self._ensure_layout()
        self._encryption = EncryptionState.generate(self.root, passphrase)
        return self._encryption

    # --- layout ---

    def migrate(self) -> bool:
        """Moves a legacy ``entries`` directory to ``notebooks/default`` if the notebooks layout doesn't exist yet.

        Returns True if this call performed the move. The move is a single :func:`os.rename` of the whole directory,
        so there is never a partially-populated ``default`` notebook. If ``notebooks`` already holds anything this
        does nothing, even when ``entries`` is still present; an empty ``notebooks`` (left by an invocation that
        stopped between creating it and the rename) does not count.

        Raises :exc:`jotdir.errors.MigrationError` if the rename fails for any reason other than a concurrent
        invocation having already done it; ``entries`` is left untouched in that case.
        """
        if not os.path.isdir(self.legacy_dir) or self._has_content(self.notebooks_dir):
            return False
        logger.warning('migrating %s to the "%s" notebook', self.legacy_dir, DEFAULT_NOTEBOOK)
        created = False
        try:
            os.mkdir(self.notebooks_dir)
            created = True
        except FileExistsError:
            pass
        dest = os.path.join(self.notebooks_dir, DEFAULT_NOTEBOOK)
        try:
            os.rename(self.legacy_dir, dest)
        except OSError as e:
            if not os.path.exists(self.legacy_dir) and os.path.isdir(dest):
                logger.info('another process already migrated %s', self.legacy_dir)
                return False
            if created:
                self._remove_if_empty(self.notebooks_dir)
            raise MigrationError(f'Failed to move jots from {self.legacy_dir} to {dest}: {e}', e)
        logger.warning('migration complete; jots are now in the "%s" notebook', DEFAULT_NOTEBOOK)
        return True

    def _has_content(self, path: str) -> bool:
        if not os.path.exists(path):
            return False
        if not os.path.isdir(path):
            return True
        return any(not default_ignore(path, name) for name in os.listdir(path))

    def _remove_if_empty(self, path: str) -> None:
        try:
            os.rmdir(path)
        except OSError as e:
            logger.warning('could not remove %s after failed migration: %s', path, e)

    def _ensure_layout(self) -> None:
        if self._migrated:
            return
        os.makedirs(self.root, exist_ok=True)
        self.migrate()
        if not self._has_content(self.notebooks_dir):
            os.makedirs(os.path.join(self.notebooks_dir, DEFAULT_NOTEBOOK), exist_ok=True)
        self._migrated = True

    # --- notebooks ---

    def create_notebook(self, name: str) -> NotebookInfo:
        validate_notebook_name(name)
        self._ensure_layout()
        path = os.path.join(self.notebooks_dir, name)
        try:
            os.mkdir(path)
        except FileExistsError:
            raise AlreadyExists(f"Notebook '{name}' already exists.")
        return NotebookInfo(name, path)

    def notebook_names(self) -> List[str]:
        """Returns the names of the notebooks, sorted. Directories whose names aren't valid notebook names are
        skipped."""
        self._ensure_layout()
        result = []
        for entry in os.scandir(self.notebooks_dir):
            if not entry.is_dir() or default_ignore(self.notebooks_dir, entry.name):
                continue
            if not NOTEBOOK_NAME_RE.match(entry.name):
                logger.warning('ignoring directory with invalid notebook name: %s', entry.path)
                continue
            result.append(entry.name)
        return sorted(result)

    def notebooks(self, ctx: ActiveNotebookContext = ActiveNotebookContext()) -> List[NotebookInfo]:
        return [NotebookInfo(name, os.path.join(self.notebooks_dir, name), name == ctx.name)
                for name in self.notebook_names()]

    def notebook_path(self, name: str) -> str:
        """Returns the directory of an existing notebook. Raises :exc:`jotdir.errors.NotebookNotFound` otherwise."""
        validate_notebook_name(name)
        self._ensure_layout()
        path = os.path.join(self.notebooks_dir, name)
        if not os.path.isdir(path):
            raise NotebookNotFound(name)
        return path

    # --- reading ---

    def jot_path(self, notebook: str, jot_id: str) -> str:
        return os.path.join(self.notebook_path(notebook), jot_id + JOT_SUFFIX)

    def ids(self, notebook: str) -> List[str]:
        """Returns the IDs of every jot in the notebook, oldest first."""
        dirpath = self.notebook_path(notebook)
        return sorted(entry.name[:-len(JOT_SUFFIX)] for entry in os.scandir(dirpath)
                      if entry.is_file() and entry.name.endswith(JOT_SUFFIX)
                      and not default_ignore(dirpath, entry.name))

    def read_text(self, path: str) -> str:
        with open(path, 'rb') as file:
            data = file.read()
        return self.encryption.decode(data, path)

    def load(self, notebook: str, jot_id: str) -> Jot:
        """Reads and parses one jot.

        May raise :exc:`jotdir.errors.ParseError`, :exc:`jotdir.errors.DecryptionError` or an IO-related exception.
        """
        path = self.jot_path(notebook, jot_id)
        text = self.read_text(path)
        fm, body = frontmatter.parse(text, path)
        return Jot(jot_id, notebook, path, fm, body)

    def find(self, notebook: str, target: TargetSpec) -> Jot:
        """Loads the jot in the notebook that ``target`` refers to; see :func:`jotdir.addressing.resolve`."""
        return self.load(notebook, resolve(target, self.ids(notebook)))

    def jots(self, notebook: str) -> Iterator[Jot]:
        for jot_id in self.ids(notebook):
            yield self.load(notebook, jot_id)

    def all_jots(self) -> Iterator[Jot]:
        for name in self.notebook_names():
            yield from self.jots(name)

    # --- writing ---

    def _create_exclusive(self, path: str, data: bytes) -> None:
        fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        with os.fdopen(fd, 'wb') as file:
            file.write(data)

    def _replace(self, path: str, data: bytes) -> None:
        dirname, basename = os.path.split(path)
        fd, tmp = mkstemp(prefix=f'.{basename}.', dir=dirname)
        try:
            with os.fdopen(fd, 'wb') as file:
                file.write(data)
            os.replace(tmp, path)
        except BaseException:
            os.remove(tmp)
            raise

    def create_jot(self, notebook: str, body: str, tags: Iterable[str] = ()) -> Jot:
        """Creates a new jot in the notebook and returns it.

        The ID comes from :attr:`clock`. If another jot (possibly being written by another process at the same
        moment) already has that ID, a suffixed ID is used instead; see :func:`jotdir.addressing.candidate_ids`.
        Each candidate is claimed with an exclusive create, so an existing file is never overwritten.
        """
        dirpath = self.notebook_path(notebook)
        now = self.clock().replace(microsecond=0)
        fm = frontmatter.add_tags(Frontmatter(created=now), tags)
        data = self.encryption.encode(frontmatter.serialize(fm, body))
        base = generate_id(lambda: now)
        for jot_id in candidate_ids(base):
            path = os.path.join(dirpath, jot_id + JOT_SUFFIX)
            try:
                self._create_exclusive(path, data)
            except FileExistsError:
                logger.debug('jot ID %s is taken in notebook %s', jot_id, notebook)
                continue
            if jot_id != base:
                logger.info('jot ID %s was taken; created %s instead', base, jot_id)
            return Jot(jot_id, notebook, path, fm, body)
        raise AlreadyExists(f"Could not find a free jot ID for {base} in notebook '{notebook}'.")

    def import_jot(self, notebook: str, jot_id: str, fm: Frontmatter, body: str) -> Jot:
        """Writes a jot with a given ID, as when importing. Raises :exc:`jotdir.errors.AlreadyExists` if taken."""
        if not jot_id or os.sep in jot_id or jot_id.startswith('.'):
            raise InvalidName(f"Invalid jot ID: '{jot_id}'")
        path = self.jot_path(notebook, jot_id)
        try:
            self._create_exclusive(path, self.encryption.encode(frontmatter.serialize(fm, body)))
        except FileExistsError:
            raise AlreadyExists(f"A jot with ID '{jot_id}' already exists in notebook '{notebook}'.")
        return Jot(jot_id, notebook, path, fm, body)

    def save(self, jot: Jot) -> None:
        """Writes the jot's frontmatter and body over its existing file, atomically."""
        self._replace(jot.path, self.encryption.encode(frontmatter.serialize(jot.frontmatter, jot.body)))

    def change(self, edits: List[JotEditCmd]) -> List[str]:
        """Applies the specified edits in order and saves the affected jots.

        Consecutive edits to the same path are applied together and the file is rewritten once, and only if the
        header actually changed. Returns the paths that were rewritten.
        """
        changed = []
        for group in _group_edits(edits):
            path = group[0].path
            text = self.read_text(path)
            original, body = frontmatter.parse(text, path)
            fm = original
            for edit in group:
                fm = _apply_edit(fm, edit)
            if fm != original:
                self._replace(path, self.encryption.encode(frontmatter.serialize(fm, body)))
                changed.append(path)
        return changed

    def delete(self, jot: Jot) -> None:
        os.remove(jot.path)

    # --- decryption ---

    def decrypt_all(self) -> DecryptSummary:
        """Permanently decrypts every jot in every notebook, then removes the key material.

        Each jot is rewritten atomically and independently: a failure is recorded in the summary and processing
        continues. The key material is only removed if every jot succeeded, so a failed run can be retried.

        Raises :exc:`jotdir.errors.EncryptionError` if there is no key material.
        """
        self._ensure_layout()
        state = self.encryption
        if not state.has_key_material():
            raise EncryptionError('Jots are not encrypted (no key material found). Nothing to do.')
        summary = DecryptSummary()
        for name in self.notebook_names():
            dirpath = os.path.join(self.notebooks_dir, name)
            for jot_id in self.ids(name):
                path = os.path.join(dirpath, jot_id + JOT_SUFFIX)
                try:
                    with open(path, 'rb') as file:
                        data = file.read()
                    if not is_encrypted(data):
                        summary.skipped.append(path)
                        continue
                    self._replace(path, state.decode(data, path).encode('utf-8'))
                    summary.decrypted.append(path)
                except (Error, OSError) as e:
                    logger.error('failed to decrypt %s: %s', path, e)
                    summary.failed[path] = e
        if summary.ok:
            state.remove_key_material()
            summary.keys_removed = True
        else:
            logger.warning('%d jot(s) could not be decrypted; keeping key material', len(summary.failed))
        return summary

    def close(self) -> None:
        """Release any resources associated with the repo. Nothing to release currently."""
        pass

