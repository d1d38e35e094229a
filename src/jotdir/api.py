"""Provides the main entry point for using the library, :class:`Jotdir`"""

from __future__ import annotations
from datetime import datetime
import logging
from typing import Callable, Iterable, List, Optional, Set, Tuple

from jotdir.conf import JotdirConf
from jotdir.crypto import EncryptionState
from jotdir.errors import AlreadyExists
from jotdir.models import ActiveNotebookContext, AddTagsCmd, DecryptSummary, DelTagsCmd, Jot, JotQuery,\
    JotQueryIsh, JotStats, NotebookInfo, SetPinnedCmd, SetTagsCmd, TargetSpec, TogglePinnedCmd
from jotdir.notebooks import NotebookRepo
from jotdir.search import JotIndex, compile_jots

logger = logging.getLogger(__name__)


class Jotdir:
    """Main entry point for working programmatically with your jots.

    Generally, you should get an instance using the :meth:`Jotdir.for_user` method, and use it as a context manager.

    Most methods take an :class:`jotdir.models.ActiveNotebookContext` saying which notebook to act on; get one
    from :meth:`context`. Methods that act on a single existing jot also take a target: a
    :class:`jotdir.models.ByPrefix` or :class:`jotdir.models.ByRecency`.

    .. attribute:: conf
       :type: jotdir.conf.JotdirConf

    .. attribute:: repo
       :type: jotdir.notebooks.NotebookRepo

    .. attribute:: index
       :type: jotdir.search.JotIndex

    Here's an example that pins the most recent jot tagged "idea":

    .. code-block:: python

       from jotdir.api import Jotdir
       from jotdir.models import ByPrefix
       with Jotdir.for_user() as jd:
           ctx = jd.context()
           ideas = jd.query(ctx, 'tag:idea')
           if ideas:
               jd.pin(ctx, ByPrefix(ideas[0].id))
    """

    @staticmethod
    def for_user() -> Jotdir:
        """Creates an instance using :meth:`jotdir.conf.JotdirConf.for_user`."""
        return JotdirConf.for_user().instantiate()

    def __init__(self, conf: JotdirConf, clock: Callable[[], datetime] = None):
        self.conf = conf
        self.repo = NotebookRepo(conf.root, conf.passphrase, clock)
        self.index = JotIndex(self.repo)

    def context(self, override: Optional[str] = None) -> ActiveNotebookContext:
        """Resolves the active notebook: ``override`` if given, else the configured notebook, else ``"default"``."""
        return ActiveNotebookContext.resolve(override, self.conf.notebook)

    # --- creating ---

    def jot(self, ctx: ActiveNotebookContext, body: str, tags: Iterable[str] = ()) -> Jot:
        """Creates a jot with the given (already template-expanded) body and initial tags."""
        return self.repo.create_jot(ctx.name, body, tags)

    def task(self, ctx: ActiveNotebookContext, description: str, tags: Iterable[str] = ()) -> Jot:
        """Creates a jot holding a single unchecked task."""
        return self.repo.create_jot(ctx.name, f'- [ ] {description}', tags)

    # --- single jots ---

    def find(self, ctx: ActiveNotebookContext, target: TargetSpec) -> Jot:
        return self.repo.find(ctx.name, target)

    def delete(self, ctx: ActiveNotebookContext, target: TargetSpec) -> Jot:
        """Deletes the targeted jot and returns what it contained."""
        jot = self.repo.find(ctx.name, target)
        self.repo.delete(jot)
        return jot

    def change(self, ctx: ActiveNotebookContext, target: TargetSpec, add_tags: Set[str] = frozenset(),
               del_tags: Set[str] = frozenset(), set_tags: Optional[Set[str]] = None,
               pinned: Optional[bool] = None) -> Jot:
        """Applies all the specified header changes to the targeted jot and returns the updated jot.

        If ``set_tags`` is given it replaces the tags before ``add_tags`` and ``del_tags`` are applied.
        """
        jot = self.repo.find(ctx.name, target)
        edits = []
        if set_tags is not None:
            edits.append(SetTagsCmd(jot.path, set(set_tags)))
        if add_tags:
            edits.append(AddTagsCmd(jot.path, set(add_tags)))
        if del_tags:
            edits.append(DelTagsCmd(jot.path, set(del_tags)))
        if pinned is not None:
            edits.append(SetPinnedCmd(jot.path, pinned))
        if edits:
            self.repo.change(edits)
        return self.repo.load(jot.notebook, jot.id)

    def pin(self, ctx: ActiveNotebookContext, target: TargetSpec) -> Jot:
        return self.change(ctx, target, pinned=True)

    def unpin(self, ctx: ActiveNotebookContext, target: TargetSpec) -> Jot:
        return self.change(ctx, target, pinned=False)

    def toggle_pinned(self, ctx: ActiveNotebookContext, target: TargetSpec) -> Jot:
        jot = self.repo.find(ctx.name, target)
        self.repo.change([TogglePinnedCmd(jot.path)])
        return self.repo.load(jot.notebook, jot.id)

    # --- many jots ---

    def recent(self, ctx: ActiveNotebookContext, count: Optional[int] = 10, pinned: bool = False,
               pending_tasks: bool = False) -> List[Jot]:
        """Returns the most recent jots in the active notebook, newest first."""
        query = JotQuery(pinned=True if pinned else None, pending_tasks=pending_tasks)
        jots = self.index.query(query, ctx.name)
        return jots if count is None else jots[:count]

    def query(self, ctx: ActiveNotebookContext, query: JotQueryIsh = JotQuery(),
              all_notebooks: bool = False) -> List[Jot]:
        return self.index.query(query, None if all_notebooks else ctx.name)

    def tag_counts(self, ctx: ActiveNotebookContext, query: JotQueryIsh = JotQuery(),
                   all_notebooks: bool = False) -> dict:
        return self.index.tag_counts(query, None if all_notebooks else ctx.name)

    def stats(self, ctx: ActiveNotebookContext, all_notebooks: bool = False) -> JotStats:
        return self.index.stats(None if all_notebooks else ctx.name)

    def compile(self, jots: Iterable[Jot]) -> str:
        return compile_jots(jots)

    # --- notebooks ---

    def notebooks(self, ctx: ActiveNotebookContext) -> List[NotebookInfo]:
        return self.repo.notebooks(ctx)

    def create_notebook(self, name: str) -> NotebookInfo:
        return self.repo.create_notebook(name)

    def export_notebook(self, name: str) -> Tuple[str, List[Jot]]:
        """Returns a notebook's name and its jots, oldest first, for an export collaborator to package."""
        return name, list(self.repo.jots(name))

    def import_jots(self, name: str, jots: Iterable[Jot]) -> Tuple[List[str], List[str]]:
        """Writes jots into a notebook (creating the notebook if needed), keeping their IDs.

        Jots whose ID is already taken are not overwritten. Returns the imported IDs and the skipped IDs.
        """
        if name not in self.repo.notebook_names():
            self.repo.create_notebook(name)
        imported, skipped = [], []
        for jot in jots:
            try:
                self.repo.import_jot(name, jot.id, jot.frontmatter, jot.body)
                imported.append(jot.id)
            except AlreadyExists:
                logger.warning('skipping jot %s: already exists in notebook %s', jot.id, name)
                skipped.append(jot.id)
        return imported, skipped

    # --- encryption ---

    def init_encryption(self, passphrase: Optional[str] = None) -> EncryptionState:
        return self.repo.init_encryption(passphrase)

    def decrypt_all(self) -> DecryptSummary:
        return self.repo.decrypt_all()

    def close(self):
        """Closes the associated repo and releases any other resources."""
        self.repo.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.repo.close()
