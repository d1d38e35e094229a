"""Full-text, tag, time and task filtering over one notebook or all of them."""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from jotdir.models import Jot, JotQuery, JotQueryIsh, JotStats
from jotdir.notebooks import NotebookRepo


class JotIndex:
    """Answers queries against the jots of a :class:`jotdir.notebooks.NotebookRepo`.

    There is no persistent index; every query reads (and if necessary decrypts) the jots in scope.
    """
    def __init__(self, repo: NotebookRepo):
        self.repo = repo

    def _scope(self, notebook: Optional[str]) -> Iterable[Jot]:
        if notebook is None:
            return self.repo.all_jots()
        return self.repo.jots(notebook)

    def query(self, query: JotQueryIsh = JotQuery(), notebook: Optional[str] = None) -> List[Jot]:
        """Returns the jots matching the query, newest first unless the query says otherwise.

        If ``notebook`` is None, every notebook is searched; each result's :attr:`Jot.notebook` tells where it
        came from.
        """
        query = JotQuery.parse(query)
        return query.apply_sorting(query.apply_filtering(self._scope(notebook)))

    def find_text(self, text: str, notebook: Optional[str] = None) -> List[Jot]:
        return self.query(JotQuery(text=text), notebook)

    def with_tags(self, tags: Iterable[str], notebook: Optional[str] = None) -> List[Jot]:
        """Returns jots having every one of the given tags."""
        return self.query(JotQuery(include_tags={t.lower() for t in tags}), notebook)

    def tag_counts(self, query: JotQueryIsh = JotQuery(), notebook: Optional[str] = None) -> Dict[str, int]:
        """Returns a map of tag names to the number of jots matching the query which possess that tag."""
        result = defaultdict(int)
        for jot in self.query(query, notebook):
            for tag in jot.tags:
                result[tag] += 1
        return dict(result)

    def stats(self, notebook: Optional[str] = None) -> JotStats:
        """Counts jots, tags, and task lines (pending and completed) across the notebook or all notebooks."""
        stats = JotStats()
        counts = defaultdict(int)
        for jot in self._scope(notebook):
            stats.count += 1
            for tag in jot.tags:
                counts[tag] += 1
            stats.tasks.add(jot.tasks)
        stats.tag_counts = dict(counts)
        return stats


def compile_jots(jots: Iterable[Jot]) -> str:
    """Concatenates jots into a single Markdown document, oldest first, each under a heading with its ID."""
    parts = []
    for jot in sorted(jots, key=lambda j: (j.id, j.notebook)):
        parts.append(f'---\n\n# {jot.id}\n\n{jot.body.strip()}\n')
    return '\n'.join(parts)
