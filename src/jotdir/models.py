"""Defines classes for representing jots, their metadata, queries, and update requests.

The most important classes are :class:`Jot`, :class:`Frontmatter`, :class:`JotEditCmd` and :class:`JotQuery`.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
import re
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Union
from urllib.parse import unquote_plus


ID_TIME_FORMAT = '%Y-%m-%d-%H%M%S'
"""strftime format of the timestamp at the start of every jot ID."""

DEFAULT_NOTEBOOK = 'default'

TASK_RE = re.compile(r'^\s*[-*+] \[([ xX])\] (.*)$')


def id_timestamp(jot_id: str) -> Optional[datetime]:
    """Returns the creation time embedded in a jot ID, or None if the ID does not start with a timestamp.

    IDs that were disambiguated with a suffix (``2025-01-02-030405-01``) return the timestamp of their base ID.
    """
    try:
        return datetime.strptime(jot_id[:17], ID_TIME_FORMAT)
    except ValueError:
        return None


@dataclass
class Frontmatter:
    """The metadata header of a jot.

    Only :attr:`tags`, :attr:`pinned` and :attr:`created` are understood by jotdir. Anything else found in
    the header is kept in :attr:`extra`, in its original order, so that it survives being rewritten.
    """

    tags: Set[str] = field(default_factory=set)
    """Lowercase tags."""

    pinned: bool = False

    created: Optional[datetime] = None
    """When the jot was created. Set once at creation and never changed afterward."""

    extra: Dict[str, Any] = field(default_factory=dict)
    """Unrecognized header fields."""

    def is_empty(self) -> bool:
        return not (self.tags or self.pinned or self.created or self.extra)

    def as_json(self) -> dict:
        result = {'tags': sorted(self.tags), 'pinned': self.pinned,
                  'created': self.created.isoformat() if self.created else None}
        result.update(self.extra)
        return result


@dataclass
class Task:
    """A task-list line (``- [ ] something`` or ``- [x] something``) in a jot's body."""

    description: str
    completed: bool

    @classmethod
    def scan(cls, body: str) -> List[Task]:
        result = []
        for line in body.splitlines():
            match = TASK_RE.match(line)
            if match:
                result.append(cls(match.group(2).strip(), match.group(1) != ' '))
        return result


@dataclass
class TaskStats:
    pending: int = 0
    completed: int = 0

    def add(self, tasks: Iterable[Task]) -> None:
        for task in tasks:
            if task.completed:
                self.completed += 1
            else:
                self.pending += 1


@dataclass
class Jot:
    """A single note: its identity, where it lives, its metadata and its Markdown body."""

    id: str
    """Sortable ID derived from the creation time, e.g. ``2025-07-21-103000``. Unique within the notebook."""

    notebook: str
    """Name of the notebook that owns the jot."""

    path: str
    """Resolved, absolute path of the jot's file."""

    frontmatter: Frontmatter = field(default_factory=Frontmatter)

    body: str = ''

    @property
    def tags(self) -> Set[str]:
        return self.frontmatter.tags

    @property
    def timestamp(self) -> Optional[datetime]:
        return id_timestamp(self.id)

    @property
    def tasks(self) -> List[Task]:
        return Task.scan(self.body)

    @property
    def title_line(self) -> str:
        """The first non-blank line of the body, for listings."""
        for line in self.body.splitlines():
            if line.strip():
                return line.strip()
        return ''

    def as_json(self) -> dict:
        """Returns a dict representing the instance, suitable for serializing as json."""
        return {
            'id': self.id,
            'notebook': self.notebook,
            'frontmatter': self.frontmatter.as_json(),
            'body': self.body,
        }


@dataclass
class JotStats:
    count: int = 0
    tag_counts: Dict[str, int] = field(default_factory=dict)
    tasks: TaskStats = field(default_factory=TaskStats)


@dataclass
class JotEditCmd:
    """Base class for requests to change a jot's header."""

    path: str
    """Path to the jot file that should be changed."""


@dataclass
class AddTagsCmd(JotEditCmd):
    """Adds tags, ignoring ones the jot already has (compared case-insensitively)."""

    values: Set[str]


@dataclass
class DelTagsCmd(JotEditCmd):
    """Removes tags (compared case-insensitively). Tags the jot doesn't have are ignored."""

    values: Set[str]


@dataclass
class SetTagsCmd(JotEditCmd):
    """Replaces all of the jot's tags."""

    values: Set[str]


@dataclass
class SetPinnedCmd(JotEditCmd):
    value: bool


@dataclass
class TogglePinnedCmd(JotEditCmd):
    pass


@dataclass(frozen=True)
class ByPrefix:
    """Targets the jot whose ID is, or uniquely starts with, :attr:`prefix`."""

    prefix: str


@dataclass(frozen=True)
class ByRecency:
    """Targets the Nth most recent jot; ``ByRecency(1)`` is the newest."""

    n: int = 1

    def __post_init__(self):
        if self.n < 1:
            raise ValueError(f'Recency index must be 1 or greater, not {self.n}.')


TargetSpec = Union[ByPrefix, ByRecency, None]


@dataclass(frozen=True)
class ActiveNotebookContext:
    """The notebook that commands act on when they don't name one explicitly.

    Resolved once per invocation and passed to every call that needs it.
    """

    name: str = DEFAULT_NOTEBOOK

    @classmethod
    def resolve(cls, override: Optional[str] = None, active: Optional[str] = None) -> ActiveNotebookContext:
        """Picks the explicit override if given, otherwise the externally configured active name, otherwise
        ``"default"``."""
        return cls(override or active or DEFAULT_NOTEBOOK)


@dataclass
class NotebookInfo:
    name: str
    path: str
    active: bool = False


@dataclass
class DecryptSummary:
    """Outcome of decrypting every jot in every notebook.

    Each jot is handled independently; one failure does not stop or undo the others.
    """

    decrypted: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    """Paths of jots that were already plaintext."""

    failed: Dict[str, Exception] = field(default_factory=dict)

    keys_removed: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass(frozen=True)
class DateRange:
    """An inclusive range of local times."""

    start: datetime
    end: datetime

    @classmethod
    def for_days(cls, first: date, last: date) -> DateRange:
        return cls(datetime.combine(first, time(0, 0, 0)), datetime.combine(last, time(23, 59, 59)))

    @classmethod
    def parse(cls, spec: str, today: date = None) -> DateRange:
        """Converts a date specification to a range.

        Supported forms:

        * ``today``, ``yesterday``
        * ``week`` or ``this-week`` (also ``this week``) - from the most recent Sunday through today
        * ``YYYY-MM-DD`` - that whole day
        * ``YYYY-MM-DD..YYYY-MM-DD`` - from the start of the first day through the end of the second

        Named ranges are relative to ``today``, which defaults to the current local date.

        Raises :exc:`ValueError` for anything else.
        """
        today = today or datetime.now().date()
        normalized = spec.strip().lower().replace(' ', '-')
        if normalized == 'today':
            return cls.for_days(today, today)
        if normalized == 'yesterday':
            yesterday = today - timedelta(days=1)
            return cls.for_days(yesterday, yesterday)
        if normalized in ('week', 'this-week'):
            # weekday() is 0 for Monday; weeks start on Sunday
            start = today - timedelta(days=(today.weekday() + 1) % 7)
            return cls.for_days(start, today)
        if '..' in normalized:
            first, last = normalized.split('..', 1)
            result = cls.for_days(_parse_day(first), _parse_day(last))
            if result.start > result.end:
                raise ValueError(f'Date range is backwards: {spec}')
            return result
        day = _parse_day(normalized)
        return cls.for_days(day, day)

    def __contains__(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def _parse_day(value: str) -> date:
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        raise ValueError(f'Invalid date "{value}"; expected YYYY-MM-DD.')


@dataclass
class JotQuery:
    """Represents criteria for searching for jots.

    If multiple criteria are specified, the query only matches jots that satisfy *all* of them.
    """

    text: Optional[str] = None
    """Case-insensitive substring to look for in the body. The header is not searched."""

    include_tags: Set[str] = field(default_factory=set)
    """If non-empty, only jots that have *all* of the specified tags match."""

    exclude_tags: Set[str] = field(default_factory=set)
    """If non-empty, only jots that have *none* of the specified tags match."""

    date_range: Optional[DateRange] = None
    """If set, only jots whose ID timestamp falls inside the range match."""

    pinned: Optional[bool] = None

    pending_tasks: bool = False
    """If True, only jots with at least one unchecked task match."""

    completed_tasks: bool = False
    """If True, only jots with at least one checked task match."""

    newest_first: bool = True

    @classmethod
    def parse(cls, strquery: JotQueryIsh, today: date = None) -> JotQuery:
        """Converts the parameter to a JotQuery, if it isn't one already.

        Query strings are split on spaces. Each part can be one of the following:

        * ``tag:TAG1,TAG2`` - jots must include all the specified tags
        * ``-tag:TAG1,TAG2`` - jots must not include any of the specified tags
        * ``on:SPEC`` - jots must have been created in the range described by SPEC (see :meth:`DateRange.parse`)
        * ``is:pinned`` / ``-is:pinned``
        * ``has:pending`` / ``has:done`` - jots must contain an unchecked / checked task
        * ``sort:oldest`` / ``sort:newest``

        Any other part is a word of the full-text search; the words are joined with single spaces.

        Examples:

        * ``"tag:rust,cli on:this-week"`` - jots from this week tagged both "rust" and "cli"
        * ``"has:pending deploy"`` - jots mentioning "deploy" that still have open tasks
        """
        if isinstance(strquery, JotQuery):
            return strquery
        query = cls()
        words = []
        for term in strquery.split():
            lower = term.lower()
            if lower.startswith('tag:'):
                query.include_tags.update(unquote_plus(t) for t in lower[4:].split(',') if t)
            elif lower.startswith('-tag:'):
                query.exclude_tags.update(unquote_plus(t) for t in lower[5:].split(',') if t)
            elif lower.startswith('on:'):
                query.date_range = DateRange.parse(lower[3:], today)
            elif lower == 'is:pinned':
                query.pinned = True
            elif lower == '-is:pinned':
                query.pinned = False
            elif lower == 'has:pending':
                query.pending_tasks = True
            elif lower == 'has:done':
                query.completed_tasks = True
            elif lower.startswith('sort:'):
                if lower[5:] not in ('oldest', 'newest'):
                    raise ValueError(f'Unknown sort order: {term}')
                query.newest_first = lower[5:] == 'newest'
            else:
                words.append(term)
        if words:
            query.text = ' '.join(words)
        return query

    def matches(self, jot: Jot) -> bool:
        if self.text and self.text.lower() not in jot.body.lower():
            return False
        tags = {t.lower() for t in jot.tags}
        if self.include_tags and not {t.lower() for t in self.include_tags}.issubset(tags):
            return False
        if self.exclude_tags and not {t.lower() for t in self.exclude_tags}.isdisjoint(tags):
            return False
        if self.date_range:
            timestamp = jot.timestamp
            if timestamp is None or timestamp not in self.date_range:
                return False
        if self.pinned is not None and jot.frontmatter.pinned != self.pinned:
            return False
        if self.pending_tasks or self.completed_tasks:
            tasks = jot.tasks
            if self.pending_tasks and not any(not t.completed for t in tasks):
                return False
            if self.completed_tasks and not any(t.completed for t in tasks):
                return False
        return True

    def apply_filtering(self, jots: Iterable[Jot]) -> Iterator[Jot]:
        """Yields the entries from the given iterable which match the criteria of this query."""
        return (jot for jot in jots if self.matches(jot))

    def apply_sorting(self, jots: Iterable[Jot]) -> List[Jot]:
        """Returns a copy of the given jots ordered by ID (and notebook, for ties across notebooks)."""
        return sorted(jots, key=lambda jot: (jot.id, jot.notebook), reverse=self.newest_first)


JotQueryIsh = Union[str, JotQuery]
