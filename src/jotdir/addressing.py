"""Generates jot IDs and resolves user-supplied targets (ID prefix or recency) to a single jot ID."""

from datetime import datetime
from typing import Callable, Iterator, List, Sequence

from jotdir.errors import Ambiguous, NotFound, OutOfRange
from jotdir.models import ByPrefix, ByRecency, ID_TIME_FORMAT, TargetSpec, id_timestamp

MAX_SUFFIX = 99

__all__ = ['generate_id', 'candidate_ids', 'resolve', 'ordinal', 'id_timestamp', 'MAX_SUFFIX']


def generate_id(clock: Callable[[], datetime] = None) -> str:
    """Returns a second-resolution ID for a jot created at ``clock()``, like ``2025-07-21-103000``."""
    return (clock or datetime.now)().strftime(ID_TIME_FORMAT)


def candidate_ids(base: str) -> Iterator[str]:
    """Yields the IDs to try, in order, when creating a jot whose natural ID is ``base``.

    The first is ``base`` itself, followed by ``base-01`` through ``base-99``. The suffix is zero-padded so that
    the suffixed IDs sort after ``base`` and before any ID from the following second.
    """
    yield base
    for i in range(1, MAX_SUFFIX + 1):
        yield f'{base}-{i:02d}'


def ordinal(n: int) -> str:
    """Formats a number with its English ordinal suffix: 1st, 2nd, 3rd, 4th, 11th, 21st, 111th..."""
    if 11 <= n % 100 <= 13:
        suffix = 'th'
    else:
        suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(n % 10, 'th')
    return f'{n}{suffix}'


def resolve(target: TargetSpec, ids: Sequence[str]) -> str:
    """Returns the single ID from ``ids`` that ``target`` refers to.

    * :class:`ByPrefix` - an ID equal to the prefix is chosen even if it is also the prefix of other IDs;
      otherwise exactly one ID may start with the prefix.
    * :class:`ByRecency` - ``n=1`` is the most recent ID, ``n=2`` the one before it, and so on.

    Raises :exc:`jotdir.errors.NotFound`, :exc:`jotdir.errors.Ambiguous` (listing every candidate) or
    :exc:`jotdir.errors.OutOfRange` (naming how many jots exist).
    """
    if isinstance(target, ByPrefix):
        return _resolve_prefix(target.prefix, ids)
    if isinstance(target, ByRecency):
        return _resolve_recency(target.n, ids)
    if target is None:
        raise NotFound('No jot specified. Give an ID prefix, or use --last to pick a recent jot.')
    raise TypeError(f'Unsupported target: {target!r}')


def _resolve_prefix(prefix: str, ids: Sequence[str]) -> str:
    if prefix in ids:
        return prefix
    matches: List[str] = sorted(i for i in ids if i.startswith(prefix))
    if not matches:
        raise NotFound(f"No jot found with the prefix '{prefix}'")
    if len(matches) > 1:
        raise Ambiguous(prefix, matches)
    return matches[0]


def _resolve_recency(n: int, ids: Sequence[str]) -> str:
    count = len(ids)
    if count == 0:
        raise OutOfRange('No jots exist to act upon.', n, 0)
    if n > count:
        noun = 'jot exists' if count == 1 else 'jots exist'
        raise OutOfRange(f'Index out of bounds. You asked for the {ordinal(n)} last jot, but only {count} {noun}.',
                         n, count)
    return sorted(ids, reverse=True)[n - 1]
