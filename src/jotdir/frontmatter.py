"""Parses and writes the YAML metadata header of a jot.

Here's an example jot with a header:

.. code-block:: markdown

   ---
   tags:
   - cli
   - rust
   pinned: true
   created: 2025-07-21 10:30:00
   mood: curious
   ---
   Everything after the closing line is the **Markdown** body.

The header is optional. ``tags``, ``pinned`` and ``created`` are understood; any other keys (``mood`` above) are
kept as-is and written back after the known ones.
"""

from dataclasses import replace
from datetime import date, datetime
from io import StringIO
import re
from typing import Iterable, Optional, Tuple

import yaml

from jotdir.errors import ParseError
from jotdir.models import Frontmatter

YAML_META_RE = re.compile(r'(?ms)\A---[ \t]*\r?\n(.*?)^(?:---|\.\.\.)[ \t]*(?:\r?\n|\Z)')
KNOWN_KEYS = ('tags', 'pinned', 'created')


def _normalize_tags(values: Iterable[str]) -> set:
    return {str(v).strip().lower() for v in values if str(v).strip()}


def _to_frontmatter(meta: dict, path: Optional[str]) -> Frontmatter:
    tags = meta.get('tags') or []
    if not isinstance(tags, list):
        raise ParseError(f'Expected a list for "tags" but found {type(tags).__name__}', path)
    pinned = meta.get('pinned', False)
    if pinned is None:
        pinned = False
    if not isinstance(pinned, bool):
        raise ParseError(f'Expected true or false for "pinned" but found {pinned!r}', path)
    created = meta.get('created')
    if isinstance(created, date) and not isinstance(created, datetime):
        created = datetime(created.year, created.month, created.day)
    elif created is not None and not isinstance(created, datetime):
        raise ParseError(f'Expected a timestamp for "created" but found {created!r}', path)
    extra = {k: v for k, v in meta.items() if k not in KNOWN_KEYS}
    return Frontmatter(tags=_normalize_tags(tags), pinned=pinned, created=created, extra=extra)


def parse(text: str, path: str = None) -> Tuple[Frontmatter, str]:
    """Splits a jot's text into its header and body.

    If the text doesn't start with a complete header block, the frontmatter is empty and the whole text is the body.

    Raises :exc:`jotdir.errors.ParseError` if the header is not valid YAML, is not a mapping, or has a known
    field of the wrong type. ``path`` is only used in error messages.
    """
    match = YAML_META_RE.match(text)
    if not match:
        return Frontmatter(), text
    try:
        meta = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise ParseError('Invalid YAML in header', path, e)
    if meta is None:
        meta = {}
    if not isinstance(meta, dict):
        raise ParseError(f'Header must be a mapping, not {type(meta).__name__}', path)
    return _to_frontmatter(meta, path), text[match.end():]


def serialize(frontmatter: Frontmatter, body: str) -> str:
    """Builds the full text of a jot: the header (if there is anything to put in it) followed by the body.

    Known fields come first in a fixed order, then unrecognized fields in the order they were read.
    The body is written exactly as given. If the body itself starts with something that would parse as a header,
    an empty header is written in front of it so that it stays part of the body.
    """
    if frontmatter.is_empty() and not YAML_META_RE.match(body):
        return body
    meta = {}
    if frontmatter.tags:
        meta['tags'] = sorted(frontmatter.tags)
    if frontmatter.pinned:
        meta['pinned'] = True
    if frontmatter.created:
        meta['created'] = frontmatter.created
    meta.update(frontmatter.extra)
    sio = StringIO()
    if meta:
        yaml.safe_dump(meta, sio, sort_keys=False, allow_unicode=True)
    return f'---\n{sio.getvalue()}---\n{body}'


def add_tags(frontmatter: Frontmatter, tags: Iterable[str]) -> Frontmatter:
    return replace(frontmatter, tags=frontmatter.tags | _normalize_tags(tags))


def remove_tags(frontmatter: Frontmatter, tags: Iterable[str]) -> Frontmatter:
    return replace(frontmatter, tags=frontmatter.tags - _normalize_tags(tags))


def set_tags(frontmatter: Frontmatter, tags: Iterable[str]) -> Frontmatter:
    return replace(frontmatter, tags=_normalize_tags(tags))


def set_pinned(frontmatter: Frontmatter, value: bool) -> Frontmatter:
    return replace(frontmatter, pinned=value)


def toggle_pinned(frontmatter: Frontmatter) -> Frontmatter:
    return replace(frontmatter, pinned=not frontmatter.pinned)
