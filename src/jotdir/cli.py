"""Command-line interface for jotdir."""


import argparse
from getpass import getpass
import json
import logging
import sys
from typing import List

from terminaltables import AsciiTable
from jotdir.api import Jotdir
from jotdir.errors import Error
from jotdir import frontmatter
from jotdir.models import ByPrefix, ByRecency, DateRange, Jot, JotQuery


def _split_tags(values) -> List[str]:
    return [t.strip().lower() for v in (values or []) for t in v.split(',') if t.strip()]


def _target(args):
    if args.last is not None:
        return ByRecency(args.last)
    if args.id_prefix:
        return ByPrefix(args.id_prefix)
    return None


def _print_jots(jots: List[Jot], with_notebook: bool = False) -> None:
    if not jots:
        print('No jots found.')
        return
    heading = ('ID', 'Notebook', 'First line') if with_notebook else ('ID', 'First line')
    data = [heading]
    for jot in jots:
        first = jot.title_line[:60]
        data.append((jot.id, jot.notebook, first) if with_notebook else (jot.id, first))
    print(AsciiTable(data).table)


def _output_jots(args, jots: List[Jot], with_notebook: bool = False) -> None:
    if getattr(args, 'json', False):
        print(json.dumps([j.as_json() for j in jots], default=str))
    else:
        _print_jots(jots, with_notebook)


def _down(args, jd: Jotdir) -> int:
    jot = jd.jot(jd.context(args.notebook), ' '.join(args.message), _split_tags(args.tags))
    print(f'Saved {jot.id} to {jot.path}')
    return 0


def _task(args, jd: Jotdir) -> int:
    jot = jd.task(jd.context(args.notebook), ' '.join(args.message), _split_tags(args.tags))
    print(f'Saved task {jot.id} to {jot.path}')
    return 0


def _list(args, jd: Jotdir) -> int:
    jots = jd.recent(jd.context(args.notebook), args.count, pinned=args.pinned, pending_tasks=args.tasks)
    _output_jots(args, jots)
    return 0


def _show(args, jd: Jotdir) -> int:
    jot = jd.find(jd.context(args.notebook), _target(args))
    if args.json:
        print(json.dumps(jot.as_json(), default=str))
    else:
        print(frontmatter.serialize(jot.frontmatter, jot.body))
    return 0


def _delete(args, jd: Jotdir) -> int:
    ctx = jd.context(args.notebook)
    jot = jd.find(ctx, _target(args))
    if not args.force:
        answer = input(f"Are you sure you want to delete '{jot.id}'? [y/N] ")
        if answer.strip().lower() != 'y':
            print('Deletion aborted.')
            return 0
    jd.delete(ctx, ByPrefix(jot.id))
    print(f"Deleted '{jot.id}'.")
    return 0


def _tag(args, jd: Jotdir) -> int:
    tags = set(_split_tags(args.tags))
    ctx = jd.context(args.notebook)
    if args.action == 'add':
        jot = jd.change(ctx, _target(args), add_tags=tags)
    elif args.action == 'remove':
        jot = jd.change(ctx, _target(args), del_tags=tags)
    else:
        jot = jd.change(ctx, _target(args), set_tags=tags)
    print(f"Tags for '{jot.id}': {', '.join(sorted(jot.tags)) or '(none)'}")
    return 0


def _pin(args, jd: Jotdir) -> int:
    ctx = jd.context(args.notebook)
    before = jd.find(ctx, _target(args))
    word = 'pinned' if args.pin else 'unpinned'
    if before.frontmatter.pinned == args.pin:
        print(f"Jot '{before.id}' is already {word}.")
        return 0
    jd.change(ctx, ByPrefix(before.id), pinned=args.pin)
    print(f"Successfully {word} jot '{before.id}'.")
    return 0


def _find(args, jd: Jotdir) -> int:
    jots = jd.query(jd.context(args.notebook), JotQuery(text=' '.join(args.text)), all_notebooks=args.all)
    _output_jots(args, jots, with_notebook=args.all)
    return 0


def _query(args, jd: Jotdir) -> int:
    jots = jd.query(jd.context(args.notebook), args.query or '', all_notebooks=args.all)
    _output_jots(args, jots, with_notebook=args.all)
    return 0


def _tags(args, jd: Jotdir) -> int:
    jots = jd.query(jd.context(args.notebook), JotQuery(include_tags=set(_split_tags(args.tags))))
    _output_jots(args, jots)
    return 0


def _dates(args, jd: Jotdir) -> int:
    spec = args.spec if args.spec else args.range_name
    query = JotQuery(date_range=DateRange.parse(spec), newest_first=False)
    jots = jd.query(jd.context(args.notebook), query)
    if args.compile:
        print(jd.compile(jots))
    else:
        _output_jots(args, jots)
    return 0


def _notebook(args, jd: Jotdir) -> int:
    ctx = jd.context(args.notebook)
    if args.action == 'new':
        info = jd.create_notebook(args.name)
        print(f"Created notebook '{info.name}'.")
    elif args.action == 'list':
        print('Available notebooks (* indicates active):')
        for info in jd.notebooks(ctx):
            print(f"  {'*' if info.active else ' '} {info.name}")
    elif args.action == 'use':
        jd.repo.notebook_path(args.name)
        print(f'export JOTDIR_NOTEBOOK="{args.name}"')
    else:
        print(f'Active notebook: {ctx.name}')
    return 0


def _info(args, jd: Jotdir) -> int:
    ctx = jd.context(args.notebook)
    if args.paths:
        print(f'Root directory:  {jd.repo.root}')
        print(f'Notebooks root:  {jd.repo.notebooks_dir}')
        print(f'Active notebook: {ctx.name}')
        print(f'Encrypted:       {"yes" if jd.repo.encryption.enabled else "no"}')
    if args.stats:
        stats = jd.stats(ctx, all_notebooks=args.all)
        if args.json:
            print(json.dumps({'count': stats.count, 'tags': stats.tag_counts,
                              'tasks': {'pending': stats.tasks.pending, 'completed': stats.tasks.completed}}))
        else:
            print(f'Total jots: {stats.count}')
            if stats.tag_counts:
                data = [('Tag', 'Count')] + sorted(stats.tag_counts.items(), key=lambda kv: (-kv[1], kv[0]))
                table = AsciiTable(data)
                table.justify_columns[1] = 'right'
                print(table.table)
            print(f'Tasks: {stats.tasks.completed} completed, {stats.tasks.pending} pending')
    if not (args.paths or args.stats):
        print('Please pass --paths and/or --stats.')
        return 1
    return 0


def _init(args, jd: Jotdir) -> int:
    jd.repo.notebook_names()
    print(f'jotdir root is {jd.repo.root}')
    if args.encrypt:
        passphrase = getpass('Passphrase to protect the identity (empty for none): ') if args.passphrase else None
        state = jd.init_encryption(passphrase)
        print(f'Generated new encryption identity at {state.identity_path}')
        print('IMPORTANT: back this file up somewhere safe!')
    return 0


def _decrypt(args, jd: Jotdir) -> int:
    if not args.force:
        answer = input('This will permanently decrypt all jots in ALL notebooks and remove your identity. '
                       'Continue? [y/N] ')
        if answer.strip().lower() != 'y':
            print('Decryption aborted.')
            return 0
    summary = jd.decrypt_all()
    print(f'Decrypted {len(summary.decrypted)} jot(s); {len(summary.skipped)} were already plaintext.')
    for path, error in summary.failed.items():
        print(f'Failed: {path}: {error}', file=sys.stderr)
    if not summary.ok:
        print('Encryption keys were kept because some jots failed.', file=sys.stderr)
        return 1
    print('Removed encryption keys.')
    return 0


def _add_target(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument('id_prefix', nargs='?', help='Unique prefix of the jot ID.')
    group.add_argument('-l', '--last', nargs='?', type=int, const=1,
                       help='Target the Nth most recent jot (default 1, the newest).')


def argparser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='jotdir')
    parser.set_defaults(func=None)
    parser.add_argument('-n', '--notebook', help='Run the command in this notebook instead of the active one.')
    parser.add_argument('-v', '--verbose', action='store_true', help='Log details to stderr.')

    subs = parser.add_subparsers(title='Commands')

    p_down = subs.add_parser('down', help='Jot something down.')
    p_down.add_argument('message', nargs='+')
    p_down.add_argument('-t', '--tags', action='append', help='Comma-separated tags. May be repeated.')
    p_down.set_defaults(func=_down)

    p_task = subs.add_parser('task', help='Create a jot holding a single unchecked task.')
    p_task.add_argument('message', nargs='+')
    p_task.add_argument('-t', '--tags', action='append', help='Comma-separated tags. May be repeated.')
    p_task.set_defaults(func=_task)

    p_list = subs.add_parser('list', help='List the most recent jots.')
    p_list.add_argument('-c', '--count', type=int, default=10, help='Number of jots to list (default 10).')
    p_list.add_argument('-p', '--pinned', action='store_true', help='Only pinned jots.')
    p_list.add_argument('-t', '--tasks', action='store_true', help='Only jots with pending tasks.')
    p_list.add_argument('-j', '--json', action='store_true', help='Output as JSON.')
    p_list.set_defaults(func=_list)

    p_show = subs.add_parser('show', help='Print a jot.')
    _add_target(p_show)
    p_show.add_argument('-j', '--json', action='store_true', help='Output as JSON.')
    p_show.set_defaults(func=_show)

    p_delete = subs.add_parser('delete', aliases=['rm'], help='Delete a jot.')
    _add_target(p_delete)
    p_delete.add_argument('-f', '--force', action='store_true', help='Do not ask for confirmation.')
    p_delete.set_defaults(func=_delete)

    p_tag = subs.add_parser('tag', help='Add, remove or replace the tags of a jot.')
    p_tag.add_argument('action', choices=['add', 'remove', 'set'])
    _add_target(p_tag)
    p_tag.add_argument('-t', '--tags', action='append', required=True, help='Comma-separated tags. May be repeated.')
    p_tag.set_defaults(func=_tag)

    for name, pin in (('pin', True), ('unpin', False)):
        p_pin = subs.add_parser(name, help=f'{name.capitalize()} a jot.')
        _add_target(p_pin)
        p_pin.set_defaults(func=_pin, pin=pin)

    p_find = subs.add_parser('find', help='Search jot bodies for text, case-insensitively.')
    p_find.add_argument('text', nargs='+')
    p_find.add_argument('-a', '--all', action='store_true', help='Search every notebook.')
    p_find.add_argument('-j', '--json', action='store_true', help='Output as JSON.')
    p_find.set_defaults(func=_find)

    p_query = subs.add_parser(
        'query',
        help='Query jots. For full query syntax, see the documentation of jotdir.models.JotQuery.parse - '
             'an example query is "tag:rust,cli on:this-week has:pending".')
    p_query.add_argument('query', nargs='?', help='Query string. If omitted, the query matches all jots.')
    p_query.add_argument('-a', '--all', action='store_true', help='Search every notebook.')
    p_query.add_argument('-j', '--json', action='store_true', help='Output as JSON.')
    p_query.set_defaults(func=_query)

    p_tags = subs.add_parser('tags', help='List jots that have all of the given tags.')
    p_tags.add_argument('tags', nargs='+')
    p_tags.add_argument('-j', '--json', action='store_true', help='Output as JSON.')
    p_tags.set_defaults(func=_tags)

    for name in ('today', 'yesterday', 'week'):
        p_date = subs.add_parser(name, help=f'List jots from {"this week" if name == "week" else name}.')
        p_date.add_argument('-c', '--compile', action='store_true', help='Print the jots as one document.')
        p_date.set_defaults(func=_dates, range_name=name, spec=None, json=False)

    p_on = subs.add_parser('on', help='List jots from a date (YYYY-MM-DD) or range (YYYY-MM-DD..YYYY-MM-DD).')
    p_on.add_argument('spec')
    p_on.add_argument('-c', '--compile', action='store_true', help='Print the jots as one document.')
    p_on.set_defaults(func=_dates, range_name=None, json=False)

    p_nb = subs.add_parser('notebook', help='Manage notebooks.')
    nb_subs = p_nb.add_subparsers(title='Actions', dest='action', required=True)
    p_nb_new = nb_subs.add_parser('new', help='Create a new, empty notebook.')
    p_nb_new.add_argument('name')
    nb_subs.add_parser('list', help='List notebooks.')
    p_nb_use = nb_subs.add_parser('use', help='Print the shell command that makes a notebook active: '
                                              'eval $(jotdir notebook use NAME)')
    p_nb_use.add_argument('name')
    nb_subs.add_parser('status', help='Show the active notebook.')
    p_nb.set_defaults(func=_notebook)

    p_info = subs.add_parser('info', help='Show paths and statistics.')
    p_info.add_argument('--paths', action='store_true', help='Show storage paths.')
    p_info.add_argument('--stats', action='store_true', help='Show jot, tag and task counts.')
    p_info.add_argument('-a', '--all', action='store_true', help='Count across every notebook.')
    p_info.add_argument('-j', '--json', action='store_true', help='Output stats as JSON.')
    p_info.set_defaults(func=_info)

    p_init = subs.add_parser('init', help='Create the jotdir root, optionally with encryption.')
    p_init.add_argument('-e', '--encrypt', action='store_true', help='Generate an encryption identity.')
    p_init.add_argument('-p', '--passphrase', action='store_true',
                        help='Ask for a passphrase to protect the identity.')
    p_init.set_defaults(func=_init)

    p_decrypt = subs.add_parser('decrypt', help='Permanently decrypt all jots and remove the encryption keys.')
    p_decrypt.add_argument('-f', '--force', action='store_true', help='Do not ask for confirmation.')
    p_decrypt.set_defaults(func=_decrypt)

    return parser


def main(args=None) -> int:
    """Runs the tool and returns its exit code.

    args may be an array of string command-line arguments; if absent,
    the process's arguments are used.
    """
    parser = argparser()
    args = parser.parse_args(args)
    if not args.func:
        parser.print_help()
        return 1
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')
    try:
        with Jotdir.for_user() as jd:
            return args.func(args, jd)
    except (Error, ValueError) as e:
        print(f'Error: {e}', file=sys.stderr)
        return 1
