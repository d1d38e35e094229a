from __future__ import annotations
from dataclasses import dataclass, replace
from getpass import getpass
import os
import os.path
from typing import Callable, Optional

from jotdir.errors import Error

ROOT_ENV = 'JOTDIR_ROOT'
NOTEBOOK_ENV = 'JOTDIR_NOTEBOOK'
PASSPHRASE_ENV = 'JOTDIR_PASSPHRASE'


def default_root() -> str:
    """Returns ``$XDG_CONFIG_HOME/jotdir``, or ``~/.config/jotdir`` if that variable is unset."""
    base = os.environ.get('XDG_CONFIG_HOME') or os.path.join(os.path.expanduser('~'), '.config')
    return os.path.join(base, 'jotdir')


def prompt_passphrase() -> Optional[str]:
    """Returns ``$JOTDIR_PASSPHRASE`` if set, otherwise asks on the terminal."""
    if PASSPHRASE_ENV in os.environ:
        return os.environ[PASSPHRASE_ENV]
    return getpass('Passphrase for jotdir identity: ')


@dataclass
class JotdirConf:
    root: str
    """Directory holding the ``notebooks`` folder and any encryption key material.

    Can be overridden with the ``JOTDIR_ROOT`` environment variable.
    """

    notebook: Optional[str] = None
    """The active notebook, used when a command does not name one with ``--notebook``.

    Can be overridden with the ``JOTDIR_NOTEBOOK`` environment variable. If neither is set, ``"default"`` is used.
    """

    passphrase: Callable[[], Optional[str]] = prompt_passphrase
    """Called (at most once per invocation) when a passphrase-protected identity must be unlocked."""

    @classmethod
    def user_config_path(cls) -> str:
        return os.path.expanduser(os.path.join('~', '.jotdir.conf.py'))

    @classmethod
    def for_user(cls) -> JotdirConf:
        """Loads the configuration for the current user.

        If ``~/.jotdir.conf.py`` exists it is executed and must assign an instance of this class to ``conf``;
        otherwise the defaults are used. Environment variables then override the root and active notebook.
        """
        path = cls.user_config_path()
        if os.path.exists(path):
            with open(path, 'r') as file:
                conf_script = file.read()
            context = {}
            exec(conf_script, context)
            if 'conf' not in context or not isinstance(context['conf'], cls):
                raise Error('You need to assign an instance of JotdirConf to the variable `conf` '
                            f'in your config file: {path}')
            conf = context['conf']
        else:
            conf = cls(root=default_root())
        return conf.with_environment(os.environ)

    def with_environment(self, environ) -> JotdirConf:
        return replace(
            self,
            root=environ.get(ROOT_ENV) or self.root,
            notebook=environ.get(NOTEBOOK_ENV) or self.notebook,
        )

    def standardize(self) -> JotdirConf:
        return replace(self, root=os.path.abspath(os.path.expanduser(self.root)))

    def instantiate(self):
        from jotdir.api import Jotdir
        return Jotdir(self.standardize())
