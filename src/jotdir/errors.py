"""Exceptions raised by jotdir.

Everything raised deliberately by the library is a subclass of :class:`Error`, so callers (such as the CLI) can
catch that one class and show :attr:`Error.message` to the user.
"""

from typing import List, Optional


class Error(Exception):
    """Base class for jotdir errors."""
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(Error):
    """Raised when a target specification does not match any jot."""


class NotebookNotFound(NotFound):
    """Raised when a notebook name does not refer to an existing notebook directory."""
    def __init__(self, name: str):
        super().__init__(f"Notebook '{name}' not found. Create it with `jotdir notebook new {name}`.")
        self.name = name


class Ambiguous(Error):
    """Raised when an ID prefix matches more than one jot."""
    def __init__(self, prefix: str, candidates: List[str]):
        listing = '\n'.join(candidates)
        super().__init__(f"Prefix '{prefix}' is not unique. Multiple jots found:\n{listing}")
        self.prefix = prefix
        self.candidates = candidates


class OutOfRange(Error):
    """Raised when a recency index is larger than the number of jots in the notebook."""
    def __init__(self, message: str, index: int, count: int):
        super().__init__(message)
        self.index = index
        self.count = count


class AlreadyExists(Error):
    """Raised when creating something (a notebook, a jot with a fixed ID) whose path is already taken."""


class InvalidName(Error):
    """Raised when a notebook name is empty or contains characters that are not filesystem-safe."""


class ParseError(Error):
    """Raised when the header of a jot cannot be parsed."""
    def __init__(self, message: str, path: Optional[str] = None, cause: BaseException = None):
        super().__init__(f'{message} ({path})' if path else message)
        self.path = path
        self.cause = cause


class EncryptionError(Error):
    """Raised when key material is missing or invalid for an operation that needs it."""


class DecryptionError(EncryptionError):
    """Raised when a jot cannot be decrypted: missing identity, wrong key or passphrase, or corrupt ciphertext."""
    def __init__(self, message: str, path: Optional[str] = None, cause: BaseException = None):
        super().__init__(f'{message} ({path})' if path else message)
        self.path = path
        self.cause = cause


class MigrationError(Error):
    """Raised when the legacy ``entries`` directory could not be moved into the notebooks layout.

    The move is a single rename, so the legacy directory is still intact when this is raised.
    """
    def __init__(self, message: str, cause: BaseException = None):
        super().__init__(message)
        self.cause = cause
