"""Transparent encryption of jot files.

Encryption is turned on by key material in the root directory:

* ``recipient.pub`` - the base64-encoded X25519 public key that new and rewritten jots are encrypted to
* ``identity.pem`` - the matching private key (PKCS#8 PEM), optionally protected by a passphrase

Each encrypted file starts with the line ``jotdir-encryption/v1``, followed by a fresh ephemeral public key, a nonce
and the ChaCha20-Poly1305 ciphertext of the jot's full text. The content key is derived with HKDF-SHA256 from the
X25519 shared secret between the ephemeral key and the recipient.

Files that don't start with the magic line are plaintext and are read as-is, even when encryption is enabled.
"""

from __future__ import annotations
import base64
import logging
import os
import os.path
from typing import Callable, Optional

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from jotdir.errors import DecryptionError, EncryptionError, ParseError

logger = logging.getLogger(__name__)

MAGIC = b'jotdir-encryption/v1\n'
IDENTITY_FILENAME = 'identity.pem'
RECIPIENT_FILENAME = 'recipient.pub'
KEY_SIZE = 32
NONCE_SIZE = 12
HKDF_INFO = b'jotdir note key'

PassphraseFn = Callable[[], Optional[str]]


def _raw_public(key: X25519PublicKey) -> bytes:
    return key.public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)


def _content_key(shared: bytes, ephemeral_public: bytes, recipient_public: bytes) -> bytes:
    hkdf = HKDF(algorithm=hashes.SHA256(), length=KEY_SIZE, salt=ephemeral_public + recipient_public,
                info=HKDF_INFO)
    return hkdf.derive(shared)


def is_encrypted(data: bytes) -> bool:
    return data.startswith(MAGIC)


def encrypt(plaintext: bytes, recipient: X25519PublicKey) -> bytes:
    ephemeral = X25519PrivateKey.generate()
    ephemeral_public = _raw_public(ephemeral.public_key())
    key = _content_key(ephemeral.exchange(recipient), ephemeral_public, _raw_public(recipient))
    nonce = os.urandom(NONCE_SIZE)
    return MAGIC + ephemeral_public + nonce + ChaCha20Poly1305(key).encrypt(nonce, plaintext, MAGIC)


def decrypt(data: bytes, identity: X25519PrivateKey, path: str = None) -> bytes:
    """Reverses :func:`encrypt`. Raises :exc:`jotdir.errors.DecryptionError` for a wrong key or corrupt data."""
    if not is_encrypted(data):
        raise DecryptionError('Not an encrypted jot', path)
    header_end = len(MAGIC) + KEY_SIZE + NONCE_SIZE
    if len(data) < header_end:
        raise DecryptionError('Encrypted jot is truncated', path)
    ephemeral_public = data[len(MAGIC):len(MAGIC) + KEY_SIZE]
    nonce = data[len(MAGIC) + KEY_SIZE:header_end]
    try:
        shared = identity.exchange(X25519PublicKey.from_public_bytes(ephemeral_public))
        key = _content_key(shared, ephemeral_public, _raw_public(identity.public_key()))
        return ChaCha20Poly1305(key).decrypt(nonce, data[header_end:], MAGIC)
    except InvalidTag as e:
        raise DecryptionError('Could not decrypt jot: wrong key or corrupt ciphertext', path, e)
    except ValueError as e:
        raise DecryptionError('Could not decrypt jot: corrupt ciphertext', path, e)


class EncryptionState:
    """The encryption settings of one root directory, read once per invocation.

    The recipient (public key) is read when the instance is created. The identity (private key) is only loaded,
    and its passphrase only requested, the first time something needs to be decrypted.

    .. attribute:: root
       :type: str

    .. attribute:: recipient
       :type: Optional[X25519PublicKey]

       None when encryption is disabled.
    """
    def __init__(self, root: str, recipient: Optional[X25519PublicKey] = None, passphrase: PassphraseFn = None):
        self.root = root
        self.recipient = recipient
        self.passphrase = passphrase or (lambda: None)
        self._identity = None
        self._identity_error = None

    @classmethod
    def load(cls, root: str, passphrase: PassphraseFn = None) -> EncryptionState:
        recipient = None
        path = os.path.join(root, RECIPIENT_FILENAME)
        if os.path.isfile(path):
            with open(path, 'r') as file:
                encoded = file.read().strip()
            try:
                recipient = X25519PublicKey.from_public_bytes(base64.b64decode(encoded, validate=True))
            except ValueError as e:
                raise EncryptionError(f'Invalid recipient key in {path}: {e}')
        return cls(root, recipient, passphrase)

    @classmethod
    def generate(cls, root: str, passphrase: Optional[str] = None) -> EncryptionState:
        """Creates new key material in ``root`` and returns the resulting state.

        The identity file is created exclusively, so an existing identity is never overwritten; in that case
        :exc:`jotdir.errors.EncryptionError` is raised.
        """
        identity_path = os.path.join(root, IDENTITY_FILENAME)
        identity = X25519PrivateKey.generate()
        if passphrase:
            protection = serialization.BestAvailableEncryption(passphrase.encode('utf-8'))
        else:
            protection = serialization.NoEncryption()
        pem = identity.private_bytes(serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, protection)
        try:
            fd = os.open(identity_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError:
            raise EncryptionError(f'An encryption identity already exists at {identity_path}')
        with os.fdopen(fd, 'wb') as file:
            file.write(pem)
        recipient = identity.public_key()
        with open(os.path.join(root, RECIPIENT_FILENAME), 'w') as file:
            file.write(base64.b64encode(_raw_public(recipient)).decode('ascii') + '\n')
        logger.info('generated encryption identity at %s', identity_path)
        state = cls(root, recipient, lambda: passphrase)
        state._identity = identity
        return state

    @property
    def enabled(self) -> bool:
        return self.recipient is not None

    @property
    def identity_path(self) -> str:
        return os.path.join(self.root, IDENTITY_FILENAME)

    @property
    def recipient_path(self) -> str:
        return os.path.join(self.root, RECIPIENT_FILENAME)

    def has_key_material(self) -> bool:
        return os.path.exists(self.identity_path) or os.path.exists(self.recipient_path)

    def identity(self) -> X25519PrivateKey:
        """Loads the private key, asking for the passphrase if the key is protected.

        Raises :exc:`jotdir.errors.DecryptionError` if the identity is missing or cannot be unlocked.
        A failed unlock is remembered, so the passphrase is asked for at most once.
        """
        if self._identity_error is not None:
            raise self._identity_error
        if self._identity is None:
            path = self.identity_path
            if not os.path.isfile(path):
                raise DecryptionError(f'Encrypted jot found but there is no identity file at {path}')
            with open(path, 'rb') as file:
                pem = file.read()
            password = None
            if b'ENCRYPTED' in pem:
                passphrase = self.passphrase()
                if not passphrase:
                    self._identity_error = DecryptionError(
                        f'The identity at {path} is protected by a passphrase, but none was given')
                    raise self._identity_error
                password = passphrase.encode('utf-8')
            try:
                key = serialization.load_pem_private_key(pem, password=password)
            except (TypeError, ValueError, UnsupportedAlgorithm) as e:
                self._identity_error = DecryptionError(
                    'Could not load identity: wrong passphrase or invalid key file', path, e)
                raise self._identity_error
            if not isinstance(key, X25519PrivateKey):
                raise DecryptionError('Identity is not an X25519 key', path)
            self._identity = key
        return self._identity

    def encode(self, text: str) -> bytes:
        """Converts a jot's text to the bytes that should be stored: ciphertext if enabled, else UTF-8."""
        data = text.encode('utf-8')
        if self.enabled:
            return encrypt(data, self.recipient)
        return data

    def decode(self, data: bytes, path: str = None) -> str:
        """Converts stored bytes back to a jot's text, decrypting if they are ciphertext."""
        if is_encrypted(data):
            data = decrypt(data, self.identity(), path)
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ParseError('Jot is not valid UTF-8', path, e)

    def remove_key_material(self) -> None:
        """Deletes the recipient and identity files, which permanently turns encryption off for the root."""
        for path in (self.recipient_path, self.identity_path):
            if os.path.exists(path):
                os.remove(path)
                logger.info('removed %s', path)
        self.recipient = None
        self._identity = None
        self._identity_error = None
