"""AES-256-GCM encryption for secrets stored at rest.

Keys are 64 lowercase hex characters (32 bytes). The key used by a process is
resolved by :class:`EncryptionKeyProvider` from a list of sources, by default
the ``HIVE_ENCRYPTION_KEY`` environment variable and then the key file. If no
source yields a key a new one is generated and written to the key file.

Losing the key file makes every value encrypted with it unrecoverable, there
is no recovery path. Back the key file up together with the data it protects.

>>> key = generate_key()
>>> value = encrypt("s3cret!", key)
>>> decrypt(value.ciphertext, value.iv, value.auth_tag, key)
's3cret!'
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import re
import secrets
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import IntegrityError, InvalidKeyError

_LOGGER = logging.getLogger(__name__)

KEY_LENGTH_BYTES = 32
IV_LENGTH_BYTES = 12
AUTH_TAG_LENGTH_BYTES = 16

ENCRYPTION_KEY_ENV = "HIVE_ENCRYPTION_KEY"
KEY_FILE_MODE = 0o600

_KEY_RE = re.compile(r"^[a-f0-9]{64}$")


@dataclass(frozen=True)
class EncryptedValue:
    """Base64 encoded output of :func:`encrypt`."""

    ciphertext: str
    iv: str
    auth_tag: str


def generate_key() -> str:
    """Return a new random key as 64 lowercase hex characters."""
    return secrets.token_hex(KEY_LENGTH_BYTES)


def validate_key(key: str | None) -> str:
    """Return the key if it is well formed, raise InvalidKeyError otherwise."""
    if not key or len(key) != KEY_LENGTH_BYTES * 2:
        raise InvalidKeyError(
            "Invalid key length: must be 64 hex characters (32 bytes)"
        )
    if not _KEY_RE.match(key):
        raise InvalidKeyError("Invalid key format: must be lowercase hex characters")
    return key


def encrypt(plaintext: str, key: str) -> EncryptedValue:
    """Encrypt plaintext with AES-256-GCM using a fresh random IV."""
    iv = os.urandom(IV_LENGTH_BYTES)
    aesgcm = AESGCM(bytes.fromhex(validate_key(key)))
    # cryptography appends the 16 byte tag to the ciphertext
    sealed = aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, auth_tag = (
        sealed[:-AUTH_TAG_LENGTH_BYTES],
        sealed[-AUTH_TAG_LENGTH_BYTES:],
    )
    return EncryptedValue(
        ciphertext=base64.b64encode(ciphertext).decode("ascii"),
        iv=base64.b64encode(iv).decode("ascii"),
        auth_tag=base64.b64encode(auth_tag).decode("ascii"),
    )


def decrypt(ciphertext: str, iv: str, auth_tag: str, key: str) -> str:
    """Decrypt AES-256-GCM ciphertext.

    Raises IntegrityError if the data was tampered with or the key is wrong.
    """
    aesgcm = AESGCM(bytes.fromhex(validate_key(key)))
    try:
        raw_tag = base64.b64decode(auth_tag, validate=True)
        if len(raw_tag) != AUTH_TAG_LENGTH_BYTES:
            raise IntegrityError("Invalid authentication tag length")
        sealed = base64.b64decode(ciphertext, validate=True) + raw_tag
        plaintext = aesgcm.decrypt(base64.b64decode(iv, validate=True), sealed, None)
        return plaintext.decode("utf-8")
    except InvalidTag as ex:
        raise IntegrityError(
            "Unable to decrypt: authentication tag mismatch", ex
        ) from ex
    except (binascii.Error, ValueError) as ex:
        raise IntegrityError(f"Unable to decrypt: {ex}", ex) from ex


class KeySource(ABC):
    """A place an encryption key can be loaded from."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Description used in log messages."""

    @abstractmethod
    def load(self) -> str | None:
        """Return the key or None if this source has none."""


class EnvironmentKeySource(KeySource):
    """Key provided directly by an environment variable."""

    def __init__(self, variable: str = ENCRYPTION_KEY_ENV) -> None:
        self._variable = variable

    @property
    def name(self) -> str:
        """Description used in log messages."""
        return f"environment variable {self._variable}"

    def load(self) -> str | None:
        """Return the key or None if the variable is unset."""
        return os.environ.get(self._variable) or None


class FileKeySource(KeySource):
    """Key stored in a file readable only by its owner."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    @property
    def name(self) -> str:
        """Description used in log messages."""
        return f"key file {self.path}"

    def load(self) -> str | None:
        """Return the key or None if the file does not exist."""
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8").strip()

    def save(self, key: str) -> None:
        """Write the key to the file with owner-only permissions."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, KEY_FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(key)
        os.chmod(self.path, KEY_FILE_MODE)


class EncryptionKeyProvider:
    """Resolve and cache the encryption key for this process.

    Sources are consulted in order and the first key found wins. A malformed
    key is a configuration error and raises InvalidKeyError immediately. If
    no source yields a key and ``generate_into`` is set, a new key is
    generated and saved there.
    """

    def __init__(
        self,
        sources: Sequence[KeySource],
        *,
        generate_into: FileKeySource | None = None,
    ) -> None:
        self._sources = list(sources)
        self._generate_into = generate_into
        self._cached_key: str | None = None

    @classmethod
    def default(cls, key_file: str | Path) -> EncryptionKeyProvider:
        """Return a provider using the environment variable then the key file."""
        file_source = FileKeySource(key_file)
        return cls(
            [EnvironmentKeySource(), file_source], generate_into=file_source
        )

    def get_key(self) -> str:
        """Return the encryption key, resolving it on first use."""
        if self._cached_key:
            return self._cached_key

        for source in self._sources:
            if (key := source.load()) is None:
                continue
            try:
                validate_key(key)
            except InvalidKeyError as ex:
                raise InvalidKeyError(f"{ex} ({source.name})") from ex
            _LOGGER.debug("Using encryption key from %s", source.name)
            self._cached_key = key
            return key

        if self._generate_into is None:
            raise InvalidKeyError("No encryption key available")

        key = generate_key()
        self._generate_into.save(key)
        _LOGGER.info(
            "Generated and saved new encryption key to %s", self._generate_into.path
        )
        self._cached_key = key
        return key

    def clear_cache(self) -> None:
        """Forget the cached key so the next call resolves it again."""
        self._cached_key = None


_default_providers: dict[Path, EncryptionKeyProvider] = {}


def get_encryption_key(key_file: str | Path) -> str:
    """Return the process wide key for key_file, resolving it once."""
    path = Path(key_file)
    if (provider := _default_providers.get(path)) is None:
        provider = _default_providers[path] = EncryptionKeyProvider.default(path)
    return provider.get_key()
