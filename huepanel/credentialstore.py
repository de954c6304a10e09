"""Encrypted on-disk store for the Hive account credentials.

The store keeps one account: the username in plain text, the password
encrypted with AES-256-GCM, the cached provider session token and the
optional device registration used to skip two factor authentication.

The whole file is rewritten on every change, readable only by its owner::

    {
      "username": "user@example.com",
      "encryptedPassword": "<base64>",
      "iv": "<base64>",
      "authTag": "<base64>",
      "sessionToken": "<opaque>",
      "sessionExpiresAt": 1700000000000
    }

A missing, empty or unreadable file, or a password that no longer decrypts
(for example after the key file was lost), leaves the store empty instead of
failing start up.
"""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from mashumaro import field_options
from mashumaro.config import BaseConfig

from .credentials import Credentials, DeviceCredentials
from .encryption import EncryptionKeyProvider, decrypt, encrypt
from .exceptions import IntegrityError, ValidationError
from .json import DataClassJSONMixin
from .json import dumps as json_dumps
from .json import loads as json_loads

_LOGGER = logging.getLogger(__name__)

CREDENTIALS_FILE_MODE = 0o600

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _alias(name: str) -> dict:
    return field_options(alias=name)


@dataclass
class StoredCredentials(DataClassJSONMixin):
    """File representation of the credential store."""

    username: str | None = None
    encrypted_password: str | None = field(
        default=None, metadata=_alias("encryptedPassword")
    )
    iv: str | None = None
    auth_tag: str | None = field(default=None, metadata=_alias("authTag"))
    session_token: str | None = field(default=None, metadata=_alias("sessionToken"))
    session_expires_at: int | None = field(
        default=None, metadata=_alias("sessionExpiresAt")
    )
    device_key: str | None = field(default=None, metadata=_alias("deviceKey"))
    device_group_key: str | None = field(
        default=None, metadata=_alias("deviceGroupKey")
    )
    encrypted_device_password: str | None = field(
        default=None, metadata=_alias("encryptedDevicePassword")
    )
    device_iv: str | None = field(default=None, metadata=_alias("deviceIv"))
    device_auth_tag: str | None = field(
        default=None, metadata=_alias("deviceAuthTag")
    )

    class Config(BaseConfig):
        """Serialization config."""

        omit_none = True
        serialize_by_alias = True


class CredentialStore:
    """Store the Hive account credentials encrypted on disk."""

    def __init__(
        self,
        path: str | Path,
        key_provider: EncryptionKeyProvider,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._path = Path(path)
        self._key_provider = key_provider
        self._clock = clock or time.time
        self._lock = threading.RLock()

        self._credentials: Credentials | None = None
        self._session_token: str | None = None
        self._session_expires_at: int | None = None
        self._device: DeviceCredentials | None = None

        self._load()

    @property
    def path(self) -> Path:
        """Return the path of the credentials file."""
        return self._path

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def store_credentials(self, username: str, password: str) -> None:
        """Validate and store new account credentials.

        Any cached session token belongs to the previous credentials and is
        discarded.
        """
        if not isinstance(username, str) or not username.strip():
            raise ValidationError("username", "username is required")
        if not isinstance(password, str) or not password.strip():
            raise ValidationError("password", "password is required")
        if not _EMAIL_RE.match(username):
            raise ValidationError("username", "must be a valid email address")

        with self._lock:
            self._update(
                credentials=Credentials(username, password),
                session_token=None,
                session_expires_at=None,
            )

        _LOGGER.info("Stored Hive credentials for %s", username)

    def get_credentials(self) -> Credentials | None:
        """Return the stored credentials or None."""
        with self._lock:
            if self._credentials is None:
                return None
            return Credentials(self._credentials.username, self._credentials.password)

    def has_credentials(self) -> bool:
        """Return True if credentials are stored."""
        return self._credentials is not None

    def clear_credentials(self) -> None:
        """Remove the credentials and everything derived from them."""
        with self._lock:
            self._update(
                credentials=None,
                session_token=None,
                session_expires_at=None,
                device=None,
            )

        _LOGGER.info("Cleared Hive credentials")

    def set_session_token(self, token: str, expires_at: int) -> None:
        """Cache a provider session token until expires_at (epoch ms)."""
        with self._lock:
            self._update(session_token=token, session_expires_at=expires_at)

        _LOGGER.debug("Cached Hive session token, expires at %s", expires_at)

    def get_session_token(self) -> str | None:
        """Return the cached session token if it has not expired."""
        with self._lock:
            if not self._session_token or not self._session_expires_at:
                return None

            if self._now_ms() >= self._session_expires_at:
                self._update(session_token=None, session_expires_at=None)
                _LOGGER.debug("Hive session token expired")
                return None

            return self._session_token

    def clear_session_token(self) -> None:
        """Forget the cached session token."""
        with self._lock:
            self._update(session_token=None, session_expires_at=None)

        _LOGGER.debug("Cleared Hive session token")

    def set_device_credentials(self, device: DeviceCredentials) -> None:
        """Store the device registration used to skip two factor login."""
        with self._lock:
            self._update(
                device=DeviceCredentials(
                    device.device_key, device.device_group_key, device.device_password
                )
            )

        _LOGGER.info("Stored Hive device registration %s", device.device_key)

    def get_device_credentials(self) -> DeviceCredentials | None:
        """Return the stored device registration or None."""
        with self._lock:
            if self._device is None:
                return None
            return DeviceCredentials(
                self._device.device_key,
                self._device.device_group_key,
                self._device.device_password,
            )

    def clear_device_credentials(self) -> None:
        """Forget the device registration."""
        with self._lock:
            self._update(device=None)

        _LOGGER.debug("Cleared Hive device registration")

    def _update(self, **changes: Any) -> None:
        """Write the changed state to disk, then apply it in memory.

        A failed write raises and leaves the in memory state untouched.
        """
        state = {
            "credentials": self._credentials,
            "session_token": self._session_token,
            "session_expires_at": self._session_expires_at,
            "device": self._device,
        }
        state.update(changes)
        self._save(self._to_stored(**state))
        for name, value in changes.items():
            setattr(self, f"_{name}", value)

    def _to_stored(
        self,
        credentials: Credentials | None,
        session_token: str | None,
        session_expires_at: int | None,
        device: DeviceCredentials | None,
    ) -> StoredCredentials:
        stored = StoredCredentials()
        if credentials or device:
            key = self._key_provider.get_key()
        if credentials:
            password = encrypt(credentials.password, key)
            stored.username = credentials.username
            stored.encrypted_password = password.ciphertext
            stored.iv = password.iv
            stored.auth_tag = password.auth_tag
        if session_token and session_expires_at:
            stored.session_token = session_token
            stored.session_expires_at = session_expires_at
        if device:
            device_password = encrypt(device.device_password, key)
            stored.device_key = device.device_key
            stored.device_group_key = device.device_group_key
            stored.encrypted_device_password = device_password.ciphertext
            stored.device_iv = device_password.iv
            stored.device_auth_tag = device_password.auth_tag
        return stored

    def _save(self, stored: StoredCredentials) -> None:
        contents = json_dumps(stored.to_dict(), indent=True)

        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        fd = os.open(
            tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, CREDENTIALS_FILE_MODE
        )
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(contents)
        os.chmod(tmp_path, CREDENTIALS_FILE_MODE)
        os.replace(tmp_path, self._path)
        _LOGGER.debug("Saved Hive credentials to %s", self._path)

    def _load(self) -> None:
        if not self._path.exists():
            _LOGGER.debug("No Hive credentials file found at %s", self._path)
            return

        try:
            contents = self._path.read_text(encoding="utf-8")
            if not contents.strip():
                _LOGGER.debug("Hive credentials file is empty")
                return
            stored = StoredCredentials.from_dict(json_loads(contents))
        except Exception as ex:
            _LOGGER.warning("Failed to load Hive credentials: %s", ex)
            return

        if (
            stored.username
            and stored.encrypted_password
            and stored.iv
            and stored.auth_tag
        ):
            try:
                password = decrypt(
                    stored.encrypted_password,
                    stored.iv,
                    stored.auth_tag,
                    self._key_provider.get_key(),
                )
            except IntegrityError as ex:
                _LOGGER.warning("Failed to decrypt Hive password: %s", ex)
                return
            self._credentials = Credentials(stored.username, password)

        if (
            stored.session_token
            and stored.session_expires_at
            and self._now_ms() < stored.session_expires_at
        ):
            self._session_token = stored.session_token
            self._session_expires_at = stored.session_expires_at

        if (
            stored.device_key
            and stored.device_group_key
            and stored.encrypted_device_password
            and stored.device_iv
            and stored.device_auth_tag
        ):
            try:
                device_password = decrypt(
                    stored.encrypted_device_password,
                    stored.device_iv,
                    stored.device_auth_tag,
                    self._key_provider.get_key(),
                )
            except IntegrityError as ex:
                _LOGGER.warning("Failed to decrypt Hive device registration: %s", ex)
            else:
                self._device = DeviceCredentials(
                    stored.device_key, stored.device_group_key, device_password
                )

        if self._credentials:
            _LOGGER.info(
                "Loaded Hive credentials for %s from file", self._credentials.username
            )
