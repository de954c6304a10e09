"""Short lived session tokens standing in for bridge credentials.

A client pairs with a bridge once and exchanges the resulting bridge username
for a session token. Sessions live in memory only and are lost on restart.

>>> sessions = SessionManager()
>>> info = sessions.create_session("192.168.1.50", "abc123")
>>> info.expires_in
86400
>>> sessions.get_session(info.token)
BridgeCredentials(bridge_ip='192.168.1.50', username='abc123')

Expired sessions are rejected on every read and additionally swept from
memory by a background task started with :meth:`SessionManager.start`.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from mashumaro import field_options
from mashumaro.config import BaseConfig

from .exceptions import ValidationError
from .json import DataClassJSONMixin

_LOGGER = logging.getLogger(__name__)

SESSION_TOKEN_PREFIX = "sess_"
SESSION_TOKEN_BYTES = 32
SESSION_TTL_SECONDS = 24 * 60 * 60
SWEEP_INTERVAL_SECONDS = 60 * 60


@dataclass(frozen=True)
class BridgeCredentials:
    """Bridge address and username resolved from a session."""

    bridge_ip: str
    username: str


@dataclass(frozen=True)
class Session:
    """A session issued by the session manager."""

    token: str = field(repr=False)
    bridge_ip: str
    username: str = field(repr=False)
    created_at: float
    ttl: int = SESSION_TTL_SECONDS

    @property
    def expires_at(self) -> float:
        """Return the time the session stops being valid."""
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        """Return True if the session is no longer valid at now."""
        return now >= self.expires_at


@dataclass
class SessionInfo(DataClassJSONMixin):
    """Token returned to the client when a session is created."""

    token: str = field(metadata=field_options(alias="sessionToken"))
    expires_in: int = field(metadata=field_options(alias="expiresIn"))
    bridge_ip: str = field(metadata=field_options(alias="bridgeIp"))

    class Config(BaseConfig):
        """Serialization config."""

        serialize_by_alias = True


class SessionStore(ABC):
    """Key value storage for sessions keyed by token."""

    @abstractmethod
    def get(self, token: str) -> Session | None:
        """Return the session for token or None."""

    @abstractmethod
    def put(self, session: Session) -> None:
        """Add or replace a session."""

    @abstractmethod
    def delete(self, token: str) -> None:
        """Remove a session if present."""

    @abstractmethod
    def values(self) -> Iterable[Session]:
        """Return a snapshot of all stored sessions."""

    @abstractmethod
    def clear(self) -> None:
        """Remove all sessions."""

    @abstractmethod
    def __len__(self) -> int:
        """Return the number of stored sessions."""


class InMemorySessionStore(SessionStore):
    """Session store backed by a dict.

    Only accessed from the event loop thread, so no locking is required.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def get(self, token: str) -> Session | None:
        """Return the session for token or None."""
        return self._sessions.get(token)

    def put(self, session: Session) -> None:
        """Add or replace a session."""
        self._sessions[session.token] = session

    def delete(self, token: str) -> None:
        """Remove a session if present."""
        self._sessions.pop(token, None)

    def values(self) -> list[Session]:
        """Return a snapshot of all stored sessions."""
        return list(self._sessions.values())

    def clear(self) -> None:
        """Remove all sessions."""
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)


class SessionManager:
    """Issue, validate and expire session tokens."""

    def __init__(
        self,
        store: SessionStore | None = None,
        *,
        ttl: int = SESSION_TTL_SECONDS,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._store = store if store is not None else InMemorySessionStore()
        self._ttl = ttl
        self._sweep_interval = sweep_interval
        self._clock = clock or time.time
        self._bridge_credentials: dict[str, str] = {}
        self._sweep_task: asyncio.Task | None = None

    @property
    def ttl(self) -> int:
        """Return the lifetime of new sessions in seconds."""
        return self._ttl

    @property
    def active_sessions(self) -> int:
        """Return the number of sessions held, including unswept expired ones."""
        return len(self._store)

    def create_session(self, bridge_ip: str, username: str) -> SessionInfo:
        """Create a session for the bridge and return its token.

        Every call returns a new token, existing sessions for the same bridge
        stay valid and can be revoked independently.
        """
        if not bridge_ip:
            raise ValidationError("bridgeIp", "bridge ip is required")
        if not username:
            raise ValidationError("username", "username is required")

        token = SESSION_TOKEN_PREFIX + secrets.token_hex(SESSION_TOKEN_BYTES)
        self._store.put(
            Session(token, bridge_ip, username, self._clock(), self._ttl)
        )
        _LOGGER.debug("Created session for bridge %s", bridge_ip)
        return SessionInfo(token, self._ttl, bridge_ip)

    def get_session(self, token: str) -> BridgeCredentials | None:
        """Return the credentials for token, or None if it is not valid.

        Unknown, expired and revoked tokens all return None.
        """
        if not token or (session := self._store.get(token)) is None:
            return None

        if session.is_expired(self._clock()):
            self._store.delete(token)
            _LOGGER.debug("Session for bridge %s expired", session.bridge_ip)
            return None

        return BridgeCredentials(session.bridge_ip, session.username)

    def revoke_session(self, token: str) -> None:
        """Revoke a session. Revoking an unknown token is not an error."""
        if token and (session := self._store.get(token)) is not None:
            self._store.delete(token)
            _LOGGER.debug("Revoked session for bridge %s", session.bridge_ip)

    def revoke_all(self) -> None:
        """Revoke every session and forget all cached bridge credentials."""
        self._store.clear()
        self._bridge_credentials.clear()
        _LOGGER.debug("Revoked all sessions")

    def has_bridge_credentials(self, bridge_ip: str) -> bool:
        """Return True if a username is cached for the bridge."""
        return bridge_ip in self._bridge_credentials

    def store_bridge_credentials(self, bridge_ip: str, username: str) -> None:
        """Cache the last known username for the bridge."""
        self._bridge_credentials[bridge_ip] = username
        _LOGGER.debug("Stored credentials for bridge %s", bridge_ip)

    def get_bridge_username(self, bridge_ip: str) -> str | None:
        """Return the cached username for the bridge."""
        return self._bridge_credentials.get(bridge_ip)

    def sweep(self) -> int:
        """Remove expired sessions and return how many were removed."""
        now = self._clock()
        expired = [s.token for s in self._store.values() if s.is_expired(now)]
        for token in expired:
            self._store.delete(token)
        if expired:
            _LOGGER.debug("Swept %s expired sessions", len(expired))
        return len(expired)

    async def start(self) -> None:
        """Start sweeping expired sessions in the background."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Stop the background sweep."""
        if (task := self._sweep_task) is None:
            return
        self._sweep_task = None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()
