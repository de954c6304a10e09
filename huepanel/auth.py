"""Resolve bridge credentials from an incoming request.

Three channels are accepted, checked in order of precedence:

1. ``Authorization: Bearer <token>``, a session issued by
   :class:`~huepanel.session.SessionManager`
2. ``X-Bridge-IP`` and ``X-Hue-Username`` headers
3. ``bridgeIp`` and ``username`` query parameters

A bearer token that does not resolve to a session is rejected, it never
falls through to the lower channels.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from functools import update_wrapper
from typing import Any, Protocol

from aiohttp import web

from .exceptions import InvalidSessionError, MissingCredentialsError
from .session import SessionManager

_LOGGER = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "Authorization"
BRIDGE_IP_HEADER = "X-Bridge-IP"
USERNAME_HEADER = "X-Hue-Username"
BRIDGE_IP_PARAM = "bridgeIp"
USERNAME_PARAM = "username"

BEARER_SCHEME = "bearer"


class AuthMethod(Enum):
    """Channel the credentials of a request came from."""

    def __str__(self) -> str:
        return self.value

    Session = "session"
    Headers = "headers"
    Query = "query"


@dataclass(frozen=True)
class SessionAuth:
    """A bearer token was presented."""

    token: str


@dataclass(frozen=True)
class HeaderAuth:
    """Bridge ip and username were given as headers."""

    bridge_ip: str
    username: str


@dataclass(frozen=True)
class QueryAuth:
    """Bridge ip and username were given as query parameters."""

    bridge_ip: str
    username: str


@dataclass(frozen=True)
class NoAuth:
    """No channel supplied usable credentials."""

    missing: str


AuthChannel = SessionAuth | HeaderAuth | QueryAuth | NoAuth


@dataclass(frozen=True)
class HueCredentials:
    """Credentials used to talk to the bridge on behalf of a request."""

    bridge_ip: str
    username: str
    auth_method: AuthMethod
    session_token: str | None = None


class RequestLike(Protocol):
    """Minimal request interface needed for credential extraction."""

    @property
    def headers(self) -> Mapping[str, str]:
        """Request headers, looked up case-insensitively."""

    @property
    def query(self) -> Mapping[str, str]:
        """Query string parameters."""


def _bearer_token(headers: Mapping[str, str]) -> str | None:
    if not (value := headers.get(AUTHORIZATION_HEADER)):
        return None
    scheme, _, token = value.strip().partition(" ")
    if scheme.lower() != BEARER_SCHEME:
        return None
    return token.strip()


def classify_request(
    headers: Mapping[str, str], query: Mapping[str, str]
) -> AuthChannel:
    """Return the channel the request authenticates with.

    Pure function of the headers and query, no session lookup is performed.
    """
    if (token := _bearer_token(headers)) is not None:
        return SessionAuth(token)

    header_ip = headers.get(BRIDGE_IP_HEADER)
    header_username = headers.get(USERNAME_HEADER)
    if header_ip and header_username:
        return HeaderAuth(header_ip, header_username)

    query_ip = query.get(BRIDGE_IP_PARAM)
    query_username = query.get(USERNAME_PARAM)
    if query_ip and query_username:
        return QueryAuth(query_ip, query_username)

    if not header_ip and not query_ip:
        return NoAuth(BRIDGE_IP_PARAM)
    return NoAuth(USERNAME_PARAM)


class CredentialExtractor:
    """Validate requests against the session manager."""

    def __init__(self, sessions: SessionManager) -> None:
        self._sessions = sessions

    def validate_request(self, request: RequestLike) -> HueCredentials:
        """Return the bridge credentials for the request.

        Raises InvalidSessionError for a bearer token that is unknown,
        expired or revoked, and MissingCredentialsError when no channel
        supplied credentials.
        """
        match classify_request(request.headers, request.query):
            case SessionAuth(token):
                credentials = self._from_session(token)
            case HeaderAuth(bridge_ip, username):
                credentials = HueCredentials(bridge_ip, username, AuthMethod.Headers)
            case QueryAuth(bridge_ip, username):
                credentials = HueCredentials(bridge_ip, username, AuthMethod.Query)
            case NoAuth(missing):
                raise MissingCredentialsError(missing)

        self._remember_bridge(credentials)
        return credentials

    def require_session(self, request: RequestLike) -> HueCredentials:
        """Return the credentials of the request's session.

        Only the bearer channel is accepted.
        """
        token = _bearer_token(request.headers)
        if token is None:
            raise InvalidSessionError("Session token required")

        credentials = self._from_session(token)
        self._remember_bridge(credentials)
        return credentials

    def _from_session(self, token: str) -> HueCredentials:
        if (bridge := self._sessions.get_session(token)) is None:
            raise InvalidSessionError()
        return HueCredentials(
            bridge.bridge_ip, bridge.username, AuthMethod.Session, token
        )

    def _remember_bridge(self, credentials: HueCredentials) -> None:
        if not self._sessions.has_bridge_credentials(credentials.bridge_ip):
            self._sessions.store_bridge_credentials(
                credentials.bridge_ip, credentials.username
            )


EXTRACTOR_KEY = web.AppKey("credential_extractor", CredentialExtractor)

#: Request key the resolved :class:`HueCredentials` are stored under
HUE_CREDENTIALS_KEY = web.RequestKey("hue", HueCredentials)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _make_guard(
    resolve: Callable[[CredentialExtractor, web.Request], HueCredentials],
) -> Callable[[Handler], Handler]:
    def decorator(handler: Handler) -> Handler:
        async def wrapper(request: web.Request) -> Any:
            extractor = request.app[EXTRACTOR_KEY]
            request[HUE_CREDENTIALS_KEY] = resolve(extractor, request)
            return await handler(request)

        return update_wrapper(wrapper, handler)

    return decorator


#: Require credentials from any channel
hue_credentials = _make_guard(CredentialExtractor.validate_request)
#: Require a valid session token
session_required = _make_guard(CredentialExtractor.require_session)
