"""Login state machine for the Hive account.

::

    Unauthenticated --initiate_auth--> AwaitingTwoFactor --verify_2fa--> Authenticated
          \\______________ remembered device, no SMS needed ______________/

Expected failures (wrong password, wrong code, expired challenge, rejected
device) are returned as :class:`AuthResult` values with ``error`` set.
Connectivity problems and rate limiting raise.
"""

from __future__ import annotations

import logging
import re
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto

from mashumaro import field_options
from mashumaro.config import BaseConfig

from ..credentials import DEMO_2FA_CODE, DEMO_CREDENTIALS, DeviceCredentials
from ..credentialstore import CredentialStore
from ..exceptions import AuthenticationError, HuePanelException
from ..json import DataClassJSONMixin
from ..ratelimit import AttemptLimiter
from .cognito import (
    ChallengeExpiredError,
    CognitoClient,
    CognitoTokens,
    DeviceNotRecognizedError,
    InvalidCodeError,
    SmsChallenge,
)

_LOGGER = logging.getLogger(__name__)

CHALLENGE_ID_PREFIX = "chal_"
CHALLENGE_TTL_SECONDS = 180
DEFAULT_TOKEN_EXPIRES_IN = 3600

DEMO_SESSION = "demo-2fa-session"
DEMO_ACCESS_TOKEN = "demo-access-token"
DEMO_REFRESH_TOKEN = "demo-refresh-token"
DEMO_ID_TOKEN = "demo-id-token"

INVALID_CREDENTIALS = "Invalid username or password"
INVALID_DEMO_CREDENTIALS = "Invalid demo credentials"
INVALID_CODE = "Invalid verification code"
SESSION_EXPIRED = "Session expired. Please login again."
DEVICE_NOT_RECOGNIZED = "Device not recognized"
REFRESH_INVALID = "Refresh token expired or invalid"

_CODE_RE = re.compile(r"[0-9]{6}")


class AuthState(Enum):
    """Login state of the Hive account."""

    Unauthenticated = auto()
    AwaitingTwoFactor = auto()
    Authenticated = auto()


def _alias(name: str) -> dict:
    return field_options(alias=name)


@dataclass
class AuthResult(DataClassJSONMixin):
    """Outcome of a login step."""

    success: bool | None = None
    requires_2fa: bool | None = field(default=None, metadata=_alias("requires2fa"))
    session: str | None = None
    access_token: str | None = field(
        default=None, repr=False, metadata=_alias("accessToken")
    )
    refresh_token: str | None = field(
        default=None, repr=False, metadata=_alias("refreshToken")
    )
    id_token: str | None = field(default=None, repr=False, metadata=_alias("idToken"))
    expires_in: int | None = field(default=None, metadata=_alias("expiresIn"))
    device_key: str | None = field(default=None, metadata=_alias("deviceKey"))
    device_group_key: str | None = field(
        default=None, metadata=_alias("deviceGroupKey")
    )
    device_password: str | None = field(
        default=None, repr=False, metadata=_alias("devicePassword")
    )
    error: str | None = None

    class Config(BaseConfig):
        """Serialization config."""

        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True)
class TwoFactorChallenge:
    """An SMS challenge waiting for the user's code."""

    provider_session: str = field(repr=False)
    username: str
    created_at: float

    def is_expired(self, now: float) -> bool:
        """Return True if the challenge can no longer be answered."""
        return now - self.created_at >= CHALLENGE_TTL_SECONDS


class HiveAuth:
    """Drive the Hive login and keep its results in the credential store."""

    def __init__(
        self,
        store: CredentialStore,
        *,
        cognito: CognitoClient | None = None,
        demo_mode: bool = False,
        limiter: AttemptLimiter | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._store = store
        self._cognito = cognito or CognitoClient()
        self._demo_mode = demo_mode
        self._limiter = limiter or AttemptLimiter()
        self._clock = clock or time.time
        self._challenges: dict[str, TwoFactorChallenge] = {}
        self._state = AuthState.Unauthenticated

    @property
    def state(self) -> AuthState:
        """Return the current login state."""
        return self._state

    @property
    def pending_challenges(self) -> int:
        """Return the number of challenges waiting for a code."""
        return len(self._challenges)

    def _is_demo(self, demo_mode: bool | None) -> bool:
        return self._demo_mode if demo_mode is None else demo_mode

    async def initiate_auth(
        self, username: str, password: str, demo_mode: bool | None = None
    ) -> AuthResult:
        """Start a login with the account credentials.

        A remembered device is tried first so the SMS step can be skipped.
        """
        if self._is_demo(demo_mode):
            return self._demo_auth(username, password)

        self._limiter.check(username)
        self._expire_challenges()

        try:
            outcome: SmsChallenge | CognitoTokens | None = None
            device = self._store.get_device_credentials()
            if device is not None and device.is_complete:
                _LOGGER.debug("Attempting Hive login with remembered device")
                outcome = await self._authenticate_device(username, password, device)
            if outcome is None:
                _LOGGER.info("Initiating Hive login for %s", username)
                outcome = await self._cognito.authenticate(username, password)
        except AuthenticationError as ex:
            _LOGGER.debug("Hive login for %s failed: %s", username, ex)
            self._limiter.record_failure(username)
            return AuthResult(error=INVALID_CREDENTIALS)

        return self._handle_outcome(outcome, username)

    async def _authenticate_device(
        self, username: str, password: str, device: DeviceCredentials
    ) -> SmsChallenge | CognitoTokens | None:
        try:
            return await self._cognito.authenticate(username, password, device)
        except DeviceNotRecognizedError as ex:
            _LOGGER.info("Hive no longer recognizes the device, forgetting it: %s", ex)
            self._store.clear_device_credentials()
            return None

    async def device_login(
        self, username: str, password: str, device: DeviceCredentials | None
    ) -> AuthResult:
        """Log in presenting a remembered device to skip the SMS step."""
        if device is None or not device.is_complete:
            return AuthResult(error=DEVICE_NOT_RECOGNIZED, requires_2fa=True)

        try:
            outcome = await self._authenticate_device(username, password, device)
        except AuthenticationError as ex:
            _LOGGER.debug("Hive device login for %s failed: %s", username, ex)
            return AuthResult(error=INVALID_CREDENTIALS, requires_2fa=True)

        if outcome is None:
            return AuthResult(error=DEVICE_NOT_RECOGNIZED, requires_2fa=True)
        return self._handle_outcome(outcome, username)

    def _handle_outcome(
        self, outcome: SmsChallenge | CognitoTokens, username: str
    ) -> AuthResult:
        if isinstance(outcome, SmsChallenge):
            challenge_id = CHALLENGE_ID_PREFIX + secrets.token_hex(32)
            self._challenges[challenge_id] = TwoFactorChallenge(
                outcome.session, outcome.username, self._clock()
            )
            self._state = AuthState.AwaitingTwoFactor
            _LOGGER.info("Hive sent a verification code for %s", username)
            return AuthResult(requires_2fa=True, session=challenge_id)

        result = AuthResult(
            success=True,
            access_token=outcome.access_token,
            refresh_token=outcome.refresh_token,
            id_token=outcome.id_token,
            expires_in=outcome.expires_in,
        )
        self.store_tokens(result)
        self._limiter.reset(username)
        self._state = AuthState.Authenticated
        _LOGGER.info("Hive login completed for %s", username)
        return result

    async def verify_2fa(
        self,
        code: str,
        session: str | None,
        username: str | None = None,
        demo_mode: bool | None = None,
    ) -> AuthResult:
        """Answer a pending SMS challenge with the code the user received."""
        if self._is_demo(demo_mode):
            return self._demo_2fa(code)

        self._expire_challenges()
        if not session or (challenge := self._challenges.get(session)) is None:
            return AuthResult(error=SESSION_EXPIRED)

        if not isinstance(code, str) or not _CODE_RE.fullmatch(code):
            return AuthResult(error=INVALID_CODE)

        try:
            tokens = await self._cognito.respond_to_sms(
                challenge.username, challenge.provider_session, code
            )
        except InvalidCodeError:
            _LOGGER.debug("Hive rejected the verification code for %s", username)
            return AuthResult(error=INVALID_CODE)
        except (ChallengeExpiredError, AuthenticationError) as ex:
            _LOGGER.debug("Hive challenge no longer valid: %s", ex)
            self._drop_challenge(session)
            return AuthResult(error=SESSION_EXPIRED)

        self._drop_challenge(session)
        result = AuthResult(
            success=True,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            id_token=tokens.id_token,
            expires_in=tokens.expires_in,
        )

        device = await self._register_device(tokens, challenge.username)
        if device is not None:
            self._store.set_device_credentials(device)
            result.device_key = device.device_key
            result.device_group_key = device.device_group_key
            result.device_password = device.device_password

        self.store_tokens(result)
        self._limiter.reset(challenge.username)
        self._state = AuthState.Authenticated
        _LOGGER.info("Hive two factor login completed for %s", challenge.username)
        return result

    async def _register_device(
        self, tokens: CognitoTokens, username: str
    ) -> DeviceCredentials | None:
        try:
            return await self._cognito.register_device(tokens, username)
        except HuePanelException as ex:
            _LOGGER.warning("Unable to register device with Hive: %s", ex)
            return None

    async def refresh_tokens(
        self, refresh_token: str | None, device_key: str | None = None
    ) -> AuthResult:
        """Exchange a refresh token for a new access token."""
        if not refresh_token:
            return AuthResult(error=REFRESH_INVALID)

        _LOGGER.debug("Refreshing Hive tokens, with device: %s", bool(device_key))
        try:
            tokens = await self._cognito.refresh(refresh_token, device_key)
        except AuthenticationError as ex:
            _LOGGER.debug("Hive refused the refresh token: %s", ex)
            return AuthResult(error=REFRESH_INVALID)

        result = AuthResult(
            success=True,
            access_token=tokens.access_token,
            id_token=tokens.id_token,
            expires_in=tokens.expires_in,
        )
        self.store_tokens(result)
        return result

    def store_tokens(self, result: AuthResult) -> None:
        """Cache the access token of result in the credential store."""
        if not result.access_token:
            return

        expires_in = result.expires_in or DEFAULT_TOKEN_EXPIRES_IN
        expires_at = int((self._clock() + expires_in) * 1000)
        self._store.set_session_token(result.access_token, expires_at)

    def clear_auth(self) -> None:
        """Forget tokens, the remembered device and pending challenges."""
        self._store.clear_session_token()
        self._store.clear_device_credentials()
        self._challenges.clear()
        self._state = AuthState.Unauthenticated
        _LOGGER.info("Cleared Hive authentication data")

    async def close(self) -> None:
        """Release the provider client."""
        await self._cognito.close()

    def _drop_challenge(self, challenge_id: str) -> None:
        self._challenges.pop(challenge_id, None)
        if not self._challenges and self._state is AuthState.AwaitingTwoFactor:
            self._state = AuthState.Unauthenticated

    def _expire_challenges(self) -> None:
        now = self._clock()
        for challenge_id in [
            cid for cid, chal in self._challenges.items() if chal.is_expired(now)
        ]:
            _LOGGER.debug("Hive challenge expired")
            self._drop_challenge(challenge_id)

    def _demo_auth(self, username: str, password: str) -> AuthResult:
        if (
            username == DEMO_CREDENTIALS.username
            and password == DEMO_CREDENTIALS.password
        ):
            self._state = AuthState.AwaitingTwoFactor
            return AuthResult(requires_2fa=True, session=DEMO_SESSION)
        return AuthResult(error=INVALID_DEMO_CREDENTIALS)

    def _demo_2fa(self, code: str) -> AuthResult:
        if code == DEMO_2FA_CODE:
            self._state = AuthState.Authenticated
            return AuthResult(
                success=True,
                access_token=DEMO_ACCESS_TOKEN,
                refresh_token=DEMO_REFRESH_TOKEN,
                id_token=DEMO_ID_TOKEN,
            )
        return AuthResult(error=INVALID_CODE)
