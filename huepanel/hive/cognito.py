"""Client for the Hive identity provider (AWS Cognito).

Login uses Secure Remote Password so the account password never leaves the
process. Depending on the account and the presented device the provider
answers with tokens directly, asks for an SMS code, or runs the extra device
verification steps::

    USER_SRP_AUTH -> PASSWORD_VERIFIER -> SMS_MFA -> tokens
                                       -> DEVICE_SRP_AUTH
                                          -> DEVICE_PASSWORD_VERIFIER -> tokens

boto3 and the SRP math are blocking, both run in the default executor.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial
from typing import Any, TypeVar

import boto3
from botocore import UNSIGNED
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    HTTPClientError,
    ReadTimeoutError,
)
from pycognito.aws_srp import AWSSRP

from ..credentials import DeviceCredentials
from ..exceptions import (
    AuthenticationError,
    ConnectivityError,
    HuePanelException,
    RateLimitError,
    TimeoutError,
)

_LOGGER = logging.getLogger(__name__)

POOL_ID = "eu-west-1_SamNfoWtf"
CLIENT_ID = "3rl4i0ajrmtdm8sbre54p9dvd9"
REGION = "eu-west-1"

DEFAULT_TIMEOUT = 10
DEVICE_NAME = "huepanel"

_NOT_AUTHORIZED = "NotAuthorizedException"
_USER_NOT_FOUND = "UserNotFoundException"
_CODE_MISMATCH = "CodeMismatchException"
_EXPIRED_CODE = "ExpiredCodeException"
_RESOURCE_NOT_FOUND = "ResourceNotFoundException"
_RATE_LIMITED = {
    "TooManyRequestsException",
    "LimitExceededException",
    "TooManyFailedAttemptsException",
}

_T = TypeVar("_T")


class InvalidCodeError(AuthenticationError):
    """The SMS code did not match or has expired."""


class ChallengeExpiredError(AuthenticationError):
    """The provider no longer accepts answers for this challenge."""


class DeviceNotRecognizedError(AuthenticationError):
    """The provider rejected the remembered device."""


@dataclass(frozen=True)
class NewDeviceMetadata:
    """Device the provider offers to remember after a login."""

    device_key: str
    device_group_key: str


@dataclass(frozen=True)
class CognitoTokens:
    """Tokens issued by the provider."""

    access_token: str = field(repr=False)
    id_token: str = field(repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    expires_in: int = 3600
    new_device: NewDeviceMetadata | None = None

    @classmethod
    def from_response(cls, response: dict[str, Any]) -> CognitoTokens:
        """Build tokens from an AuthenticationResult payload."""
        result = response["AuthenticationResult"]
        new_device = None
        if metadata := result.get("NewDeviceMetadata"):
            new_device = NewDeviceMetadata(
                metadata["DeviceKey"], metadata["DeviceGroupKey"]
            )
        return cls(
            access_token=result["AccessToken"],
            id_token=result.get("IdToken", ""),
            refresh_token=result.get("RefreshToken"),
            expires_in=result.get("ExpiresIn", 3600),
            new_device=new_device,
        )


@dataclass(frozen=True)
class SmsChallenge:
    """The provider sent an SMS code that has to be answered."""

    session: str = field(repr=False)
    username: str
    destination: str | None = None


def _error_code(ex: ClientError) -> tuple[str, str]:
    error = ex.response.get("Error", {})
    return error.get("Code", ""), error.get("Message", "")


def _translate_client_error(ex: ClientError, *, stage: str) -> HuePanelException:
    code, message = _error_code(ex)
    if code in _RATE_LIMITED:
        return RateLimitError(60, f"Hive rejected the request: {message}")
    if stage == "device" and code in (_NOT_AUTHORIZED, _RESOURCE_NOT_FOUND):
        return DeviceNotRecognizedError(f"Device not recognized: {message}")
    # Password steps that carry a DEVICE_KEY fail this way for a forgotten device
    if stage == "auth_device" and code == _RESOURCE_NOT_FOUND:
        return DeviceNotRecognizedError(f"Device not recognized: {message}")
    if stage == "challenge":
        if code in (_CODE_MISMATCH, _EXPIRED_CODE):
            return InvalidCodeError(message or "Invalid verification code")
        if code == _NOT_AUTHORIZED and "session" in message.lower():
            return ChallengeExpiredError(message)
    if code in (_NOT_AUTHORIZED, _USER_NOT_FOUND):
        return AuthenticationError(message or "Invalid username or password")
    return HuePanelException(f"Hive request failed: {code}: {message}", ex)


class CognitoClient:
    """Async wrapper around the cognito-idp api for the Hive user pool."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        pool_id: str = POOL_ID,
        client_id: str = CLIENT_ID,
        region: str = REGION,
    ) -> None:
        self._timeout = timeout
        self._pool_id = pool_id
        self._client_id = client_id
        self._region = region
        self._boto_client: Any = None

    @property
    def client(self) -> Any:
        """Return the boto3 cognito-idp client, creating it on first use."""
        if self._boto_client is None:
            self._boto_client = boto3.client(
                "cognito-idp",
                region_name=self._region,
                config=Config(
                    signature_version=UNSIGNED,
                    connect_timeout=self._timeout,
                    read_timeout=self._timeout,
                    retries={"max_attempts": 1},
                ),
            )
        return self._boto_client

    async def _run(self, func: Callable[..., _T], *args: Any, stage: str) -> _T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(func, *args))
        except ClientError as ex:
            raise _translate_client_error(ex, stage=stage) from ex
        except (ConnectTimeoutError, ReadTimeoutError) as ex:
            raise TimeoutError(f"Timed out talking to Hive: {ex}", ex) from ex
        except (EndpointConnectionError, HTTPClientError) as ex:
            raise ConnectivityError(f"Unable to reach Hive: {ex}", ex) from ex
        except BotoCoreError as ex:
            raise HuePanelException(f"Hive request failed: {ex}", ex) from ex

    def _srp(
        self, username: str, password: str, device: DeviceCredentials | None = None
    ) -> AWSSRP:
        return AWSSRP(
            username=username,
            password=password,
            pool_id=self._pool_id,
            client_id=self._client_id,
            client=self.client,
            device_key=device.device_key if device else None,
            device_group_key=device.device_group_key if device else None,
            device_password=device.device_password if device else None,
        )

    def _respond(
        self, challenge: str, responses: dict[str, str], session: str | None
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "ClientId": self._client_id,
            "ChallengeName": challenge,
            "ChallengeResponses": responses,
        }
        if session:
            kwargs["Session"] = session
        return self.client.respond_to_auth_challenge(**kwargs)

    def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        return getattr(self.client, operation)(**kwargs)

    async def authenticate(
        self,
        username: str,
        password: str,
        device: DeviceCredentials | None = None,
    ) -> SmsChallenge | CognitoTokens:
        """Log in with SRP, presenting the remembered device if given."""
        auth_stage = "auth_device" if device else "auth"
        srp = await self._run(self._srp, username, password, device, stage="auth")
        auth_params = await self._run(srp.get_auth_params, stage="auth")
        if device:
            auth_params["DEVICE_KEY"] = device.device_key

        _LOGGER.debug("Starting Hive SRP login for %s", username)
        response = await self._run(
            partial(
                self._call,
                "initiate_auth",
                AuthFlow="USER_SRP_AUTH",
                AuthParameters=auth_params,
                ClientId=self._client_id,
            ),
            stage=auth_stage,
        )

        while (challenge := response.get("ChallengeName")) is not None:
            params = response.get("ChallengeParameters", {})
            session = response.get("Session")
            stage = auth_stage

            if challenge == "SMS_MFA":
                _LOGGER.debug("Hive requested an SMS code for %s", username)
                return SmsChallenge(
                    session,
                    params.get("USER_ID_FOR_SRP", username),
                    params.get("CODE_DELIVERY_DESTINATION"),
                )
            if challenge == "PASSWORD_VERIFIER":
                responses = await self._run(
                    srp.process_challenge, params, auth_params, stage="auth"
                )
                if device:
                    responses.setdefault("DEVICE_KEY", device.device_key)
            elif challenge in ("DEVICE_SRP_AUTH", "DEVICE_PASSWORD_VERIFIER"):
                if device is None:
                    raise DeviceNotRecognizedError(
                        "Hive requested device verification without a device"
                    )
                stage = "device"
                if challenge == "DEVICE_SRP_AUTH":
                    responses = {
                        "USERNAME": params.get("USERNAME", username),
                        "DEVICE_KEY": device.device_key,
                        "SRP_A": auth_params["SRP_A"],
                    }
                else:
                    responses = await self._run(
                        srp.process_device_challenge, params, stage="device"
                    )
            else:
                raise HuePanelException(f"Unsupported Hive challenge: {challenge}")

            response = await self._run(
                self._respond, challenge, responses, session, stage=stage
            )

        _LOGGER.debug("Hive login completed for %s", username)
        return CognitoTokens.from_response(response)

    async def respond_to_sms(
        self, username: str, session: str, code: str
    ) -> CognitoTokens:
        """Answer an SMS challenge with the code the user received."""
        response = await self._run(
            self._respond,
            "SMS_MFA",
            {"USERNAME": username, "SMS_MFA_CODE": code},
            session,
            stage="challenge",
        )
        if "AuthenticationResult" not in response:
            raise HuePanelException(
                f"Unexpected Hive challenge: {response.get('ChallengeName')}"
            )
        return CognitoTokens.from_response(response)

    async def register_device(
        self, tokens: CognitoTokens, username: str
    ) -> DeviceCredentials | None:
        """Remember the device offered with tokens.

        Returns None if the provider did not offer a device.
        """
        if (metadata := tokens.new_device) is None:
            return None

        srp = await self._run(self._srp, username, "", stage="device")
        device_password, verifier = await self._run(
            srp.generate_hash_device,
            metadata.device_group_key,
            metadata.device_key,
            stage="device",
        )

        await self._run(
            partial(
                self._call,
                "confirm_device",
                AccessToken=tokens.access_token,
                DeviceKey=metadata.device_key,
                DeviceSecretVerifierConfig=verifier,
                DeviceName=DEVICE_NAME,
            ),
            stage="device",
        )
        await self._run(
            partial(
                self._call,
                "update_device_status",
                AccessToken=tokens.access_token,
                DeviceKey=metadata.device_key,
                DeviceRememberedStatus="remembered",
            ),
            stage="device",
        )
        _LOGGER.info("Registered Hive device %s", metadata.device_key)
        return DeviceCredentials(
            metadata.device_key, metadata.device_group_key, device_password
        )

    async def refresh(
        self, refresh_token: str, device_key: str | None = None
    ) -> CognitoTokens:
        """Exchange a refresh token for new access and id tokens."""
        auth_params = {"REFRESH_TOKEN": refresh_token}
        if device_key:
            auth_params["DEVICE_KEY"] = device_key
        response = await self._run(
            partial(
                self._call,
                "initiate_auth",
                AuthFlow="REFRESH_TOKEN_AUTH",
                AuthParameters=auth_params,
                ClientId=self._client_id,
            ),
            stage="refresh",
        )
        return CognitoTokens.from_response(response)

    async def close(self) -> None:
        """Close the boto3 client."""
        client = self._boto_client
        self._boto_client = None
        if client is not None:
            client.close()
