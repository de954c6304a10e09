import threading

import pytest
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from huepanel.credentials import DeviceCredentials
from huepanel.exceptions import (
    AuthenticationError,
    ConnectivityError,
    HuePanelException,
    RateLimitError,
    TimeoutError,
)
from huepanel.hive.cognito import (
    CLIENT_ID,
    REGION,
    ChallengeExpiredError,
    CognitoClient,
    CognitoTokens,
    DeviceNotRecognizedError,
    InvalidCodeError,
    NewDeviceMetadata,
    SmsChallenge,
)

from .conftest import HIVE_PASSWORD, HIVE_USERNAME

DEVICE = DeviceCredentials("eu-west-1_device", "group-key", "device-secret")

AUTH_RESULT = {
    "AuthenticationResult": {
        "AccessToken": "access",
        "IdToken": "id",
        "RefreshToken": "refresh",
        "ExpiresIn": 3600,
        "TokenType": "Bearer",
    }
}

PASSWORD_VERIFIER = {
    "ChallengeName": "PASSWORD_VERIFIER",
    "ChallengeParameters": {
        "USER_ID_FOR_SRP": "user-id",
        "SALT": "salt",
        "SRP_B": "b",
        "SECRET_BLOCK": "block",
    },
}

SMS_MFA = {
    "ChallengeName": "SMS_MFA",
    "Session": "provider-session",
    "ChallengeParameters": {
        "USER_ID_FOR_SRP": "user-id",
        "CODE_DELIVERY_DESTINATION": "+********1234",
    },
}


def client_error(code, message="", operation="InitiateAuth"):
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


@pytest.fixture
def boto(mocker):
    boto_client = mocker.Mock()
    mocker.patch("huepanel.hive.cognito.boto3.client", return_value=boto_client)
    return boto_client


@pytest.fixture
def srp(mocker):
    srp_cls = mocker.patch("huepanel.hive.cognito.AWSSRP")
    srp = srp_cls.return_value
    srp.get_auth_params.return_value = {"USERNAME": HIVE_USERNAME, "SRP_A": "a"}
    srp.process_challenge.return_value = {
        "USERNAME": "user-id",
        "PASSWORD_CLAIM_SIGNATURE": "signature",
    }
    srp.process_device_challenge.return_value = {
        "USERNAME": "user-id",
        "PASSWORD_CLAIM_SIGNATURE": "device-signature",
        "DEVICE_KEY": DEVICE.device_key,
    }
    return srp


@pytest.fixture
def client(boto, srp):
    return CognitoClient(timeout=7)


def test_boto_client_config(mocker):
    boto_client = mocker.patch("huepanel.hive.cognito.boto3.client")
    client = CognitoClient(timeout=7)

    assert client.client is boto_client.return_value
    assert client.client is boto_client.return_value
    boto_client.assert_called_once()

    args, kwargs = boto_client.call_args
    assert args == ("cognito-idp",)
    assert kwargs["region_name"] == REGION
    config = kwargs["config"]
    assert config.connect_timeout == 7
    assert config.read_timeout == 7
    assert config.retries == {"max_attempts": 1}


async def test_authenticate_sms_challenge(client, boto, srp):
    boto.initiate_auth.return_value = PASSWORD_VERIFIER
    boto.respond_to_auth_challenge.return_value = SMS_MFA

    result = await client.authenticate(HIVE_USERNAME, HIVE_PASSWORD)

    assert result == SmsChallenge("provider-session", "user-id", "+********1234")
    boto.initiate_auth.assert_called_once_with(
        AuthFlow="USER_SRP_AUTH",
        AuthParameters={"USERNAME": HIVE_USERNAME, "SRP_A": "a"},
        ClientId=CLIENT_ID,
    )
    srp.process_challenge.assert_called_once_with(
        PASSWORD_VERIFIER["ChallengeParameters"],
        {"USERNAME": HIVE_USERNAME, "SRP_A": "a"},
    )
    boto.respond_to_auth_challenge.assert_called_once_with(
        ClientId=CLIENT_ID,
        ChallengeName="PASSWORD_VERIFIER",
        ChallengeResponses={
            "USERNAME": "user-id",
            "PASSWORD_CLAIM_SIGNATURE": "signature",
        },
    )


async def test_authenticate_tokens(client, boto, srp):
    boto.initiate_auth.return_value = PASSWORD_VERIFIER
    boto.respond_to_auth_challenge.return_value = AUTH_RESULT

    result = await client.authenticate(HIVE_USERNAME, HIVE_PASSWORD)

    assert result == CognitoTokens("access", "id", "refresh", 3600)
    assert "access" not in repr(result)


async def test_authenticate_with_device(client, boto, srp):
    boto.initiate_auth.return_value = PASSWORD_VERIFIER
    boto.respond_to_auth_challenge.side_effect = [
        {
            "ChallengeName": "DEVICE_SRP_AUTH",
            "Session": "s1",
            "ChallengeParameters": {"USERNAME": "user-id"},
        },
        {
            "ChallengeName": "DEVICE_PASSWORD_VERIFIER",
            "Session": "s2",
            "ChallengeParameters": {
                "USERNAME": "user-id",
                "SALT": "salt",
                "SRP_B": "b",
                "SECRET_BLOCK": "block",
            },
        },
        AUTH_RESULT,
    ]

    result = await client.authenticate(HIVE_USERNAME, HIVE_PASSWORD, DEVICE)

    assert isinstance(result, CognitoTokens)
    auth_params = boto.initiate_auth.call_args.kwargs["AuthParameters"]
    assert auth_params["DEVICE_KEY"] == DEVICE.device_key

    calls = boto.respond_to_auth_challenge.call_args_list
    assert [c.kwargs["ChallengeName"] for c in calls] == [
        "PASSWORD_VERIFIER",
        "DEVICE_SRP_AUTH",
        "DEVICE_PASSWORD_VERIFIER",
    ]
    assert calls[0].kwargs["ChallengeResponses"]["DEVICE_KEY"] == DEVICE.device_key
    assert calls[1].kwargs["ChallengeResponses"] == {
        "USERNAME": "user-id",
        "DEVICE_KEY": DEVICE.device_key,
        "SRP_A": "a",
    }
    assert calls[1].kwargs["Session"] == "s1"
    assert calls[2].kwargs["Session"] == "s2"
    srp.process_device_challenge.assert_called_once()


@pytest.mark.parametrize(
    "code", ["ResourceNotFoundException", "NotAuthorizedException"]
)
async def test_authenticate_device_rejected(client, boto, srp, code):
    boto.initiate_auth.return_value = PASSWORD_VERIFIER
    boto.respond_to_auth_challenge.side_effect = [
        {
            "ChallengeName": "DEVICE_SRP_AUTH",
            "ChallengeParameters": {"USERNAME": "user-id"},
        },
        client_error(code, "Device does not exist."),
    ]

    with pytest.raises(DeviceNotRecognizedError):
        await client.authenticate(HIVE_USERNAME, HIVE_PASSWORD, DEVICE)


async def test_authenticate_forgotten_device(client, boto, srp):
    """Test that a device unknown at the password step is reported as such."""
    boto.initiate_auth.return_value = PASSWORD_VERIFIER
    boto.respond_to_auth_challenge.side_effect = client_error(
        "ResourceNotFoundException", "Device does not exist."
    )

    with pytest.raises(DeviceNotRecognizedError):
        await client.authenticate(HIVE_USERNAME, HIVE_PASSWORD, DEVICE)


async def test_authenticate_device_wrong_password(client, boto, srp):
    boto.initiate_auth.return_value = PASSWORD_VERIFIER
    boto.respond_to_auth_challenge.side_effect = client_error(
        "NotAuthorizedException", "Incorrect username or password."
    )

    with pytest.raises(AuthenticationError) as exc_info:
        await client.authenticate(HIVE_USERNAME, HIVE_PASSWORD, DEVICE)

    assert not isinstance(exc_info.value, DeviceNotRecognizedError)


async def test_authenticate_without_device_resource_not_found(client, boto, srp):
    boto.initiate_auth.return_value = PASSWORD_VERIFIER
    boto.respond_to_auth_challenge.side_effect = client_error(
        "ResourceNotFoundException", "Device does not exist."
    )

    with pytest.raises(HuePanelException) as exc_info:
        await client.authenticate(HIVE_USERNAME, HIVE_PASSWORD)

    assert not isinstance(exc_info.value, AuthenticationError)


async def test_blocking_work_runs_in_executor(mocker, srp):
    """Test that boto3 and the SRP math stay off the event loop thread."""
    loop_thread = threading.get_ident()
    threads = {}

    def record(name, result):
        def side_effect(*args, **kwargs):
            threads[name] = threading.get_ident()
            return result

        return side_effect

    boto_client = mocker.Mock()
    boto_client.initiate_auth.return_value = PASSWORD_VERIFIER
    boto_client.respond_to_auth_challenge.return_value = SMS_MFA
    mocker.patch(
        "huepanel.hive.cognito.boto3.client",
        side_effect=record("boto3.client", boto_client),
    )
    srp_cls = mocker.patch("huepanel.hive.cognito.AWSSRP")
    srp_cls.side_effect = record("AWSSRP", srp)
    srp.get_auth_params.side_effect = record(
        "get_auth_params", {"USERNAME": HIVE_USERNAME, "SRP_A": "a"}
    )
    srp.process_challenge.side_effect = record(
        "process_challenge", {"USERNAME": "user-id"}
    )

    client = CognitoClient()
    result = await client.authenticate(HIVE_USERNAME, HIVE_PASSWORD)

    assert isinstance(result, SmsChallenge)
    assert set(threads) == {
        "boto3.client",
        "AWSSRP",
        "get_auth_params",
        "process_challenge",
    }
    assert loop_thread not in threads.values()


async def test_device_challenge_without_device(client, boto, srp):
    boto.initiate_auth.return_value = PASSWORD_VERIFIER
    boto.respond_to_auth_challenge.return_value = {
        "ChallengeName": "DEVICE_SRP_AUTH",
        "ChallengeParameters": {},
    }

    with pytest.raises(DeviceNotRecognizedError):
        await client.authenticate(HIVE_USERNAME, HIVE_PASSWORD)


async def test_unsupported_challenge(client, boto, srp):
    boto.initiate_auth.return_value = {
        "ChallengeName": "NEW_PASSWORD_REQUIRED",
        "ChallengeParameters": {},
    }

    with pytest.raises(HuePanelException, match="NEW_PASSWORD_REQUIRED"):
        await client.authenticate(HIVE_USERNAME, HIVE_PASSWORD)


@pytest.mark.parametrize(
    ("error", "error_raises"),
    [
        pytest.param(
            client_error("NotAuthorizedException", "Incorrect username or password."),
            AuthenticationError,
            id="NotAuthorized",
        ),
        pytest.param(
            client_error("UserNotFoundException", "User does not exist."),
            AuthenticationError,
            id="UserNotFound",
        ),
        pytest.param(
            client_error("TooManyRequestsException"),
            RateLimitError,
            id="TooManyRequests",
        ),
        pytest.param(
            client_error("LimitExceededException"),
            RateLimitError,
            id="LimitExceeded",
        ),
        pytest.param(
            client_error("InternalErrorException"),
            HuePanelException,
            id="InternalError",
        ),
        pytest.param(
            EndpointConnectionError(endpoint_url="https://cognito-idp"),
            ConnectivityError,
            id="EndpointConnectionError",
        ),
        pytest.param(
            ConnectTimeoutError(endpoint_url="https://cognito-idp"),
            TimeoutError,
            id="ConnectTimeout",
        ),
        pytest.param(
            ReadTimeoutError(endpoint_url="https://cognito-idp"),
            TimeoutError,
            id="ReadTimeout",
        ),
    ],
)
async def test_authenticate_errors(client, boto, srp, error, error_raises):
    boto.initiate_auth.side_effect = error

    with pytest.raises(error_raises) as exc_info:
        await client.authenticate(HIVE_USERNAME, HIVE_PASSWORD)

    assert exc_info.value.__cause__ is error
    assert not isinstance(exc_info.value, DeviceNotRecognizedError)


async def test_respond_to_sms(client, boto):
    boto.respond_to_auth_challenge.return_value = {
        "AuthenticationResult": {
            **AUTH_RESULT["AuthenticationResult"],
            "NewDeviceMetadata": {
                "DeviceKey": DEVICE.device_key,
                "DeviceGroupKey": DEVICE.device_group_key,
            },
        }
    }

    tokens = await client.respond_to_sms("user-id", "provider-session", "123456")

    assert tokens.access_token == "access"
    assert tokens.new_device == NewDeviceMetadata(
        DEVICE.device_key, DEVICE.device_group_key
    )
    boto.respond_to_auth_challenge.assert_called_once_with(
        ClientId=CLIENT_ID,
        ChallengeName="SMS_MFA",
        ChallengeResponses={"USERNAME": "user-id", "SMS_MFA_CODE": "123456"},
        Session="provider-session",
    )


@pytest.mark.parametrize(
    ("error", "error_raises"),
    [
        pytest.param(
            client_error("CodeMismatchException", "Invalid code or auth state"),
            InvalidCodeError,
            id="CodeMismatch",
        ),
        pytest.param(
            client_error("ExpiredCodeException", "Invalid code provided"),
            InvalidCodeError,
            id="ExpiredCode",
        ),
        pytest.param(
            client_error(
                "NotAuthorizedException",
                "Invalid session for the user, session is expired.",
            ),
            ChallengeExpiredError,
            id="SessionExpired",
        ),
        pytest.param(
            client_error("TooManyFailedAttemptsException"),
            RateLimitError,
            id="TooManyFailedAttempts",
        ),
    ],
)
async def test_respond_to_sms_errors(client, boto, error, error_raises):
    boto.respond_to_auth_challenge.side_effect = error

    with pytest.raises(error_raises):
        await client.respond_to_sms("user-id", "provider-session", "123456")


async def test_register_device(client, boto, srp):
    srp.generate_hash_device.return_value = (
        "device-secret",
        {"PasswordVerifier": "verifier", "Salt": "salt"},
    )
    tokens = CognitoTokens(
        "access",
        "id",
        "refresh",
        new_device=NewDeviceMetadata(DEVICE.device_key, DEVICE.device_group_key),
    )

    device = await client.register_device(tokens, HIVE_USERNAME)

    assert device == DEVICE
    srp.generate_hash_device.assert_called_once_with(
        DEVICE.device_group_key, DEVICE.device_key
    )
    boto.confirm_device.assert_called_once_with(
        AccessToken="access",
        DeviceKey=DEVICE.device_key,
        DeviceSecretVerifierConfig={"PasswordVerifier": "verifier", "Salt": "salt"},
        DeviceName="huepanel",
    )
    boto.update_device_status.assert_called_once_with(
        AccessToken="access",
        DeviceKey=DEVICE.device_key,
        DeviceRememberedStatus="remembered",
    )


async def test_register_device_not_offered(client, boto):
    assert await client.register_device(CognitoTokens("a", "i"), HIVE_USERNAME) is None
    boto.confirm_device.assert_not_called()


@pytest.mark.parametrize(
    ("device_key", "expected_params"),
    [
        pytest.param(None, {"REFRESH_TOKEN": "refresh"}, id="no-device"),
        pytest.param(
            "dev",
            {"REFRESH_TOKEN": "refresh", "DEVICE_KEY": "dev"},
            id="device",
        ),
    ],
)
async def test_refresh(client, boto, device_key, expected_params):
    boto.initiate_auth.return_value = {
        "AuthenticationResult": {"AccessToken": "new", "IdToken": "new-id"}
    }

    tokens = await client.refresh("refresh", device_key)

    assert tokens == CognitoTokens("new", "new-id")
    boto.initiate_auth.assert_called_once_with(
        AuthFlow="REFRESH_TOKEN_AUTH",
        AuthParameters=expected_params,
        ClientId=CLIENT_ID,
    )


async def test_refresh_rejected(client, boto):
    boto.initiate_auth.side_effect = client_error(
        "NotAuthorizedException", "Refresh Token has expired"
    )
    with pytest.raises(AuthenticationError):
        await client.refresh("refresh")


async def test_close(client, boto):
    assert client.client is boto
    await client.close()
    boto.close.assert_called_once()

    await client.close()
    boto.close.assert_called_once()
