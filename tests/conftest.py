from __future__ import annotations

import os

import pytest
from asyncclick.testing import CliRunner

from huepanel.credentialstore import CredentialStore
from huepanel.encryption import (
    ENCRYPTION_KEY_ENV,
    EncryptionKeyProvider,
    EnvironmentKeySource,
    generate_key,
)
from huepanel.hive.auth import HiveAuth
from huepanel.hive.cognito import CognitoClient
from huepanel.session import SessionManager

BRIDGE_IP = "192.168.1.50"
BRIDGE_USERNAME = "abc123"
HIVE_USERNAME = "user@example.com"
HIVE_PASSWORD = "s3cret!"


@pytest.fixture(autouse=True)
def clean_key_env(monkeypatch):
    """Make sure no key from the environment leaks into tests."""
    monkeypatch.delenv(ENCRYPTION_KEY_ENV, raising=False)


@pytest.fixture
def key():
    return generate_key()


@pytest.fixture
def key_provider(monkeypatch, key):
    """Return a key provider reading a fixed key from the environment."""
    monkeypatch.setenv(ENCRYPTION_KEY_ENV, key)
    return EncryptionKeyProvider([EnvironmentKeySource()])


@pytest.fixture
def credentials_path(tmp_path):
    return tmp_path / "data" / "hive-credentials.json"


@pytest.fixture
def store(credentials_path, key_provider):
    return CredentialStore(credentials_path, key_provider)


@pytest.fixture
def sessions():
    return SessionManager()


@pytest.fixture
def cognito(mocker):
    """Return a mocked identity provider client."""
    return mocker.create_autospec(CognitoClient, instance=True)


@pytest.fixture
def hive_auth(store, cognito):
    return HiveAuth(store, cognito=cognito)


@pytest.fixture
def runner():
    """Runner fixture that unsets the HUEPANEL_ environment variables for tests."""
    HUEPANEL_VARS = {k: None for k in os.environ if k.startswith("HUEPANEL_")}
    runner = CliRunner(env=HUEPANEL_VARS)

    return runner
