"""Session, credential and Hive authentication core for a Hue control panel.

Clients pair with a bridge once and trade the bridge username for a short
lived session token::

>>> from huepanel import SessionManager
>>> sessions = SessionManager()
>>> info = sessions.create_session("192.168.1.50", "abc123")
>>> info.token.startswith("sess_")
True

The Hive account password is kept encrypted at rest by :class:`CredentialStore`
and the Hive login, including SMS verification, is driven by :class:`HiveAuth`.

Errors are raised as `HuePanelException` subclasses and are expected to be
handled by the user of the library.
"""

from huepanel.auth import AuthMethod, CredentialExtractor, HueCredentials
from huepanel.bridge import HueBridge, pair
from huepanel.config import PanelConfig
from huepanel.credentials import Credentials, DeviceCredentials
from huepanel.credentialstore import CredentialStore
from huepanel.encryption import (
    EncryptionKeyProvider,
    decrypt,
    encrypt,
    generate_key,
    get_encryption_key,
)
from huepanel.exceptions import (
    AuthenticationError,
    BridgeError,
    ConnectivityError,
    ErrorCode,
    HuePanelException,
    IntegrityError,
    InvalidKeyError,
    InvalidSessionError,
    LinkButtonNotPressedError,
    MissingCredentialsError,
    RateLimitError,
    TimeoutError,
    ValidationError,
)
from huepanel.hive import AuthResult, AuthState, HiveAuth
from huepanel.session import BridgeCredentials, SessionInfo, SessionManager
from huepanel.version import __version__

__all__ = [
    "__version__",
    "AuthMethod",
    "CredentialExtractor",
    "HueCredentials",
    "HueBridge",
    "pair",
    "PanelConfig",
    "Credentials",
    "DeviceCredentials",
    "CredentialStore",
    "EncryptionKeyProvider",
    "decrypt",
    "encrypt",
    "generate_key",
    "get_encryption_key",
    "AuthenticationError",
    "BridgeError",
    "ConnectivityError",
    "ErrorCode",
    "HuePanelException",
    "IntegrityError",
    "InvalidKeyError",
    "InvalidSessionError",
    "LinkButtonNotPressedError",
    "MissingCredentialsError",
    "RateLimitError",
    "TimeoutError",
    "ValidationError",
    "AuthResult",
    "AuthState",
    "HiveAuth",
    "BridgeCredentials",
    "SessionInfo",
    "SessionManager",
]
