"""Authentication against the Hive account."""

from .auth import AuthResult, AuthState, HiveAuth, TwoFactorChallenge
from .cognito import CognitoClient, CognitoTokens, SmsChallenge

__all__ = [
    "AuthResult",
    "AuthState",
    "HiveAuth",
    "TwoFactorChallenge",
    "CognitoClient",
    "CognitoTokens",
    "SmsChallenge",
]
