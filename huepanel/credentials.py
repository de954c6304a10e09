"""Credentials classes for accounts and registered devices."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Credentials:
    """Credentials for authentication."""

    #: Username (email address) of the Hive account
    username: str = field(default="")
    #: Password of the Hive account
    password: str = field(default="", repr=False)


@dataclass
class DeviceCredentials:
    """Device registration issued after a successful two factor login.

    Presenting it on later logins lets the provider skip the SMS step.
    """

    device_key: str = ""
    device_group_key: str = ""
    device_password: str = field(default="", repr=False)

    @property
    def is_complete(self) -> bool:
        """Return True if all parts of the registration are present."""
        return bool(self.device_key and self.device_group_key and self.device_password)


#: Account accepted when running in demo mode
DEMO_CREDENTIALS = Credentials("demo@hive.com", "demo")
#: Verification code accepted when running in demo mode
DEMO_2FA_CODE = "123456"
