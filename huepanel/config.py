"""Configuration of the panel backend.

All settings have defaults, so an empty config runs the server on port 3001
with its state kept in ``./data``:

>>> config = PanelConfig()
>>> config.credentials_file
PosixPath('data/hive-credentials.json')

>>> config_dict = PanelConfig(port=8080, demo_mode=True).to_dict()
>>> PanelConfig.from_dict(config_dict).port
8080
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from mashumaro.config import BaseConfig

from .exceptions import ValidationError
from .json import DataClassJSONMixin

KEY_FILENAME = "encryption-key"
CREDENTIALS_FILENAME = "hive-credentials.json"


class _PanelConfigBaseMixin(DataClassJSONMixin):
    """Base class for serialization mixin."""

    class Config(BaseConfig):
        """Serialization config."""

        omit_none = True


@dataclass
class PanelConfig(_PanelConfigBaseMixin):
    """Class to represent the settings of the panel backend."""

    DEFAULT_PORT = 3001

    #: Directory holding the key file and the credentials file
    data_dir: str = "data"
    #: Address the http server listens on
    host: str = "0.0.0.0"  # noqa: S104
    #: Port the http server listens on
    port: int = DEFAULT_PORT
    #: Timeout for requests to the bridge
    bridge_timeout: float = 5
    #: Timeout for requests to the Hive identity provider
    provider_timeout: float = 10
    #: Lifetime of bridge sessions in seconds
    session_ttl: int = 24 * 60 * 60
    #: Interval between sweeps of expired sessions in seconds
    sweep_interval: int = 60 * 60
    #: Accept the demo Hive account instead of talking to Hive
    demo_mode: bool = False
    #: Failed Hive logins allowed per account within login_window
    max_login_attempts: int = 5
    #: Window for counting failed Hive logins in seconds
    login_window: int = 15 * 60
    #: Application name registered with the bridge when pairing
    app_name: str = "hue_control_app"

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValidationError("port", f"{self.port} is not a valid port")
        if self.session_ttl <= 0:
            raise ValidationError("session_ttl", "must be positive")

    @property
    def key_file(self) -> Path:
        """Return the path of the encryption key file."""
        return Path(self.data_dir) / KEY_FILENAME

    @property
    def credentials_file(self) -> Path:
        """Return the path of the Hive credentials file."""
        return Path(self.data_dir) / CREDENTIALS_FILENAME
