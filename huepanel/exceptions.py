"""huepanel exceptions."""

from __future__ import annotations

from asyncio import TimeoutError as _asyncioTimeoutError
from enum import Enum
from typing import Any


class ErrorCode(Enum):
    """Machine readable error codes returned to api clients."""

    def __str__(self) -> str:
        return self.value

    INTERNAL_ERROR = "internal_error"
    MISSING_CREDENTIALS = "missing_credentials"
    INVALID_SESSION = "invalid_session"
    AUTHENTICATION_ERROR = "authentication_error"
    LINK_BUTTON_NOT_PRESSED = "link_button_not_pressed"
    INTEGRITY_ERROR = "integrity_error"
    INVALID_KEY = "invalid_key"
    VALIDATION_ERROR = "validation_error"
    CONNECTIVITY_ERROR = "connectivity_error"
    TIMEOUT = "timeout"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    BRIDGE_ERROR = "bridge_error"


class HuePanelException(Exception):
    """Base exception for library errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500
    suggestion: str | None = None

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        if (suggestion := kwargs.get("suggestion")) is not None:
            self.suggestion = suggestion
        super().__init__(*args)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.code})"

    def __str__(self) -> str:
        # Extra args carry the underlying error, the first one is the message
        return str(self.args[0]) if self.args else ""

    def to_dict(self) -> dict[str, Any]:
        """Return the error as an api response body."""
        return {
            "error": str(self.code),
            "message": str(self) or self.code.value,
            "suggestion": self.suggestion,
        }


class MissingCredentialsError(HuePanelException):
    """No authentication channel supplied a bridge ip and username."""

    code = ErrorCode.MISSING_CREDENTIALS
    status_code = 400

    def __init__(self, missing: str) -> None:
        self.missing = missing
        super().__init__(
            f"Missing required parameter: {missing}",
            suggestion=f"Provide the {missing} parameter or a valid session token",
        )


class InvalidSessionError(HuePanelException):
    """A bearer token was presented but is unknown, expired or revoked."""

    code = ErrorCode.INVALID_SESSION
    status_code = 401
    suggestion = "Your session has expired, please authenticate again"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        if not args:
            args = ("Session expired or invalid",)
        super().__init__(*args, **kwargs)


class AuthenticationError(HuePanelException):
    """Base exception for authentication errors."""

    code = ErrorCode.AUTHENTICATION_ERROR
    status_code = 401
    suggestion = "Check your credentials and try again"


class LinkButtonNotPressedError(AuthenticationError):
    """The bridge refused pairing because its link button was not pressed."""

    code = ErrorCode.LINK_BUTTON_NOT_PRESSED
    status_code = 403
    suggestion = "Press the link button on the bridge, then try again within 30 seconds"


class IntegrityError(HuePanelException):
    """Encrypted data failed authentication (tampered data or wrong key)."""

    code = ErrorCode.INTEGRITY_ERROR


class InvalidKeyError(HuePanelException):
    """The configured encryption key is malformed."""

    code = ErrorCode.INVALID_KEY
    suggestion = "Encryption keys must be 64 lowercase hex characters"


class ValidationError(HuePanelException):
    """Input failed validation."""

    code = ErrorCode.VALIDATION_ERROR
    status_code = 400

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        super().__init__(
            f"Invalid {field}: {reason}",
            suggestion=f"Check the {field} format and try again",
        )


class ConnectivityError(HuePanelException):
    """The bridge or the identity provider could not be reached."""

    code = ErrorCode.CONNECTIVITY_ERROR
    status_code = 503
    suggestion = "Check that the device is powered on and reachable, then retry"


class TimeoutError(ConnectivityError, _asyncioTimeoutError):
    """Timeout exception for bridge and provider requests."""

    code = ErrorCode.TIMEOUT

    def __repr__(self) -> str:
        return HuePanelException.__repr__(self)

    def __str__(self) -> str:
        return HuePanelException.__str__(self)


class RateLimitError(HuePanelException):
    """Too many attempts were made in the current window."""

    code = ErrorCode.RATE_LIMIT_EXCEEDED
    status_code = 429

    def __init__(self, retry_after: int = 60, *args: Any) -> None:
        self.retry_after = retry_after
        if not args:
            args = ("Too many attempts",)
        super().__init__(
            *args, suggestion=f"Wait {retry_after} seconds before trying again"
        )


class BridgeError(HuePanelException):
    """The bridge answered with an unexpected error."""

    code = ErrorCode.BRIDGE_ERROR
    status_code = 502

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.error_type: int | None = kwargs.pop("error_type", None)
        super().__init__(*args, **kwargs)

    def __str__(self) -> str:
        err_type = f" (error_type={self.error_type})" if self.error_type else ""
        return super().__str__() + err_type
