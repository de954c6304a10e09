"""Pair with a Hue bridge to obtain a bridge username.

Pairing only succeeds within 30 seconds of the bridge's link button being
pressed, otherwise the bridge answers with error type 101.

>>> username = await pair("192.168.1.50", "hue_control_app")  # doctest: +SKIP
"""

from __future__ import annotations

import logging
from typing import Any

from yarl import URL

from .exceptions import BridgeError, LinkButtonNotPressedError, ValidationError
from .httpclient import DEFAULT_TIMEOUT, HttpClient

_LOGGER = logging.getLogger(__name__)

DEFAULT_APP_NAME = "hue_control_app"
DEVICE_NAME = "huepanel"

LINK_BUTTON_NOT_PRESSED = 101

#: Bridge limit for the application part of the devicetype
APP_NAME_MAX_LENGTH = 20


class HueBridge:
    """Client for the unauthenticated pairing endpoint of a bridge."""

    def __init__(
        self,
        host: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: HttpClient | None = None,
    ) -> None:
        if not host:
            raise ValidationError("bridgeIp", "bridge ip is required")
        self._host = host
        self._http_client = http_client or HttpClient(host, timeout=timeout)

    @property
    def host(self) -> str:
        """Return the bridge address."""
        return self._host

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} at {self._host}>"

    async def pair(self, app_name: str = DEFAULT_APP_NAME) -> str:
        """Register a new user on the bridge and return its username."""
        app_name = (app_name or DEFAULT_APP_NAME)[:APP_NAME_MAX_LENGTH]
        url = URL.build(scheme="http", host=self._host, path="/api")
        payload = {"devicetype": f"{app_name}#{DEVICE_NAME}"}

        status, response = await self._http_client.post(url, json=payload)
        return self._handle_pair_response(status, response)

    def _handle_pair_response(self, status: int, response: Any) -> str:
        if (
            not isinstance(response, list)
            or not response
            or not isinstance(response[0], dict)
        ):
            raise BridgeError(
                f"Unexpected pairing response from {self._host}: status {status}"
            )

        result = response[0]
        if (success := result.get("success")) and (
            username := success.get("username")
        ):
            _LOGGER.info("Paired with bridge %s", self._host)
            return username

        if error := result.get("error"):
            error_type = error.get("type")
            description = error.get("description") or "unknown error"
            if error_type == LINK_BUTTON_NOT_PRESSED:
                _LOGGER.debug("Link button not pressed on %s", self._host)
                raise LinkButtonNotPressedError(
                    "Link button not pressed, press the button on the bridge"
                )
            raise BridgeError(
                f"Bridge {self._host} refused pairing: {description}",
                error_type=error_type,
            )

        raise BridgeError(f"Unexpected pairing response from {self._host}")

    async def close(self) -> None:
        """Close the http client."""
        await self._http_client.close()


async def pair(
    bridge_ip: str,
    app_name: str = DEFAULT_APP_NAME,
    *,
    timeout: float = DEFAULT_TIMEOUT,
) -> str:
    """Pair with the bridge at bridge_ip and return the new username."""
    bridge = HueBridge(bridge_ip, timeout=timeout)
    try:
        return await bridge.pair(app_name)
    finally:
        await bridge.close()
