"""Module for HttpClient class."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp
from yarl import URL

from .exceptions import (
    ConnectivityError,
    HuePanelException,
    TimeoutError,
)
from .json import loads as json_loads

_LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5


class HttpClient:
    """HttpClient Class."""

    def __init__(
        self,
        host: str,
        *,
        timeout: float | None = DEFAULT_TIMEOUT,
        http_client: aiohttp.ClientSession | None = None,
    ) -> None:
        self._host = host
        self._timeout = timeout
        self._http_client = http_client
        self._client_session: aiohttp.ClientSession | None = None

    @property
    def host(self) -> str:
        """Return the host the client talks to."""
        return self._host

    @property
    def client(self) -> aiohttp.ClientSession:
        """Return the underlying http client."""
        if self._http_client and issubclass(
            self._http_client.__class__, aiohttp.ClientSession
        ):
            return self._http_client

        if not self._client_session:
            self._client_session = aiohttp.ClientSession()
        return self._client_session

    async def post(
        self,
        url: URL | str,
        *,
        json: dict | Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[int, dict | list | bytes | None]:
        """Send an http post request to the host.

        If the request is provided via the json parameter json will be returned.
        """
        _LOGGER.debug("Posting to %s", url)
        response_data = None
        return_json = json is not None
        if self._timeout is None:
            _LOGGER.warning("Request timeout is set to None.")
        client_timeout = aiohttp.ClientTimeout(total=self._timeout)

        try:
            resp = await self.client.post(
                url,
                json=json,
                timeout=client_timeout,
                headers=headers,
            )
            async with resp:
                response_data = await resp.read()

            if resp.status == 200:
                if return_json:
                    response_data = json_loads(response_data.decode())
            else:
                _LOGGER.debug(
                    "Host %s received status code %s with response %s",
                    self._host,
                    resp.status,
                    str(response_data),
                )
                if response_data and return_json:
                    try:
                        response_data = json_loads(response_data.decode())
                    except ValueError:
                        _LOGGER.debug(
                            "Host %s response could not be parsed as json",
                            self._host,
                        )

        except (aiohttp.ServerDisconnectedError, aiohttp.ClientOSError) as ex:
            raise ConnectivityError(
                f"Bridge connection error: {self._host}: {ex}", ex
            ) from ex
        except (aiohttp.ServerTimeoutError, asyncio.TimeoutError) as ex:
            raise TimeoutError(
                "Unable to query the bridge, " + f"timed out: {self._host}: {ex}",
                ex,
            ) from ex
        except Exception as ex:
            raise HuePanelException(
                f"Unable to query the bridge: {self._host}: {ex}", ex
            ) from ex

        return resp.status, response_data

    async def close(self) -> None:
        """Close the ClientSession."""
        client = self._client_session
        self._client_session = None
        if client:
            await client.close()
