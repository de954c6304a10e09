"""Http api for pairing, bridge sessions and the Hive login.

Routes::

    POST   /api/v1/auth/pair        {"bridgeIp", "appName"} -> {"username"}
    POST   /api/v1/auth/session     {"bridgeIp", "username"} -> session token
    GET    /api/v1/auth/session     credentials from any channel
    DELETE /api/v1/auth/session     revoke the presented bearer token
    POST   /api/v1/hive/connect     {"username", "password"}
    POST   /api/v1/hive/verify      {"code", "session", "username"}
    POST   /api/v1/hive/disconnect
    GET    /api/v1/hive/connection

Errors are returned as ``{"error": code, "message": ..., "suggestion": ...}``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from functools import partial
from typing import Any

from aiohttp import web

from .auth import (
    EXTRACTOR_KEY,
    HUE_CREDENTIALS_KEY,
    CredentialExtractor,
    HueCredentials,
    hue_credentials,
    session_required,
)
from .bridge import HueBridge
from .config import PanelConfig
from .credentialstore import CredentialStore
from .encryption import EncryptionKeyProvider
from .exceptions import (
    ErrorCode,
    HuePanelException,
    MissingCredentialsError,
    RateLimitError,
    ValidationError,
)
from .hive.auth import AuthResult, HiveAuth
from .hive.cognito import CognitoClient
from .json import dumps as json_dumps
from .json import loads as json_loads
from .ratelimit import AttemptLimiter
from .session import SessionManager

_LOGGER = logging.getLogger(__name__)
logging.getLogger("aiohttp").setLevel(logging.WARNING)

API_PREFIX = "/api/v1"
DEMO_MODE_HEADER = "X-Demo-Mode"

BridgeFactory = Callable[[str], HueBridge]


def json_response(
    data: Any, *, status: int = 200, headers: dict[str, str] | None = None
) -> web.Response:
    """Return data serialized as a json response."""
    return web.Response(
        text=json_dumps(data),
        status=status,
        headers=headers,
        content_type="application/json",
    )


@web.middleware
async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Translate library errors into json error responses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except HuePanelException as ex:
        headers = None
        if isinstance(ex, RateLimitError):
            headers = {"Retry-After": str(ex.retry_after)}
        if ex.status_code >= 500:
            _LOGGER.error(
                "Error handling %s %s: %s", request.method, request.path, ex
            )
        return json_response(ex.to_dict(), status=ex.status_code, headers=headers)
    except Exception:
        _LOGGER.exception(
            "Unexpected error handling %s %s", request.method, request.path
        )
        return json_response(
            {
                "error": str(ErrorCode.INTERNAL_ERROR),
                "message": "Internal server error",
                "suggestion": None,
            },
            status=500,
        )


async def _read_json(request: web.Request) -> dict[str, Any]:
    if not (body := await request.read()):
        return {}
    try:
        data = json_loads(body.decode())
    except ValueError as ex:
        raise ValidationError("body", "must be valid json") from ex
    if not isinstance(data, dict):
        raise ValidationError("body", "must be a json object")
    return data


class PanelServer:
    """Request handlers bound to the server's collaborators."""

    def __init__(
        self,
        config: PanelConfig,
        *,
        sessions: SessionManager,
        store: CredentialStore,
        hive_auth: HiveAuth,
        bridge_factory: BridgeFactory,
    ) -> None:
        self.config = config
        self.sessions = sessions
        self.store = store
        self.hive_auth = hive_auth
        self.bridge_factory = bridge_factory

    def _is_demo(self, request: web.Request) -> bool:
        if self.config.demo_mode:
            return True
        return request.headers.get(DEMO_MODE_HEADER, "").lower() == "true"

    async def _pair(self, request: web.Request) -> web.Response:
        req = await _read_json(request)
        if not (bridge_ip := req.get("bridgeIp")):
            raise ValidationError("bridgeIp", "bridge ip is required")

        bridge = self.bridge_factory(bridge_ip)
        try:
            username = await bridge.pair(req.get("appName") or self.config.app_name)
        finally:
            await bridge.close()

        self.sessions.store_bridge_credentials(bridge_ip, username)
        return json_response({"username": username})

    async def _create_session(self, request: web.Request) -> web.Response:
        req = await _read_json(request)
        if not (bridge_ip := req.get("bridgeIp")):
            raise MissingCredentialsError("bridgeIp")
        if not (username := req.get("username")):
            raise MissingCredentialsError("username")

        info = self.sessions.create_session(bridge_ip, username)
        self.sessions.store_bridge_credentials(bridge_ip, username)
        return json_response(info.to_dict())

    async def _session_info(self, request: web.Request) -> web.Response:
        hue: HueCredentials = request[HUE_CREDENTIALS_KEY]
        return json_response(
            {"bridgeIp": hue.bridge_ip, "authMethod": str(hue.auth_method)}
        )

    async def _revoke_session(self, request: web.Request) -> web.Response:
        hue: HueCredentials = request[HUE_CREDENTIALS_KEY]
        if hue.session_token:
            self.sessions.revoke_session(hue.session_token)
        return json_response({"success": True})

    def _auth_response(self, result: AuthResult) -> web.Response:
        return json_response(result.to_dict(), status=401 if result.error else 200)

    async def _hive_connect(self, request: web.Request) -> web.Response:
        req = await _read_json(request)
        username = req.get("username")
        password = req.get("password")
        if not username or not isinstance(username, str):
            raise ValidationError("username", "username is required")
        if not password or not isinstance(password, str):
            raise ValidationError("password", "password is required")

        demo = self._is_demo(request)
        result = await self.hive_auth.initiate_auth(username, password, demo_mode=demo)
        if not result.error and not demo:
            self.store.store_credentials(username, password)
            # storing new credentials drops any cached token
            self.hive_auth.store_tokens(result)
        return self._auth_response(result)

    async def _hive_verify(self, request: web.Request) -> web.Response:
        req = await _read_json(request)
        if not (code := req.get("code")):
            raise ValidationError("code", "verification code is required")

        result = await self.hive_auth.verify_2fa(
            str(code),
            req.get("session"),
            req.get("username"),
            demo_mode=self._is_demo(request),
        )
        return self._auth_response(result)

    async def _hive_disconnect(self, request: web.Request) -> web.Response:
        self.hive_auth.clear_auth()
        self.store.clear_credentials()
        return json_response({"success": True})

    async def _hive_connection(self, request: web.Request) -> web.Response:
        credentials = self.store.get_credentials()
        return json_response(
            {
                "connected": credentials is not None,
                "username": credentials.username if credentials else None,
            }
        )

    def routes(self) -> list[web.RouteDef]:
        """Return the route table."""
        return [
            web.post(f"{API_PREFIX}/auth/pair", self._pair),
            web.post(f"{API_PREFIX}/auth/session", self._create_session),
            web.get(
                f"{API_PREFIX}/auth/session", hue_credentials(self._session_info)
            ),
            web.delete(
                f"{API_PREFIX}/auth/session", session_required(self._revoke_session)
            ),
            web.post(f"{API_PREFIX}/hive/connect", self._hive_connect),
            web.post(f"{API_PREFIX}/hive/verify", self._hive_verify),
            web.post(f"{API_PREFIX}/hive/disconnect", self._hive_disconnect),
            web.get(f"{API_PREFIX}/hive/connection", self._hive_connection),
        ]


SERVER_KEY = web.AppKey("panel_server", PanelServer)


def create_app(
    config: PanelConfig | None = None,
    *,
    sessions: SessionManager | None = None,
    store: CredentialStore | None = None,
    hive_auth: HiveAuth | None = None,
    bridge_factory: BridgeFactory | None = None,
) -> web.Application:
    """Create the application, building any collaborator not given."""
    config = config or PanelConfig()
    if sessions is None:
        sessions = SessionManager(
            ttl=config.session_ttl, sweep_interval=config.sweep_interval
        )
    if store is None:
        store = CredentialStore(
            config.credentials_file, EncryptionKeyProvider.default(config.key_file)
        )
    if hive_auth is None:
        hive_auth = HiveAuth(
            store,
            cognito=CognitoClient(timeout=config.provider_timeout),
            demo_mode=config.demo_mode,
            limiter=AttemptLimiter(config.max_login_attempts, config.login_window),
        )
    if bridge_factory is None:
        bridge_factory = partial(HueBridge, timeout=config.bridge_timeout)

    server = PanelServer(
        config,
        sessions=sessions,
        store=store,
        hive_auth=hive_auth,
        bridge_factory=bridge_factory,
    )

    app = web.Application(middlewares=[error_middleware])
    app[SERVER_KEY] = server
    app[EXTRACTOR_KEY] = CredentialExtractor(sessions)
    app.add_routes(server.routes())
    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    return app


async def _on_startup(app: web.Application) -> None:
    await app[SERVER_KEY].sessions.start()


async def _on_cleanup(app: web.Application) -> None:
    server = app[SERVER_KEY]
    await server.sessions.stop()
    await server.hive_auth.close()


async def run_server(config: PanelConfig) -> None:
    """Run the http api until cancelled."""
    app = create_app(config)
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, config.host, config.port)
    try:
        await site.start()
    except Exception as ex:
        _LOGGER.exception(
            "Error trying to start api on %s:%s: %s", config.host, config.port, ex
        )
        await runner.cleanup()
        raise

    _LOGGER.info("Api running on http://%s:%s", config.host, config.port)
    try:
        with suppress(asyncio.CancelledError):
            await asyncio.Event().wait()
    finally:
        _LOGGER.debug("Stopping api")
        await runner.cleanup()
