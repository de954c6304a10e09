import asyncio
import re

import pytest

from huepanel.exceptions import ValidationError
from huepanel.session import (
    BridgeCredentials,
    InMemorySessionStore,
    SessionInfo,
    SessionManager,
)

from .conftest import BRIDGE_IP, BRIDGE_USERNAME

TOKEN_RE = re.compile(r"^sess_[0-9a-f]{64}$")


def test_create_session(sessions):
    info = sessions.create_session(BRIDGE_IP, BRIDGE_USERNAME)

    assert TOKEN_RE.match(info.token)
    assert info.expires_in == 86400
    assert info.bridge_ip == BRIDGE_IP
    assert sessions.get_session(info.token) == BridgeCredentials(
        BRIDGE_IP, BRIDGE_USERNAME
    )


def test_session_info_to_dict(sessions):
    info = sessions.create_session(BRIDGE_IP, BRIDGE_USERNAME)
    assert info.to_dict() == {
        "sessionToken": info.token,
        "expiresIn": 86400,
        "bridgeIp": BRIDGE_IP,
    }
    assert SessionInfo.from_dict(info.to_dict()) == info


def test_every_session_gets_new_token(sessions):
    first = sessions.create_session(BRIDGE_IP, BRIDGE_USERNAME)
    second = sessions.create_session(BRIDGE_IP, BRIDGE_USERNAME)
    assert first.token != second.token

    sessions.revoke_session(first.token)
    assert sessions.get_session(first.token) is None
    assert sessions.get_session(second.token) is not None


@pytest.mark.parametrize(
    ("bridge_ip", "username", "field"),
    [
        pytest.param("", BRIDGE_USERNAME, "bridgeIp", id="no-bridge-ip"),
        pytest.param(BRIDGE_IP, "", "username", id="no-username"),
    ],
)
def test_create_session_invalid(sessions, bridge_ip, username, field):
    with pytest.raises(ValidationError) as exc_info:
        sessions.create_session(bridge_ip, username)
    assert exc_info.value.field == field
    assert sessions.active_sessions == 0


@pytest.mark.parametrize("token", ["", "sess_unknown", "not-a-session"])
def test_unknown_token(sessions, token):
    sessions.create_session(BRIDGE_IP, BRIDGE_USERNAME)
    assert sessions.get_session(token) is None


def test_session_expiry(freezer, sessions):
    info = sessions.create_session(BRIDGE_IP, BRIDGE_USERNAME)

    freezer.tick(86399)
    assert sessions.get_session(info.token) is not None

    freezer.tick(2)
    assert sessions.get_session(info.token) is None
    assert sessions.active_sessions == 0


def test_session_expires_at_ttl():
    now = 1000.0
    sessions = SessionManager(ttl=60, clock=lambda: now)
    info = sessions.create_session(BRIDGE_IP, BRIDGE_USERNAME)
    assert info.expires_in == 60

    now = 1059.999
    assert sessions.get_session(info.token) is not None
    now = 1060.0
    assert sessions.get_session(info.token) is None


def test_revoke_session(sessions):
    info = sessions.create_session(BRIDGE_IP, BRIDGE_USERNAME)

    sessions.revoke_session(info.token)
    assert sessions.get_session(info.token) is None

    sessions.revoke_session(info.token)
    sessions.revoke_session("sess_unknown")


def test_revoke_all(sessions):
    tokens = [
        sessions.create_session(f"192.168.1.{i}", BRIDGE_USERNAME).token
        for i in range(3)
    ]
    sessions.store_bridge_credentials(BRIDGE_IP, BRIDGE_USERNAME)

    sessions.revoke_all()

    assert all(sessions.get_session(token) is None for token in tokens)
    assert not sessions.has_bridge_credentials(BRIDGE_IP)


def test_bridge_credentials(sessions):
    assert not sessions.has_bridge_credentials(BRIDGE_IP)
    assert sessions.get_bridge_username(BRIDGE_IP) is None

    sessions.store_bridge_credentials(BRIDGE_IP, BRIDGE_USERNAME)
    assert sessions.has_bridge_credentials(BRIDGE_IP)
    assert sessions.get_bridge_username(BRIDGE_IP) == BRIDGE_USERNAME

    sessions.store_bridge_credentials(BRIDGE_IP, "newer")
    assert sessions.get_bridge_username(BRIDGE_IP) == "newer"


def test_sweep(freezer):
    store = InMemorySessionStore()
    sessions = SessionManager(store)
    old = sessions.create_session(BRIDGE_IP, BRIDGE_USERNAME)

    freezer.tick(86000)
    new = sessions.create_session(BRIDGE_IP, BRIDGE_USERNAME)
    assert sessions.sweep() == 0

    freezer.tick(400)
    assert sessions.sweep() == 1
    assert store.get(old.token) is None
    assert store.get(new.token) is not None
    assert len(store) == 1


async def test_background_sweep():
    now = 0.0
    sessions = SessionManager(ttl=10, sweep_interval=0.01, clock=lambda: now)
    sessions.create_session(BRIDGE_IP, BRIDGE_USERNAME)

    await sessions.start()
    # starting twice keeps a single task
    await sessions.start()
    try:
        now = 20.0
        for _ in range(100):
            if sessions.active_sessions == 0:
                break
            await asyncio.sleep(0.01)
        assert sessions.active_sessions == 0
    finally:
        await sessions.stop()
        await sessions.stop()
