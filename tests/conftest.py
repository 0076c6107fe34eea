"""Shared pytest fixtures for login flow tests."""
import os
import sys
import pytest
from unittest.mock import AsyncMock, MagicMock

# Add project root to path
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _PROJECT_ROOT)

# ---------------------------------------------------------------------------
# Deterministic test environment, set BEFORE any config module imports.
# A developer .env with a whitelist role but no bot token would make every
# AppSettings() in the suite fail validation.
# ---------------------------------------------------------------------------
for _key in ("DISCORD_WHITELIST_ROLE_ID", "DISCORD_GUILD_ID", "DISCORD_BOT_TOKEN",
             "DISCORD_BANNED_USER_IDS", "SERVER_OFFLINE_MODE", "CLIENT_OFFLINE_PROFILE_ID"):
    os.environ.pop(_key, None)


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Reset the settings singleton between tests for isolation."""
    yield
    from config.settings import get_settings
    get_settings.cache_clear()


# =============================================================================
# aiohttp fakes
# =============================================================================

def make_http_session(status: int = 200, body: str = "{}", error: Exception = None):
    """
    Fake aiohttp.ClientSession instance.

    ``session.get(...)``/``session.request(...)`` return an async context
    manager yielding a response with ``status`` and ``text()``. With
    ``error`` set, entering the request raises it instead.
    """
    resp = MagicMock()
    resp.status = status
    resp.text = AsyncMock(return_value=body)

    request_ctx = MagicMock()
    if error is not None:
        request_ctx.__aenter__ = AsyncMock(side_effect=error)
    else:
        request_ctx.__aenter__ = AsyncMock(return_value=resp)
    request_ctx.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    session.get.return_value = request_ctx
    session.post.return_value = request_ctx
    session.request.return_value = request_ctx
    return session


@pytest.fixture
def http_session():
    """Factory fixture for fake aiohttp sessions."""
    return make_http_session


# =============================================================================
# Client collaborators
# =============================================================================

@pytest.fixture
def ui():
    return MagicMock()


@pytest.fixture
def engine():
    return MagicMock()


@pytest.fixture
def auth_store():
    store = MagicMock()
    store.read.return_value = None
    return store


@pytest.fixture
def scheduler():
    return MagicMock()


@pytest.fixture
def broker():
    broker = MagicMock()
    broker.get_status = AsyncMock()
    broker.create_play_session = AsyncMock()
    broker.login_page_url.side_effect = lambda state: f"http://localhost:3000/api/users/login-discord?state={state}"
    return broker


# =============================================================================
# Server collaborators
# =============================================================================

class FakeServer:
    """In-memory connection table implementing ServerBridge."""

    def __init__(self):
        self.guids: dict[int, str] = {}
        self.sent: list[tuple[int, str]] = []
        self.enabled: dict[int, bool] = {}

    def connect(self, connection_id: int, guid: str) -> None:
        self.guids[connection_id] = guid
        self.enabled[connection_id] = True

    def disconnect(self, connection_id: int) -> None:
        self.guids.pop(connection_id, None)

    def send_custom_packet(self, connection_id, payload):
        self.sent.append((connection_id, payload))

    def set_enabled(self, connection_id, enabled):
        self.enabled[connection_id] = enabled

    def get_session_guid(self, connection_id):
        return self.guids.get(connection_id)

    def is_connected(self, connection_id):
        return connection_id in self.guids

    def get_ip(self, connection_id):
        return "127.0.0.1"


@pytest.fixture
def fake_server():
    return FakeServer()
