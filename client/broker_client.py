"""
HTTP client for the local session broker.

The broker mediates the Discord OAuth redirect and mints play sessions.
Both calls return the raw status and body; the poller decides what a status
means. Network failures are raised as TransportError so the poller can
count them like any other unexpected status.

Usage:
    broker = BrokerClient("http://localhost:3000")
    resp = await broker.get_status(state)
    if resp.status == 200:
        resp = await broker.create_play_session(token)
"""

import asyncio
import logging
from dataclasses import dataclass
from urllib.parse import quote

import aiohttp

from core.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BrokerResponse:
    status: int
    body: str


class BrokerClient:
    """Thin aiohttp wrapper around the broker's login endpoints."""

    def __init__(self, base_url: str, api_prefix: str = "/api/users", timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.api_prefix = "/" + api_prefix.strip("/")
        self.timeout = timeout

    def login_page_url(self, state: str) -> str:
        """URL opened in the system browser to start Discord OAuth."""
        return f"{self.base_url}{self.api_prefix}/login-discord?state={quote(state)}"

    async def get_status(self, state: str) -> BrokerResponse:
        url = f"{self.base_url}{self.api_prefix}/login-discord/status"
        return await self._request("GET", url, params={"state": state})

    async def create_play_session(self, token: str) -> BrokerResponse:
        url = f"{self.base_url}{self.api_prefix}/me/play/main"
        logger.debug(f"Creating play session {self.api_prefix}/me/play/main")
        return await self._request(
            "POST",
            url,
            json={},
            headers={"Authorization": f"Bearer {token}"},
        )

    async def _request(self, method: str, url: str, **kwargs) -> BrokerResponse:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method,
                    url,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                    **kwargs,
                ) as resp:
                    body = await resp.text()
                    return BrokerResponse(status=resp.status, body=body)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Broker request timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Broker unreachable: {e}") from e
