"""
Discord token and guild membership checks for the login gatekeeper.

The server never trusts identity fields sent by the client. It asks Discord
who owns the bearer token, and the returned ``id`` is the only identity
used from then on.

Token validation is one-shot: any failure (timeout, non-2xx, bad body) is a
denial, never retried. Guild member lookups go through the bot token and are
retried a bounded number of times, since a flaky provider should not lock
whitelisted players out on the first hiccup.

Usage:
    validator = DiscordTokenValidator(get_settings().discord)
    user = await validator.validate(access_token)
    roles = await validator.fetch_member_roles(user.id)
"""

import asyncio
import json
import logging

import aiohttp
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config.settings import DiscordSettings
from core.errors import (
    MemberNotFoundError,
    ProviderUnavailableError,
    TokenMissingError,
    TokenValidationError,
    TransportError,
)
from schemas.provider import GuildMember, ProviderUser

logger = logging.getLogger(__name__)

MEMBER_LOOKUP_ATTEMPTS = 3


class DiscordTokenValidator:
    """Validates OAuth access tokens and reads guild roles from Discord."""

    def __init__(self, settings: DiscordSettings):
        self.settings = settings
        self.api_base = settings.api_base.rstrip("/")

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.settings.request_timeout)

    # =========================================================================
    # Token validation (no retry)
    # =========================================================================

    async def validate(self, access_token: str) -> ProviderUser:
        """
        Resolve the Discord user owning an access token.

        Raises:
            TokenMissingError: blank token (Discord is not called)
            TokenValidationError: any other failure
        """
        if not access_token or not access_token.strip():
            raise TokenMissingError("No access token supplied")

        url = f"{self.api_base}/users/@me"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url,
                    headers={"Authorization": f"Bearer {access_token.strip()}"},
                    timeout=self._timeout(),
                ) as resp:
                    body = await resp.text()
                    if not 200 <= resp.status < 300:
                        raise TokenValidationError(f"Discord returned {resp.status} for /users/@me")
        except asyncio.TimeoutError as e:
            raise TokenValidationError("Discord token check timed out") from e
        except aiohttp.ClientError as e:
            raise TokenValidationError(f"Discord unreachable: {e}") from e

        try:
            return ProviderUser.model_validate_json(body)
        except (ValidationError, json.JSONDecodeError) as e:
            raise TokenValidationError("Discord did not return a user id") from e

    # =========================================================================
    # Guild membership (bounded retry)
    # =========================================================================

    async def fetch_member_roles(self, user_id: str) -> list[str]:
        """
        Role ids of a guild member.

        Raises:
            MemberNotFoundError: user is not in the guild
            ProviderUnavailableError: Discord kept failing, or the bot is misconfigured
        """
        try:
            member = await self._fetch_member(user_id)
        except ProviderUnavailableError:
            raise
        except TransportError as e:
            raise ProviderUnavailableError(
                f"Discord member lookup failed after {MEMBER_LOOKUP_ATTEMPTS} attempts: {e}",
                status_code=e.status_code,
            ) from e
        return member.roles

    @retry(
        stop=stop_after_attempt(MEMBER_LOOKUP_ATTEMPTS),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
        retry=(retry_if_exception_type(TransportError)
               & retry_if_not_exception_type(ProviderUnavailableError)),
        reraise=True,
    )
    async def _fetch_member(self, user_id: str) -> GuildMember:
        url = f"{self.api_base}/guilds/{self.settings.guild_id}/members/{user_id}"
        token = self.settings.bot_token.get_secret_value()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url,
                    headers={"Authorization": f"Bot {token}"},
                    timeout=self._timeout(),
                ) as resp:
                    body = await resp.text()
                    status = resp.status
        except asyncio.TimeoutError as e:
            raise TransportError("Discord member lookup timed out") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Discord unreachable: {e}") from e

        if status == 404:
            raise MemberNotFoundError(f"User {user_id} is not in guild {self.settings.guild_id}")
        if status in (401, 403):
            raise ProviderUnavailableError(f"Bot token rejected by Discord ({status})", status_code=status)
        if not 200 <= status < 300:
            logger.warning(f"Discord member lookup returned {status}", extra={'status_code': status})
            raise TransportError(f"Discord returned {status}", status_code=status)

        try:
            return GuildMember.model_validate_json(body)
        except (ValidationError, json.JSONDecodeError) as e:
            raise TransportError(f"Malformed member body: {e}") from e
