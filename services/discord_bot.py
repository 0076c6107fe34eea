"""
Discord whitelist watcher.

Logs into Discord with the bot token and listens for guild member updates.
When a member loses the whitelist role, every game session logged in as that
member is disabled on the spot instead of at their next login.

Usage:
    watcher = await start_whitelist_watcher(get_settings(), gatekeeper)
"""

import logging
from typing import Optional

import discord

from config.settings import AppSettings, DiscordSettings
from core.async_utils import spawn
from server.gatekeeper import LoginGatekeeper

logger = logging.getLogger(__name__)


def _role_ids(member) -> set[str]:
    return {str(role.id) for role in getattr(member, "roles", None) or []}


class WhitelistWatcher(discord.Client):
    """discord.py client that enforces role removal on live sessions."""

    def __init__(self, gatekeeper: LoginGatekeeper, settings: DiscordSettings):
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        super().__init__(intents=intents)
        self.gatekeeper = gatekeeper
        self.settings = settings

    async def on_ready(self):
        logger.info(f"Whitelist watcher connected as {self.user}")

    async def on_member_update(self, before, after):
        self.handle_member_update(before, after)

    async def on_error(self, event_method, *args, **kwargs):
        logger.exception(f"Discord event {event_method} failed")

    def handle_member_update(self, before, after) -> list[int]:
        """Returns the connection ids that were disabled."""
        if before is None or after is None:
            logger.warning("Member update without both member states, ignored")
            return []

        guild = getattr(after, "guild", None)
        if guild is not None and str(guild.id) != str(self.settings.guild_id):
            return []

        role = str(self.settings.whitelist_role_id)
        had_role = role in _role_ids(before)
        has_role = role in _role_ids(after)

        if had_role and not has_role:
            discord_id = str(after.id)
            revoked = self.gatekeeper.revoke(discord_id)
            logger.info(
                f"Whitelist role removed from {discord_id}, disabled {len(revoked)} session(s)",
                extra={'provider_user_id': discord_id},
            )
            return revoked

        if has_role and not had_role:
            logger.info(f"Whitelist role added to user {after.id}, they can now join")
        return []


def watcher_enabled(settings: AppSettings) -> bool:
    """Whether the watcher has everything it needs. Logs why not."""
    if settings.server.offline_mode:
        logger.info("Discord whitelist watcher is disabled due to offline mode")
        return False

    discord_settings = settings.discord
    if not discord_settings.bot_token.get_secret_value():
        logger.warning("DISCORD_BOT_TOKEN is missing, skipping Discord whitelist watcher")
        return False
    if not discord_settings.guild_id:
        logger.warning("DISCORD_GUILD_ID is missing, skipping Discord whitelist watcher")
        return False
    if not discord_settings.whitelist_role_id:
        logger.warning("DISCORD_WHITELIST_ROLE_ID is missing, skipping Discord whitelist watcher")
        return False
    return True


async def start_whitelist_watcher(
    settings: AppSettings,
    gatekeeper: LoginGatekeeper,
) -> Optional[WhitelistWatcher]:
    """Log in and run the watcher as a background task on the current loop."""
    if not watcher_enabled(settings):
        return None

    watcher = WhitelistWatcher(gatekeeper, settings.discord)
    try:
        await watcher.login(settings.discord.bot_token.get_secret_value())
    except discord.LoginFailure as e:
        logger.error(f"Error logging in Discord client: {e}")
        await watcher.close()
        return None

    spawn(watcher.connect(reconnect=True))
    return watcher
