"""
Central configuration using Pydantic BaseSettings.

Validates all env vars at startup (fail-fast). A whitelist role without the
guild and bot token needed to check it refuses to start unless the server
runs in offline mode.

Usage:
    from config.settings import get_settings

    settings = get_settings()
    print(settings.discord.bot_token.get_secret_value())

Lazy initialization: get_settings() creates the singleton on first call.
Tests can reset via get_settings.cache_clear().
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings


# =============================================================================
# Nested Settings Groups
# =============================================================================


class ClientSettings(BaseSettings):
    """Game client login flow configuration."""

    model_config = {"env_prefix": "CLIENT_", "extra": "ignore"}

    # Game server port; the local broker listens next to it
    server_port: int = 7777

    ui_url: str = "file:///Data/Platform/UI/index.html"
    auth_data_path: Path = Path("Data/Platform/PluginsNoLoad/auth-data-no-load.js")

    # Offline bypass (skips the login UI entirely)
    offline_profile_id: Optional[int] = None
    offline_access_token: str = ""

    # Poll jitter bounds in seconds
    poll_min_delay: float = 1.5
    poll_max_delay: float = 3.5

    ui_mount_delay: float = 0.5
    login_deadline_seconds: float = 15.0

    # Static links opened from the login UI
    github_url: str = "https://github.com/BStarRP/skymp"
    patreon_url: str = "https://www.patreon.com/c/bruinstar"
    discord_invite_url: str = "https://discord.gg/bstarrp"
    update_url: str = "https://skymp.net/UpdInstall"

    @property
    def has_offline_identity(self) -> bool:
        return self.offline_profile_id is not None


class BrokerSettings(BaseSettings):
    """Local session broker (OAuth redirect + play session minting)."""

    model_config = {"env_prefix": "BROKER_", "extra": "ignore"}

    base_url: Optional[str] = None  # Falls back to localhost next to the game port
    api_prefix: str = "/api/users"
    request_timeout: float = 10.0

    def resolve_base_url(self, server_port: int) -> str:
        """Broker URL: explicit setting, else port 3000 for the default game port, else port+1."""
        if self.base_url:
            return self.base_url.rstrip("/")
        port = 3000 if server_port == 7777 else server_port + 1
        return f"http://localhost:{port}"


class DiscordSettings(BaseSettings):
    """Discord provider and whitelist configuration."""

    model_config = {"env_prefix": "DISCORD_", "extra": "ignore"}

    api_base: str = "https://discord.com/api/v10"
    request_timeout: float = 5.0

    guild_id: Optional[str] = None
    bot_token: SecretStr = SecretStr("")
    whitelist_role_id: Optional[str] = None

    # JSON list in env, e.g. DISCORD_BANNED_USER_IDS='["123", "456"]'
    banned_user_ids: list[str] = []

    @property
    def guild_check_enabled(self) -> bool:
        return bool(self.guild_id and self.bot_token.get_secret_value())


class ServerSettings(BaseSettings):
    """Login gatekeeper configuration."""

    model_config = {"env_prefix": "SERVER_", "extra": "ignore"}

    offline_mode: bool = False
    profiles_path: Path = Path("profiles.json")


# =============================================================================
# Root Settings
# =============================================================================


class AppSettings(BaseSettings):
    """Root application settings composing all sub-settings."""

    model_config = {"env_prefix": "", "extra": "ignore", "env_file": ".env", "env_file_encoding": "utf-8"}

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: str = ""

    # Nested groups (initialized separately to support env_prefix)
    client: ClientSettings = None  # type: ignore[assignment]
    broker: BrokerSettings = None  # type: ignore[assignment]
    discord: DiscordSettings = None  # type: ignore[assignment]
    server: ServerSettings = None  # type: ignore[assignment]

    @model_validator(mode="before")
    @classmethod
    def _init_nested(cls, values):
        """Initialize nested settings from environment."""
        if values.get("client") is None:
            values["client"] = ClientSettings()
        if values.get("broker") is None:
            values["broker"] = BrokerSettings()
        if values.get("discord") is None:
            values["discord"] = DiscordSettings()
        if values.get("server") is None:
            values["server"] = ServerSettings()
        return values

    @model_validator(mode="after")
    def _validate_whitelist(self):
        """A whitelist role is useless without the guild and bot token to check it."""
        if self.server.offline_mode:
            return self

        if self.discord.whitelist_role_id and not self.discord.guild_check_enabled:
            raise ValueError(
                "DISCORD_WHITELIST_ROLE_ID requires DISCORD_GUILD_ID and DISCORD_BOT_TOKEN"
            )

        return self

    @property
    def broker_url(self) -> str:
        return self.broker.resolve_base_url(self.client.server_port)


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """
    Get the application settings singleton.

    Lazy-initialized on first call. Validates all env vars (fail-fast).
    Tests can reset via: get_settings.cache_clear()
    """
    return AppSettings()
