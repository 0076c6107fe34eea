"""
Discord API response schemas (only the fields we trust).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProviderUser(BaseModel):
    """GET /users/@me. ``id`` is the only identity the server trusts."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., min_length=1)
    username: Optional[str] = None
    discriminator: Optional[str] = None
    avatar: Optional[str] = None

    @field_validator('id', mode='before')
    @classmethod
    def coerce_id(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class GuildMember(BaseModel):
    """GET /guilds/{guild}/members/{user}."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    roles: list[str] = []
