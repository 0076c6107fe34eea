"""
Local session broker response schemas.
"""

from typing import Optional

from pydantic import AliasChoices, Field, field_validator

from schemas.identity import CamelModel


class LoginStatusBody(CamelModel):
    """Body of a 200 from GET {prefix}/login-discord/status."""
    token: str = Field(..., min_length=1)
    master_api_id: str = Field(..., min_length=1)
    display_name: Optional[str] = Field(
        None, validation_alias=AliasChoices("displayName", "discordUsername"),
    )
    discriminator: Optional[str] = Field(
        None, validation_alias=AliasChoices("discriminator", "discordDiscriminator"),
    )
    avatar_ref: Optional[str] = Field(
        None, validation_alias=AliasChoices("avatarRef", "discordAvatar"),
    )
    access_token: Optional[str] = None

    @field_validator('master_api_id', mode='before')
    @classmethod
    def coerce_numeric_id(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def bearer_for_server(self) -> str:
        """Token the game server re-validates: explicit accessToken wins over the broker token."""
        return self.access_token if self.access_token else self.token


class PlaySessionBody(CamelModel):
    """Body of a 200 from POST {prefix}/me/play/main."""
    session: str = Field(..., min_length=1)
