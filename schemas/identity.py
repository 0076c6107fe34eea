"""
Identity and login UI schemas.

JSON keys are camelCase (the UI and the launcher are JavaScript); Python
attributes are snake_case. Models are frozen: an identity is replaced
wholesale on re-login, never patched.
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for wire models with camelCase JSON keys."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class RemoteIdentity(CamelModel):
    """Identity obtained through the broker after Discord OAuth completes."""
    session: str = Field(..., min_length=1)
    provider_user_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("providerUserId", "provider_user_id", "masterApiId"),
    )
    display_name: Optional[str] = Field(
        None, validation_alias=AliasChoices("displayName", "display_name", "discordUsername"),
    )
    discriminator: Optional[str] = Field(
        None, validation_alias=AliasChoices("discriminator", "discordDiscriminator"),
    )
    avatar_ref: Optional[str] = Field(
        None, validation_alias=AliasChoices("avatarRef", "avatar_ref", "discordAvatar"),
    )
    access_token: Optional[str] = Field(
        None, validation_alias=AliasChoices("accessToken", "access_token"),
    )

    @field_validator('provider_user_id', mode='before')
    @classmethod
    def coerce_numeric_id(cls, v):
        """Launcher files may carry the id as a JSON number."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class LocalIdentity(CamelModel):
    """Offline bypass identity taken from client settings."""
    access_token: str = ""
    profile_id: int


class AuthGameData(CamelModel):
    """What the client hands to the connection: exactly one identity kind."""
    local: Optional[LocalIdentity] = None
    remote: Optional[RemoteIdentity] = None

    @model_validator(mode='after')
    def exactly_one(self):
        if (self.local is None) == (self.remote is None):
            raise ValueError('Exactly one of local or remote must be set')
        return self


class AuthUIState(CamelModel):
    """Snapshot pushed to the login UI on every state change."""
    identity: Optional[RemoteIdentity] = None
    status_comment: str = ""
    failure_reason: str = ""
    connecting: bool = False

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str) -> "AuthUIState":
        return cls.model_validate_json(raw)
