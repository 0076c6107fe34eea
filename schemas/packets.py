"""
Custom packet schemas for the game connection.

Every custom packet is a JSON envelope ``{"customPacketType": ..., ...}``
sent over the reliable message channel. Packets are decoded exactly once at
the boundary into one of the models below; callers dispatch on the model
type instead of on raw strings.

Usage:
    from schemas.packets import decode_packet, encode_packet, LoginWithProvider

    packet = decode_packet(raw_json)       # None for packet types we don't own
    raw = encode_packet(LoginWithProvider(access_token="..."))
"""

import json
from enum import Enum
from typing import Optional, Union

from pydantic import Field, ValidationError

from core.errors import DenialReason, MalformedPayloadError
from schemas.identity import CamelModel


class CustomPacketType(str, Enum):
    """Packet types understood by the login flow."""
    # client -> server
    LOGIN_WITH_PROVIDER = "loginWithProvider"
    REQUEST_CHARACTER_LIST = "requestCharacterList"
    SELECT_CHARACTER = "selectCharacter"
    CREATE_CHARACTER = "createCharacter"
    DELETE_CHARACTER = "deleteCharacter"

    # server -> client
    LOGIN_FAILED_NOT_LOGGED_VIA_DISCORD = "loginFailedNotLoggedViaDiscord"
    LOGIN_FAILED_NOT_IN_THE_DISCORD_SERVER = "loginFailedNotInTheDiscordServer"
    LOGIN_FAILED_BANNED = "loginFailedBanned"
    LOGIN_FAILED_IP_MISMATCH = "loginFailedIpMismatch"
    CHARACTER_LIST = "characterList"
    CHARACTER_ERROR = "characterError"


DENIAL_PACKET_TYPES: dict[DenialReason, CustomPacketType] = {
    DenialReason.NOT_LOGGED_IN_PROVIDER: CustomPacketType.LOGIN_FAILED_NOT_LOGGED_VIA_DISCORD,
    DenialReason.NOT_IN_REQUIRED_GROUP: CustomPacketType.LOGIN_FAILED_NOT_IN_THE_DISCORD_SERVER,
    DenialReason.BANNED: CustomPacketType.LOGIN_FAILED_BANNED,
    DenialReason.IP_MISMATCH: CustomPacketType.LOGIN_FAILED_IP_MISMATCH,
}


# =============================================================================
# Packet Models
# =============================================================================

class LoginWithProvider(CamelModel):
    """Client login: exactly one of access_token (remote) or profile_id (offline)."""
    packet_type: CustomPacketType = Field(CustomPacketType.LOGIN_WITH_PROVIDER, exclude=True)
    access_token: Optional[str] = None
    profile_id: Optional[int] = None


class LoginFailed(CamelModel):
    """Any of the loginFailed* notices; the reason is derived from the type."""
    packet_type: CustomPacketType = Field(..., exclude=True)

    @property
    def reason(self) -> DenialReason:
        for reason, packet_type in DENIAL_PACKET_TYPES.items():
            if packet_type == self.packet_type:
                return reason
        raise ValueError(f"{self.packet_type} is not a login failure")

    @classmethod
    def for_reason(cls, reason: DenialReason) -> "LoginFailed":
        return cls(packet_type=DENIAL_PACKET_TYPES[reason])


class CharacterInfo(CamelModel):
    visible_id: int
    name: str
    race_id: int = 0
    is_female: bool = False


class CharacterList(CamelModel):
    packet_type: CustomPacketType = Field(CustomPacketType.CHARACTER_LIST, exclude=True)
    characters: list[CharacterInfo] = []
    max_slots: int = 0
    current_count: int = 0


class CharacterError(CamelModel):
    packet_type: CustomPacketType = Field(CustomPacketType.CHARACTER_ERROR, exclude=True)
    message: str = "Unknown error occurred"


class CharacterCommand(CamelModel):
    """select / create / delete / requestCharacterList."""
    packet_type: CustomPacketType = Field(..., exclude=True)
    visible_id: Optional[int] = None


CustomPacket = Union[LoginWithProvider, LoginFailed, CharacterList, CharacterError, CharacterCommand]

_PACKET_MODELS: dict[CustomPacketType, type] = {
    CustomPacketType.LOGIN_WITH_PROVIDER: LoginWithProvider,
    CustomPacketType.REQUEST_CHARACTER_LIST: CharacterCommand,
    CustomPacketType.SELECT_CHARACTER: CharacterCommand,
    CustomPacketType.CREATE_CHARACTER: CharacterCommand,
    CustomPacketType.DELETE_CHARACTER: CharacterCommand,
    CustomPacketType.LOGIN_FAILED_NOT_LOGGED_VIA_DISCORD: LoginFailed,
    CustomPacketType.LOGIN_FAILED_NOT_IN_THE_DISCORD_SERVER: LoginFailed,
    CustomPacketType.LOGIN_FAILED_BANNED: LoginFailed,
    CustomPacketType.LOGIN_FAILED_IP_MISMATCH: LoginFailed,
    CustomPacketType.CHARACTER_LIST: CharacterList,
    CustomPacketType.CHARACTER_ERROR: CharacterError,
}


# =============================================================================
# Codec
# =============================================================================

def decode_packet(raw: str) -> Optional[CustomPacket]:
    """
    Decode a custom packet JSON dump.

    Returns:
        The packet model, or None when the packet type belongs to another
        system (gameplay packets share the channel).

    Raises:
        MalformedPayloadError: invalid JSON, missing type, or bad fields
    """
    try:
        content = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedPayloadError(f"Custom packet is not valid JSON: {e}") from e

    if not isinstance(content, dict) or "customPacketType" not in content:
        raise MalformedPayloadError("Custom packet has no customPacketType")

    try:
        packet_type = CustomPacketType(content["customPacketType"])
    except ValueError:
        return None

    model = _PACKET_MODELS[packet_type]
    fields = {k: v for k, v in content.items() if k != "customPacketType"}
    try:
        return model.model_validate({**fields, "packet_type": packet_type})
    except ValidationError as e:
        raise MalformedPayloadError(f"Invalid {packet_type.value} packet: {e}") from e


def encode_packet(packet: CustomPacket) -> str:
    """Serialize a packet model into the JSON envelope."""
    body = packet.model_dump(by_alias=True, exclude_none=True, mode="json")
    return json.dumps({"customPacketType": packet.packet_type.value, **body})
