"""
Pydantic schemas for everything that crosses a process boundary.

Launcher auth files, broker and Discord responses, and custom packets are
validated here once, so the rest of the code works with typed models.
"""

from schemas.identity import (
    AuthGameData,
    AuthUIState,
    CamelModel,
    LocalIdentity,
    RemoteIdentity,
)
from schemas.broker import (
    LoginStatusBody,
    PlaySessionBody,
)
from schemas.provider import (
    GuildMember,
    ProviderUser,
)
from schemas.packets import (
    DENIAL_PACKET_TYPES,
    CharacterCommand,
    CharacterError,
    CharacterInfo,
    CharacterList,
    CustomPacket,
    CustomPacketType,
    LoginFailed,
    LoginWithProvider,
    decode_packet,
    encode_packet,
)

__all__ = [
    # Identity
    "AuthGameData",
    "AuthUIState",
    "CamelModel",
    "LocalIdentity",
    "RemoteIdentity",
    # Broker
    "LoginStatusBody",
    "PlaySessionBody",
    # Provider
    "GuildMember",
    "ProviderUser",
    # Packets
    "DENIAL_PACKET_TYPES",
    "CharacterCommand",
    "CharacterError",
    "CharacterInfo",
    "CharacterList",
    "CustomPacket",
    "CustomPacketType",
    "LoginFailed",
    "LoginWithProvider",
    "decode_packet",
    "encode_packet",
]
