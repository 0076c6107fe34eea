"""
Security package: provider-side verification of client-supplied tokens.
"""

from .token_validator import MEMBER_LOOKUP_ATTEMPTS, DiscordTokenValidator

__all__ = [
    "MEMBER_LOOKUP_ATTEMPTS",
    "DiscordTokenValidator",
]
