"""
Game server half of the login flow.
"""

from .bridges import ServerBridge
from .gatekeeper import LoginAttempt, LoginGatekeeper, TokenValidator, Verdict
from .identity_store import IdentityMapping, IdentityStore

__all__ = [
    "ServerBridge",
    "LoginAttempt",
    "LoginGatekeeper",
    "TokenValidator",
    "Verdict",
    "IdentityMapping",
    "IdentityStore",
]
