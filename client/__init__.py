"""
Game client half of the login flow.

- auth_service: login state machine driven by engine callbacks
- poller / retry_policy / broker_client: OAuth status polling and handshake
- watchdog: stuck-login recovery
- character_select: post-login character list
- controller: packet and UI event routing
"""

from .auth_service import AuthService, Phase, UIEvent
from .bridges import AuthDataStore, EngineBridge, FileAuthDataStore, UIBridge
from .broker_client import BrokerClient, BrokerResponse
from .character_select import CharacterSelectService
from .controller import AuthClient, build_client
from .poller import OAuthPoller
from .retry_policy import PollDecision, PollPolicy
from .trigger_gate import TriggerGate
from .watchdog import ReconnectionWatchdog, WatchdogAction

__all__ = [
    "AuthService",
    "Phase",
    "UIEvent",
    "AuthDataStore",
    "EngineBridge",
    "FileAuthDataStore",
    "UIBridge",
    "BrokerClient",
    "BrokerResponse",
    "CharacterSelectService",
    "AuthClient",
    "build_client",
    "OAuthPoller",
    "PollDecision",
    "PollPolicy",
    "TriggerGate",
    "ReconnectionWatchdog",
    "WatchdogAction",
]
