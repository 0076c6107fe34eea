"""
Core shared utilities for the login client and the login gatekeeper.

This module consolidates functionality used by both halves:
- client/ (auth state machine, poller, watchdog)
- server/ (gatekeeper, identity store)
"""

from .async_utils import LoopScheduler, Scheduler, spawn
from .errors import (
    DenialReason,
    AuthError,
    LocalMisuseError,
    MalformedPayloadError,
    MemberNotFoundError,
    PolicyDenied,
    ProviderUnavailableError,
    StaleAttemptError,
    TokenMissingError,
    TokenValidationError,
    TransportError,
    describe_error,
)
from .events import ConnectAttempt, EventBus, LoginDenied, LoginSucceeded
from .logging_config import configure_logging

__all__ = [
    "LoopScheduler",
    "Scheduler",
    "spawn",
    "DenialReason",
    "AuthError",
    "LocalMisuseError",
    "MalformedPayloadError",
    "MemberNotFoundError",
    "PolicyDenied",
    "ProviderUnavailableError",
    "StaleAttemptError",
    "TokenMissingError",
    "TokenValidationError",
    "TransportError",
    "describe_error",
    "ConnectAttempt",
    "EventBus",
    "LoginDenied",
    "LoginSucceeded",
    "configure_logging",
]
