"""
Centralized error handling for the login flow.

Error Hierarchy:
- AuthError: Expected errors with messages safe to show in the login UI
  - TransportError: network trouble talking to the broker or the provider
  - MalformedPayloadError: a JSON body or custom packet we could not decode
  - PolicyDenied: terminal verdict for a login attempt (carries a DenialReason)
  - StaleAttemptError: the connection changed while an attempt was in flight
  - LocalMisuseError: the client tried to do something impossible locally
- Anything else is unexpected - never expose internal details

Usage:
    from core.errors import describe_error, PolicyDenied

    # For expected errors - raise with safe message
    raise PolicyDenied(DenialReason.BANNED, f"User {user_id} is banned")

    # For unexpected errors - turn them into a UI-safe comment
    except Exception as e:
        comment = describe_error(e, "create play session")
"""

import logging
import uuid
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class DenialReason(str, Enum):
    """Server-reported reasons a login attempt was refused."""
    NOT_LOGGED_IN_PROVIDER = "not-logged-in-provider"
    NOT_IN_REQUIRED_GROUP = "not-in-required-group"
    BANNED = "banned"
    IP_MISMATCH = "ip-mismatch"


# =============================================================================
# Exception Classes (Expected Errors)
# =============================================================================

class AuthError(Exception):
    """
    Base class for expected login errors.
    Messages are safe to show to the player.
    """


class TransportError(AuthError):
    """Network failure (timeout, refused connection, unexpected status)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderUnavailableError(TransportError):
    """Provider kept failing after bounded retries."""


class MalformedPayloadError(AuthError):
    """Body or packet could not be parsed."""


class PolicyDenied(AuthError):
    """Login attempt denied by policy. Terminal for the attempt."""

    def __init__(self, reason: DenialReason, message: str = ""):
        super().__init__(message or reason.value)
        self.reason = reason


class TokenValidationError(PolicyDenied):
    """Provider rejected the bearer token, or could not be asked."""

    def __init__(self, message: str):
        super().__init__(DenialReason.NOT_LOGGED_IN_PROVIDER, message)


class TokenMissingError(TokenValidationError):
    """No bearer token supplied; the provider is never called."""


class MemberNotFoundError(PolicyDenied):
    """User is not a member of the configured guild."""

    def __init__(self, message: str):
        super().__init__(DenialReason.NOT_IN_REQUIRED_GROUP, message)


class StaleAttemptError(AuthError):
    """Connection identity changed mid-flight; the attempt must be dropped."""


class LocalMisuseError(AuthError):
    """Client-side misuse, e.g. sending a login packet without an identity."""


# =============================================================================
# Safe Error Description Helper
# =============================================================================

def describe_error(
    e: Exception,
    operation: str,
    include_error_id: bool = True
) -> str:
    """
    Create a UI-safe description of an error.

    For AuthError subclasses (expected errors):
        - Returns the error message (safe to expose)
        - Logs at WARNING level

    For all other exceptions (unexpected errors):
        - Returns generic message (never exposes internal details)
        - Logs full exception at ERROR level

    Args:
        e: The exception that was caught
        operation: Human-readable description of what failed (e.g., "poll login status")
        include_error_id: Whether to append an error_id for support reference

    Returns:
        Message suitable for the login UI status comment
    """
    error_id = str(uuid.uuid4())[:8] if include_error_id else None
    log_extra = {'error_id': error_id} if error_id else {}

    if isinstance(e, AuthError):
        logger.warning(f"{operation}: {e}", extra=log_extra)
        message = str(e)
    else:
        logger.exception(f"{operation} failed", extra=log_extra)
        message = f"{operation} failed"

    if error_id:
        message = f"{message} (ref {error_id})"
    return message
