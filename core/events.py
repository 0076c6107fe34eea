"""
Typed synchronous event bus.

Replaces string-keyed emitter wiring with event dataclasses. Handlers run
one at a time, in subscription order, inside the publisher's call. A handler
that raises is logged and does not stop delivery to the others.

Usage:
    from core.events import EventBus, ConnectAttempt

    bus = EventBus()
    bus.subscribe(ConnectAttempt, lambda e: engine.connect())
    bus.once(LoginSucceeded, on_first_login)
    bus.publish(ConnectAttempt(auth_data=data))
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from schemas.identity import AuthGameData
from core.errors import DenialReason

logger = logging.getLogger(__name__)

E = TypeVar("E")


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class ConnectAttempt:
    """Client wants the engine to open the game connection."""
    auth_data: AuthGameData


@dataclass(frozen=True)
class LoginSucceeded:
    """Gatekeeper verdict: the sole identity trust boundary for spawn logic."""
    connection_id: int
    profile_id: int
    roles: list[str] = field(default_factory=list)
    provider_user_id: str | None = None


@dataclass(frozen=True)
class LoginDenied:
    """Gatekeeper verdict for a denied attempt."""
    connection_id: int
    reason: DenialReason


# =============================================================================
# Bus
# =============================================================================

class _OnceHandler:
    """Wraps a handler so it fires at most once, via an explicit latch."""

    def __init__(self, handler: Callable):
        self.handler = handler
        self.fired = False

    def __call__(self, event) -> None:
        if self.fired:
            return
        self.fired = True
        self.handler(event)


class EventBus:
    """Dispatches events to handlers registered for their exact type."""

    def __init__(self):
        self._handlers: dict[type, list[Callable]] = {}

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def once(self, event_type: type[E], handler: Callable[[E], None]) -> None:
        self.subscribe(event_type, _OnceHandler(handler))

    def unsubscribe(self, event_type: type, handler: Callable) -> None:
        handlers = self._handlers.get(event_type, [])
        self._handlers[event_type] = [
            h for h in handlers
            if h is not handler and getattr(h, "handler", None) is not handler
        ]

    def publish(self, event) -> int:
        """Deliver an event. Returns the number of handlers that ran."""
        delivered = 0
        for handler in list(self._handlers.get(type(event), [])):
            if isinstance(handler, _OnceHandler) and handler.fired:
                continue
            try:
                handler(event)
                delivered += 1
            except Exception:
                logger.exception(f"Handler {handler!r} failed for {type(event).__name__}")
        self._handlers[type(event)] = [
            h for h in self._handlers.get(type(event), [])
            if not (isinstance(h, _OnceHandler) and h.fired)
        ]
        return delivered
