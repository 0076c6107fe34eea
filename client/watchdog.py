"""
Reconnection watchdog.

Armed when the server accepts the connection; disarmed when our actor is
created or the character list arrives. If neither happens before the
deadline, the player either reconnects silently (they have already been in
the world this session) or is sent back to the login dialog.
"""

import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_DEADLINE_SECONDS = 15.0


class WatchdogAction(str, Enum):
    NONE = "none"
    RECONNECT = "reconnect"
    RELOGIN = "relogin"


class ReconnectionWatchdog:

    def __init__(self, deadline: float = DEFAULT_DEADLINE_SECONDS):
        self.deadline = deadline
        self._started_at: Optional[float] = None
        self._gameplay_observed = False

    @property
    def armed(self) -> bool:
        return self._started_at is not None

    @property
    def gameplay_observed(self) -> bool:
        return self._gameplay_observed

    def arm(self, now: float) -> None:
        self._started_at = now

    def disarm(self) -> None:
        self._started_at = None

    def mark_gameplay_observed(self) -> None:
        self._gameplay_observed = True

    def check(self, now: float) -> WatchdogAction:
        if self._started_at is None or now - self._started_at <= self.deadline:
            return WatchdogAction.NONE

        self.disarm()
        if self._gameplay_observed:
            logger.info("Login deadline passed after gameplay, reconnecting")
            return WatchdogAction.RECONNECT
        logger.info("Login deadline passed before gameplay, back to login")
        return WatchdogAction.RELOGIN
