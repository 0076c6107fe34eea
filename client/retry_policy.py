"""
Status-code policy for the broker login-status poll.

Pure and timer-free: the poller asks the policy what to do with a status and
how long to sleep, so the mapping can be tested without an event loop.
"""

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class PollDecision(str, Enum):
    PROCEED = "proceed"              # login complete, do the handshake
    RETRY = "retry"                  # user still logging in
    TERMINAL = "terminal"            # state unknown or refused, stop polling
    RETRY_COUNTED = "retry_counted"  # unexpected status, retry and count it


TERMINAL_FAIL_COUNT = 9000


@dataclass(frozen=True)
class PollPolicy:
    """
    Poll retry policy.

    Attributes:
        min_delay: Lower jitter bound in seconds
        max_delay: Upper jitter bound in seconds
        terminal_statuses: Statuses that end polling
        max_attempts: Cap on counted failures, None for unlimited
    """
    min_delay: float = 1.5
    max_delay: float = 3.5
    terminal_statuses: frozenset[int] = field(default_factory=lambda: frozenset({403, 404}))
    max_attempts: Optional[int] = None

    def __post_init__(self):
        if self.min_delay < 0 or self.max_delay < self.min_delay:
            raise ValueError(
                f"Invalid jitter bounds [{self.min_delay}, {self.max_delay}]"
            )

    def classify(self, status: int) -> PollDecision:
        if status == 200:
            return PollDecision.PROCEED
        if status == 401:
            return PollDecision.RETRY
        if status in self.terminal_statuses:
            return PollDecision.TERMINAL
        return PollDecision.RETRY_COUNTED

    def next_delay(self, rng: Optional[random.Random] = None) -> float:
        """Uniform jitter in [min_delay, max_delay]."""
        uniform = rng.uniform if rng is not None else random.uniform
        return uniform(self.min_delay, self.max_delay)

    def exhausted(self, fail_count: int) -> bool:
        if fail_count >= TERMINAL_FAIL_COUNT:
            return True
        return self.max_attempts is not None and fail_count >= self.max_attempts
