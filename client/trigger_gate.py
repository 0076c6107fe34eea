"""
Two-flag one-shot gate.

Polling must start only after both the engine asked for a login and the UI
finished loading. The two signals arrive in either order and may repeat;
the gate fires once per login cycle.
"""

from dataclasses import dataclass


@dataclass
class TriggerGate:
    ui_ready: bool = False
    login_needed: bool = False
    fired: bool = False

    @property
    def condition_met(self) -> bool:
        return self.ui_ready and self.login_needed

    def try_fire(self) -> bool:
        """True exactly once per cycle, and only when both flags are set."""
        if not self.condition_met or self.fired:
            return False
        self.fired = True
        return True

    def rearm(self) -> None:
        """Start a new cycle. The readiness flags are kept."""
        self.fired = False
