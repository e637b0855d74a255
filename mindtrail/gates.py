"""Per-decision in-flight flags.

Each gating decision (one guided step, one task) owns its own gate, so a
pending tutor request only blocks a repeat of the same decision.
"""

from typing import Hashable


class InFlightGate:
    """Flag that is set while a tutor request for one decision is pending."""

    def __init__(self, name: str):
        self.name = name
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def try_acquire(self) -> bool:
        """Claim the gate. Returns False when a request is already in flight."""
        if self._busy:
            return False
        self._busy = True
        return True

    def release(self) -> None:
        self._busy = False


class GateRegistry:
    """Lazily creates one gate per key."""

    def __init__(self, prefix: str):
        self.prefix = prefix
        self._gates: dict[Hashable, InFlightGate] = {}

    def get(self, key: Hashable) -> InFlightGate:
        if key not in self._gates:
            self._gates[key] = InFlightGate(f"{self.prefix}:{key}")
        return self._gates[key]

    def any_busy(self) -> bool:
        return any(g.busy for g in self._gates.values())
