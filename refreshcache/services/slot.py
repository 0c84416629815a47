from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar


V = TypeVar("V")


class SlotState(str, Enum):
    EMPTY = "empty"              # Nothing cached, next read fills synchronously
    FRESH = "fresh"              # Normal tier, next refresh after the period
    STALE_GRACE = "stale_grace"  # One refresh failed, serving the last value


class SlotEmptyError(LookupError):
    """Raised when reading the value of an empty slot."""
    pass


@dataclass(frozen=True)
class RefreshPolicy:
    """Parameters of the next scheduled check.

    ``period`` is the delay until the check fires. ``grace`` is how long the
    current value may still be served if that check fails; None means a
    failure evicts.
    """

    period: float
    grace: float | None = None


class CacheSlot(Generic[V]):
    """Single cached value and the refresh state machine around it.

    Holds no lock and performs no I/O; the owning cache serializes access.
    """

    def __init__(self, base_policy: RefreshPolicy):
        self.base_policy = base_policy

        self._state = SlotState.EMPTY
        self._value: V | None = None
        self._policy: RefreshPolicy | None = None
        self._generation = 0

    @property
    def state(self) -> SlotState:
        return self._state

    @property
    def is_empty(self) -> bool:
        return self._state == SlotState.EMPTY

    @property
    def policy(self) -> RefreshPolicy | None:
        """Policy currently armed, None while empty."""
        return self._policy

    @property
    def generation(self) -> int:
        """Number of synchronous fills so far."""
        return self._generation

    @property
    def value(self) -> V:
        if self.is_empty:
            raise SlotEmptyError("cache slot is empty")
        return self._value  # type: ignore[return-value]

    def fill(self, value: V) -> RefreshPolicy:
        """Install a synchronously produced value.

        Overwrites whatever is held, so the last concurrent fill wins.
        """
        self._generation += 1
        return self._install(value)

    def refresh_succeeded(self, value: V) -> RefreshPolicy:
        """Install a value from a scheduled refresh and reset the policy."""
        if self.is_empty:
            raise SlotEmptyError("cannot refresh an empty slot")
        return self._install(value)

    def refresh_failed(self) -> RefreshPolicy | None:
        """Apply a failed scheduled refresh.

        Returns the grace policy to arm, or None when the slot was evicted.
        """
        if self.is_empty:
            raise SlotEmptyError("cannot refresh an empty slot")

        grace = self._policy.grace if self._policy else None
        if grace is None:
            self.evict()
            return None

        # Next tier carries no grace, so a second failure evicts
        self._state = SlotState.STALE_GRACE
        self._policy = RefreshPolicy(period=grace, grace=None)
        return self._policy

    def evict(self) -> None:
        self._state = SlotState.EMPTY
        self._value = None
        self._policy = None

    def _install(self, value: V) -> RefreshPolicy:
        self._value = value
        self._state = SlotState.FRESH
        self._policy = self.base_policy
        return self._policy
