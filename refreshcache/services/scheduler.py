"""Timed-removal primitive used to drive background refreshes.

A scheduler holds at most one armed entry. When the entry's delay elapses the
callback runs with ``RemovalReason.EXPIRED`` and may hand back an
``ExpiryOutcome`` to keep the entry and rearm it; returning None removes it.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable


logger = logging.getLogger(__name__)


class RemovalReason(str, Enum):
    EXPIRED = "expired"
    REPLACED = "replaced"
    REMOVED = "removed"
    DISPOSED = "disposed"


class SchedulerClosedError(RuntimeError):
    """Raised when arming a scheduler that has been closed."""
    pass


@dataclass(frozen=True)
class ExpiryOutcome:
    """Replacement value and delay until the next expiry."""

    value: Any
    next_delay: float


OnRemoved = Callable[[RemovalReason, Any], "ExpiryOutcome | None"]


@dataclass
class _ArmedEntry:
    token: int
    value: Any
    delay: float
    on_removed: OnRemoved


class ExpiryScheduler(ABC):
    """Base class holding the single armed entry and its bookkeeping.

    Subclasses only decide how a delay turns into a call to ``_fire``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._armed: _ArmedEntry | None = None
        self._token = 0
        self._closed = False

    @property
    def is_armed(self) -> bool:
        with self._lock:
            return self._armed is not None

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def pending_delay(self) -> float | None:
        """Delay the current entry was armed with, None when nothing is armed."""
        with self._lock:
            return self._armed.delay if self._armed else None

    def arm(self, delay: float, value: Any, on_removed: OnRemoved) -> None:
        """Arm an entry, replacing the one already armed."""
        if delay <= 0:
            raise ValueError(f"delay must be > 0, got {delay}")

        with self._lock:
            if self._closed:
                raise SchedulerClosedError("scheduler is closed")
            previous = self._armed
            if previous is not None:
                self._cancel_timer()
            self._armed = self._new_entry(value, delay, on_removed)
            self._start_timer(delay, self._armed.token)

        if previous is not None:
            self._notify(previous, RemovalReason.REPLACED)

    def remove(self) -> None:
        """Explicitly drop the armed entry without firing it."""
        with self._lock:
            previous = self._armed
            if previous is None:
                return
            self._cancel_timer()
            self._armed = None

        self._notify(previous, RemovalReason.REMOVED)

    def close(self) -> None:
        """Cancel any pending expiry. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            previous = self._armed
            if previous is not None:
                self._cancel_timer()
            self._armed = None

        if previous is not None:
            self._notify(previous, RemovalReason.DISPOSED)
        logger.debug("Scheduler closed")

    def _new_entry(self, value: Any, delay: float, on_removed: OnRemoved) -> _ArmedEntry:
        # Caller holds the lock
        self._token += 1
        return _ArmedEntry(token=self._token, value=value, delay=delay, on_removed=on_removed)

    def _fire(self, token: int) -> None:
        """Run the expiry callback for the entry armed under ``token``."""
        with self._lock:
            entry = self._armed
            if self._closed or entry is None or entry.token != token:
                return

        try:
            outcome = entry.on_removed(RemovalReason.EXPIRED, entry.value)
        except Exception:
            logger.exception("Expiry callback failed, dropping entry")
            outcome = None

        with self._lock:
            if self._closed or self._armed is not entry:
                # Replaced or closed while the callback ran
                logger.debug("Discarding expiry outcome for superseded entry")
                return
            if outcome is None:
                self._armed = None
                return
            if outcome.next_delay <= 0:
                logger.error(f"Expiry callback returned non-positive delay {outcome.next_delay}, dropping entry")
                self._armed = None
                return
            self._armed = self._new_entry(outcome.value, outcome.next_delay, entry.on_removed)
            self._start_timer(outcome.next_delay, self._armed.token)

    @staticmethod
    def _notify(entry: _ArmedEntry, reason: RemovalReason) -> None:
        try:
            entry.on_removed(reason, entry.value)
        except Exception:
            logger.exception(f"Removal callback failed for reason {reason.value}")

    @abstractmethod
    def _start_timer(self, delay: float, token: int) -> None:
        """Schedule ``_fire(token)`` after ``delay`` seconds. Called with the lock held."""

    @abstractmethod
    def _cancel_timer(self) -> None:
        """Cancel the pending timer, if any. Called with the lock held."""


class TimerScheduler(ExpiryScheduler):
    """Wall-clock scheduler backed by ``threading.Timer``."""

    def __init__(self, daemon: bool = True) -> None:
        super().__init__()
        self.daemon = daemon
        self._timer: threading.Timer | None = None

    def _start_timer(self, delay: float, token: int) -> None:
        self._timer = threading.Timer(delay, self._fire, args=(token,))
        self._timer.daemon = self.daemon
        self._timer.start()

    def _cancel_timer(self) -> None:
        if self._timer:
            self._timer.cancel()
            self._timer = None


class ManualScheduler(ExpiryScheduler):
    """Deterministic scheduler driven by an explicit clock.

    Nothing fires until ``advance`` is called; due expiries then run
    synchronously on the calling thread.
    """

    def __init__(self) -> None:
        super().__init__()
        self._now = 0.0
        self._deadline: float | None = None
        self._deadline_token: int | None = None

    @property
    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing every expiry that falls due."""
        if seconds < 0:
            raise ValueError(f"cannot move the clock backwards by {seconds}")

        target = self._now + seconds
        while True:
            with self._lock:
                if self._deadline is None or self._deadline > target:
                    self._now = target
                    return
                self._now = self._deadline
                token = self._deadline_token
                self._deadline = None
                self._deadline_token = None
            self._fire(token)

    def _start_timer(self, delay: float, token: int) -> None:
        self._deadline = self._now + delay
        self._deadline_token = token

    def _cancel_timer(self) -> None:
        self._deadline = None
        self._deadline_token = None
