from __future__ import annotations

import logging
import threading
import time
from datetime import timedelta
from typing import Any, Callable, Generic, TypeVar

from refreshcache.config import (
    ConfigurationError,
    Settings,
    get_settings,
    to_seconds,
    validate_config_on_startup,
    validate_durations,
)
from refreshcache.schemas.cache import CacheStatus, PolicyStatus
from refreshcache.services.scheduler import (
    ExpiryOutcome,
    ExpiryScheduler,
    RemovalReason,
    TimerScheduler,
)
from refreshcache.services.slot import CacheSlot, RefreshPolicy, SlotState


V = TypeVar("V")


class ProducerError(RuntimeError):
    """Raised when the producer returns no value."""
    pass


class CacheDisposedError(RuntimeError):
    """Raised when a disposed cache is used."""
    pass


class SelfRefreshingCache(Generic[V]):
    """Single-value cache that keeps itself warm in the background.

    The first ``get_or_create`` call computes the value synchronously and arms
    a refresh every ``refresh_period_seconds``. A failed background refresh
    keeps serving the previous value for ``validity_seconds`` more; a second
    consecutive failure evicts it and the next read computes it again.

    Concurrent reads on an empty slot each call the producer; the last one to
    finish is the value kept. Callers needing single-flight must coordinate
    on their own.
    """

    def __init__(
        self,
        producer: Callable[[], V],
        refresh_period_seconds: float | timedelta,
        validity_seconds: float | timedelta | None = None,
        *,
        logger: logging.Logger | None = None,
        scheduler: ExpiryScheduler | None = None,
        name: str | None = None,
    ):
        if not callable(producer):
            raise ConfigurationError(f"producer must be callable, got {type(producer).__name__}")

        period = to_seconds(refresh_period_seconds)
        validity = to_seconds(validity_seconds)
        errors = validate_durations(period, validity)
        if errors:
            raise ConfigurationError("; ".join(errors))

        self.name = name or getattr(producer, "__qualname__", None) or repr(producer)
        self.refresh_period_seconds = period
        self.validity_seconds = validity

        self._producer = producer
        self._logger = logger or logging.getLogger(__name__)
        self._scheduler = scheduler if scheduler is not None else TimerScheduler()
        self._slot: CacheSlot[V] = CacheSlot(RefreshPolicy(period=period, grace=validity))
        self._lock = threading.Lock()
        self._disposed = False

        self._refresh_count = 0
        self._failure_count = 0
        self._eviction_count = 0
        self._last_refresh_at: float | None = None
        self._last_error: str | None = None

        self._logger.debug(
            f"Init SelfRefreshingCache '{self.name}' (period={period}s, validity={validity}s)"
        )

    @classmethod
    def from_settings(
        cls,
        producer: Callable[[], V],
        settings: Settings | None = None,
        **kwargs: Any,
    ) -> "SelfRefreshingCache[V]":
        """Build a cache from ``Settings`` (environment by default).

        Raises ConfigurationError when the settings do not validate.
        """
        settings = settings or get_settings()
        validate_config_on_startup(settings)
        if "scheduler" not in kwargs:
            kwargs["scheduler"] = TimerScheduler(daemon=settings.timer_daemon)
        return cls(
            producer,
            settings.refresh_period_seconds,
            settings.validity_seconds,
            **kwargs,
        )

    @property
    def state(self) -> SlotState:
        with self._lock:
            return self._slot.state

    @property
    def disposed(self) -> bool:
        return self._disposed

    def get_or_create(self) -> V:
        """Return the cached value, computing it synchronously if absent.

        Producer errors on this path propagate to the caller and leave the
        slot empty.
        """
        with self._lock:
            self._ensure_open()
            if not self._slot.is_empty:
                self._logger.debug(f"Cache hit for '{self.name}'")
                return self._slot.value

        value = self._produce()

        with self._lock:
            if self._disposed:
                self._logger.debug(f"Cache '{self.name}' disposed during fill, value not stored")
                return value
            # Arm first so a failing scheduler leaves the slot untouched
            self._scheduler.arm(self._slot.base_policy.period, value, self._on_removed)
            self._slot.fill(value)
            self._last_refresh_at = time.time()

        self._logger.debug(f"Set new cache value for '{self.name}'")
        return value

    def close(self) -> None:
        """Stop background refreshes and release the scheduler. Idempotent."""
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            self._slot.evict()

        self._scheduler.close()
        self._logger.debug(f"Cache '{self.name}' disposed")

    dispose = close

    def __enter__(self) -> "SelfRefreshingCache[V]":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def get_status(self) -> CacheStatus:
        """Snapshot of the slot and refresh counters for monitoring."""
        with self._lock:
            policy = self._slot.policy
            return CacheStatus(
                name=self.name,
                state=self._slot.state,
                refresh_period_seconds=self.refresh_period_seconds,
                validity_seconds=self.validity_seconds,
                active_policy=(
                    PolicyStatus(period_seconds=policy.period, grace_seconds=policy.grace)
                    if policy
                    else None
                ),
                refresh_count=self._refresh_count,
                failure_count=self._failure_count,
                eviction_count=self._eviction_count,
                last_refresh_at=self._last_refresh_at,
                last_error=self._last_error,
                disposed=self._disposed,
            )

    def _ensure_open(self) -> None:
        if self._disposed:
            raise CacheDisposedError(f"cache '{self.name}' is disposed")

    def _produce(self) -> V:
        value = self._producer()
        if value is None:
            raise ProducerError(f"producer for '{self.name}' returned no value")
        return value

    def _on_removed(self, reason: RemovalReason, value: Any) -> ExpiryOutcome | None:
        """Scheduler callback: refresh the slot when its period elapses.

        ``value`` is the entry the scheduler held, i.e. the value last armed.
        """
        if reason == RemovalReason.REPLACED:
            self._logger.debug(f"Refresh entry for '{self.name}' replaced by a newer fill")
            return None

        if reason != RemovalReason.EXPIRED:
            # Entry dropped without expiring: nothing will refresh the slot any more
            with self._lock:
                if self._disposed or self._slot.is_empty:
                    return None
                self._slot.evict()
                self._eviction_count += 1
            self._logger.warning(f"Refresh entry for '{self.name}' {reason.value}, value was evicted")
            return None

        with self._lock:
            if self._disposed or self._slot.is_empty:
                return None
            generation = self._slot.generation
            was_stale = self._slot.state == SlotState.STALE_GRACE

        error: Exception | None = None
        try:
            fresh = self._produce()
        except Exception as e:
            error = e

        with self._lock:
            if self._disposed:
                return None
            if self._slot.generation != generation:
                # A concurrent fill replaced the slot and armed its own refresh
                self._logger.debug(f"Refresh of '{self.name}' superseded by a fill")
                return None

            if error is None:
                policy = self._slot.refresh_succeeded(fresh)
                self._refresh_count += 1
                self._last_refresh_at = time.time()
                if was_stale:
                    self._logger.info(f"Cache '{self.name}' recovered after failed refresh")
                else:
                    self._logger.debug(f"Cache value for '{self.name}' is updated")
                return ExpiryOutcome(fresh, policy.period)

            self._failure_count += 1
            self._last_error = f"{type(error).__name__}: {error}"
            self._logger.error(f"Refresh of '{self.name}' failed: {error}")

            policy = self._slot.refresh_failed()
            if policy is None:
                self._eviction_count += 1
                self._logger.critical(f"Cannot refresh cache '{self.name}', value was evicted")
                return None

            self._logger.warning(f"Serving previous value of '{self.name}' for up to {policy.period}s")
            return ExpiryOutcome(value, policy.period)
