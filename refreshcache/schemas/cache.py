from __future__ import annotations

from pydantic import BaseModel

from refreshcache.services.slot import SlotState


class PolicyStatus(BaseModel):
    period_seconds: float
    grace_seconds: float | None = None


class CacheStatus(BaseModel):
    name: str
    state: SlotState
    refresh_period_seconds: float
    validity_seconds: float | None = None
    active_policy: PolicyStatus | None = None
    refresh_count: int = 0
    failure_count: int = 0
    eviction_count: int = 0
    last_refresh_at: float | None = None
    last_error: str | None = None
    disposed: bool = False
