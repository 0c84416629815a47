"""Shared test fixtures."""

from __future__ import annotations

import pytest

from refreshcache.services.scheduler import ManualScheduler


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()
