"""Tests for the CacheSlot refresh state machine."""

import pytest

from refreshcache.services.slot import CacheSlot, RefreshPolicy, SlotEmptyError, SlotState


def make_slot(period: float = 5.0, grace: float | None = 10.0) -> CacheSlot:
    return CacheSlot(RefreshPolicy(period=period, grace=grace))


class TestSlotFill:
    """Test synchronous fills."""

    def test_initial_state_is_empty(self):
        """Slot starts empty with no policy armed."""
        slot = make_slot()
        assert slot.state == SlotState.EMPTY
        assert slot.is_empty is True
        assert slot.policy is None
        assert slot.generation == 0

    def test_reading_empty_slot_raises(self):
        """Reading an empty slot raises SlotEmptyError."""
        slot = make_slot()
        with pytest.raises(SlotEmptyError):
            _ = slot.value

    def test_fill_makes_slot_fresh(self):
        """Fill installs the value with the base policy."""
        slot = make_slot()
        policy = slot.fill("a")

        assert slot.state == SlotState.FRESH
        assert slot.value == "a"
        assert policy == RefreshPolicy(period=5.0, grace=10.0)
        assert slot.generation == 1

    def test_falsy_value_is_not_empty(self):
        """Falsy values are cached like any other."""
        slot = make_slot()
        slot.fill(0)

        assert slot.is_empty is False
        assert slot.value == 0

    def test_second_fill_overwrites(self):
        """The last fill wins and bumps the generation."""
        slot = make_slot()
        slot.fill("first")
        slot.fill("second")

        assert slot.value == "second"
        assert slot.generation == 2


class TestSlotRefresh:
    """Test scheduled refresh transitions."""

    def test_success_keeps_fresh_and_updates_value(self):
        """Successful refresh replaces the value."""
        slot = make_slot()
        slot.fill("a")
        policy = slot.refresh_succeeded("b")

        assert slot.value == "b"
        assert slot.state == SlotState.FRESH
        assert policy == slot.base_policy

    def test_failure_enters_grace(self):
        """First failure keeps the value and arms the grace tier."""
        slot = make_slot(period=5.0, grace=10.0)
        slot.fill("a")
        policy = slot.refresh_failed()

        assert slot.state == SlotState.STALE_GRACE
        assert slot.value == "a"
        assert policy == RefreshPolicy(period=10.0, grace=None)

    def test_second_failure_evicts(self):
        """Grace is never granted twice in a row."""
        slot = make_slot()
        slot.fill("a")
        slot.refresh_failed()
        policy = slot.refresh_failed()

        assert policy is None
        assert slot.state == SlotState.EMPTY
        assert slot.policy is None

    def test_failure_without_grace_evicts(self):
        """With no validity configured a failure evicts immediately."""
        slot = make_slot(grace=None)
        slot.fill("a")

        assert slot.refresh_failed() is None
        assert slot.is_empty is True

    def test_success_in_grace_restores_base_policy(self):
        """Success in the grace tier restores full grace eligibility."""
        slot = make_slot(period=5.0, grace=10.0)
        slot.fill("a")
        slot.refresh_failed()
        policy = slot.refresh_succeeded("b")

        assert slot.state == SlotState.FRESH
        assert policy == RefreshPolicy(period=5.0, grace=10.0)

        # Next failure is absorbed by grace again
        assert slot.refresh_failed() == RefreshPolicy(period=10.0, grace=None)
        assert slot.value == "b"

    def test_refresh_does_not_change_generation(self):
        """Only synchronous fills move the generation."""
        slot = make_slot()
        slot.fill("a")
        slot.refresh_succeeded("b")
        slot.refresh_failed()

        assert slot.generation == 1

    def test_refresh_on_empty_slot_raises(self):
        """Refresh transitions require a held value."""
        slot = make_slot()
        with pytest.raises(SlotEmptyError):
            slot.refresh_succeeded("a")
        with pytest.raises(SlotEmptyError):
            slot.refresh_failed()

    def test_evict(self):
        slot = make_slot()
        slot.fill("a")
        slot.evict()

        assert slot.is_empty is True
        with pytest.raises(SlotEmptyError):
            _ = slot.value
