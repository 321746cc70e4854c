"""Tests for Promise Sanitization Tracker (C1).

Tests cover:
  - Test-name binding (track / untrack / rebinding)
  - Init and resolve accounting and the pending invariant
  - Untracked and unknown promise identities
  - Identity reuse and double settlement
  - Hook dispatch by event type and host installation
  - Exclusive-borrow enforcement
"""

import random
from unittest.mock import MagicMock

import pytest

from sanitest.promise_tracker import (
    HOOK_AFTER,
    HOOK_BEFORE,
    HOOK_INIT,
    HOOK_RESOLVE,
    PromiseMetricsTracker,
    TestMetrics,
    TrackerBorrowError,
)


@pytest.fixture
def tracker() -> PromiseMetricsTracker:
    return PromiseMetricsTracker()


# ── Binding Tests ──


class TestTrack:
    """Tests for binding the current test name."""

    def test_track_creates_zeroed_metrics(self, tracker):
        tracker.track("A")
        metrics = tracker.metrics("A")
        assert metrics == TestMetrics(0, 0)
        assert tracker.current_test == "A"

    def test_retrack_keeps_existing_metrics(self, tracker):
        tracker.track("A")
        tracker.initialized(1)
        tracker.track("B")
        tracker.track("A")
        assert tracker.metrics("A").promises_initialized == 1

    def test_rebinding_attributes_to_latest_name(self, tracker):
        tracker.track("A")
        tracker.track("B")
        tracker.initialized(1)
        tracker.initialized(2)
        assert tracker.metrics("A").promises_initialized == 0
        assert tracker.metrics("B").promises_initialized == 2

    def test_untrack_stops_attribution(self, tracker):
        tracker.track("A")
        tracker.untrack()
        tracker.initialized(1)
        assert tracker.metrics("A").promises_initialized == 0
        assert tracker.current_test is None

    def test_metrics_without_binding_is_none(self, tracker):
        assert tracker.metrics() is None
        assert tracker.current_pending() == 0


# ── Accounting Tests ──


class TestAccounting:
    """Tests for init/resolve bookkeeping."""

    def test_init_without_test_is_ignored(self, tracker):
        tracker.initialized(1)
        assert tracker.active_count == 0
        assert tracker.test_names() == []

    def test_pending_counts_unresolved(self, tracker):
        tracker.track("A")
        tracker.initialized(1)
        tracker.initialized(2)
        tracker.resolved(1)
        assert tracker.pending("A") == 1
        assert tracker.current_pending() == 1

    def test_resolved_after_rebinding_credits_owner(self, tracker):
        tracker.track("A")
        tracker.initialized(1)
        tracker.track("B")
        tracker.resolved(1)
        assert tracker.pending("A") == 0
        assert tracker.metrics("B").promises_resolved == 0

    def test_unknown_resolve_is_noop(self, tracker):
        tracker.track("A")
        tracker.initialized(1)
        tracker.resolved(999)
        assert tracker.metrics("A") == TestMetrics(1, 0)

    def test_resolve_of_promise_created_before_tracking(self, tracker):
        tracker.initialized(7)
        tracker.track("A")
        tracker.resolved(7)
        assert tracker.metrics("A") == TestMetrics(0, 0)

    def test_resolve_releases_active_record(self, tracker):
        tracker.track("A")
        tracker.initialized(1)
        tracker.initialized(2)
        assert tracker.active_count == 2
        tracker.resolved(1)
        assert tracker.active_count == 1
        tracker.resolved(2)
        assert tracker.active_count == 0
        assert tracker.metrics("A") == TestMetrics(2, 2)

    def test_double_resolve_counts_once(self, tracker):
        tracker.track("A")
        tracker.initialized(1)
        tracker.resolved(1)
        tracker.resolved(1)
        assert tracker.metrics("A") == TestMetrics(1, 1)

    def test_identity_reuse_rebinds_owner(self, tracker):
        tracker.track("A")
        tracker.initialized(1)
        tracker.track("B")
        tracker.initialized(1)
        tracker.resolved(1)
        assert tracker.pending("A") == 1
        assert tracker.pending("B") == 0

    def test_pending_unknown_name_is_zero(self, tracker):
        assert tracker.pending("never") == 0

    def test_random_replay_keeps_invariant(self, tracker):
        rng = random.Random(1234)
        tracker.track("A")
        live: list[int] = []
        inits = resolves = 0
        next_id = 0
        for _ in range(500):
            if live and rng.random() < 0.5:
                tracker.resolved(live.pop(rng.randrange(len(live))))
                resolves += 1
            else:
                tracker.initialized(next_id)
                live.append(next_id)
                next_id += 1
                inits += 1
            assert tracker.pending("A") == inits - resolves >= 0


# ── Hook Tests ──


class TestHook:
    """Tests for the lifecycle callback."""

    def test_hook_dispatches_init_and_resolve(self, tracker):
        tracker.track("A")
        tracker.hook(HOOK_INIT, 1)
        assert tracker.pending("A") == 1
        tracker.hook(HOOK_RESOLVE, 1)
        assert tracker.pending("A") == 0

    def test_hook_ignores_other_events(self, tracker):
        tracker.track("A")
        tracker.hook(HOOK_BEFORE, 1)
        tracker.hook(HOOK_AFTER, 1)
        tracker.hook("reject", 1)
        assert tracker.metrics("A") == TestMetrics(0, 0)

    def test_install_registers_hook(self, tracker):
        host = MagicMock()
        tracker.install(host)
        host.set_promise_hook.assert_called_once_with(tracker.hook)

    def test_reentrant_access_raises(self, tracker):
        tracker.track("A")
        with tracker._borrow_mut():
            with pytest.raises(TrackerBorrowError, match="already borrowed"):
                tracker.hook(HOOK_INIT, 1)
        # Borrow is released afterwards
        tracker.hook(HOOK_INIT, 1)
        assert tracker.pending("A") == 1


class TestTestMetrics:
    """Tests for the per-test counters."""

    def test_pending_property(self):
        assert TestMetrics(5, 3).pending == 2

    def test_invariant_violation_asserts(self):
        with pytest.raises(AssertionError, match="greater or equal"):
            TestMetrics(1, 2).pending
