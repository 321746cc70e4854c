"""Tests for Outstanding-Operations Counter (C2).

Tests cover:
  - outstanding() with and without an aggregator
  - Per-op dispatch/completion accounting and aggregation
  - Over-completion errors
  - Quiescence polling (sync with fake clock, async on a real loop)
"""

import asyncio

import pytest

from sanitest.ops import (
    OpAccountingError,
    OpMetricsSummary,
    OpMetricsSummaryTracker,
    outstanding,
    wait_until_quiescent,
    wait_until_quiescent_async,
)


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class StubTracker:
    """Aggregator returning a scripted sequence of summaries."""

    def __init__(self, pending: list[int]):
        self._pending = list(pending)

    def aggregate(self) -> OpMetricsSummary:
        count = self._pending.pop(0) if len(self._pending) > 1 else self._pending[0]
        return OpMetricsSummary(ops_dispatched_async=10 + count, ops_completed_async=10)


# ── outstanding() ──


class TestOutstanding:
    """Tests for the snapshot counter."""

    def test_no_tracker_is_zero(self):
        assert outstanding(None) == 0

    def test_equal_counts_is_zero(self):
        tracker = OpMetricsSummaryTracker()
        tracker.dispatch("read", is_async=True)
        tracker.complete("read")
        assert outstanding(tracker) == 0

    @pytest.mark.parametrize("dispatched,completed", [(0, 0), (3, 1), (10, 10), (7, 0)])
    def test_difference(self, dispatched, completed):
        tracker = OpMetricsSummaryTracker()
        for _ in range(dispatched):
            tracker.dispatch("write")
        for _ in range(completed):
            tracker.complete("write")
        assert outstanding(tracker) == dispatched - completed

    def test_sync_ops_never_outstanding(self):
        tracker = OpMetricsSummaryTracker()
        tracker.dispatch("stat", is_async=False)
        tracker.dispatch("stat", is_async=False)
        assert outstanding(tracker) == 0
        assert tracker.aggregate().ops_dispatched == 2


# ── Tracker ──


class TestOpMetricsSummaryTracker:
    """Tests for the host-side accounting."""

    def test_aggregate_sums_all_ops(self):
        tracker = OpMetricsSummaryTracker()
        tracker.dispatch("read")
        tracker.dispatch("read")
        tracker.dispatch("write")
        tracker.dispatch("stat", is_async=False)
        tracker.complete("read")
        summary = tracker.aggregate()
        assert summary.ops_dispatched_async == 3
        assert summary.ops_completed_async == 1
        assert summary.ops_dispatched_sync == 1
        assert summary.ops_pending == 2
        assert summary.has_pending_ops()

    def test_per_op_metrics(self):
        tracker = OpMetricsSummaryTracker()
        tracker.dispatch("read")
        tracker.complete("read", failed=True)
        assert tracker.op("read").errors == 1
        assert tracker.op("missing").dispatched_async == 0
        assert tracker.op_names() == ["read"]

    def test_complete_unknown_op_raises(self):
        tracker = OpMetricsSummaryTracker()
        with pytest.raises(OpAccountingError, match="'read'"):
            tracker.complete("read")

    def test_over_completion_raises(self):
        tracker = OpMetricsSummaryTracker()
        tracker.dispatch("read")
        tracker.complete("read")
        with pytest.raises(OpAccountingError):
            tracker.complete("read")


# ── Quiescence ──


class TestWaitUntilQuiescent:
    """Tests for stable-zero polling."""

    def test_no_tracker_is_quiescent(self):
        clock = FakeClock()
        result = wait_until_quiescent(
            None, stable_reads=3, sleep=clock.sleep, monotonic=clock.monotonic,
        )
        assert result.quiescent
        assert result.polls == 3

    def test_requires_consecutive_zero_reads(self):
        clock = FakeClock()
        tracker = StubTracker([0, 1, 0, 0, 0])
        result = wait_until_quiescent(
            tracker, stable_reads=3, sleep=clock.sleep, monotonic=clock.monotonic,
        )
        assert result.quiescent
        assert result.readings == [0, 1, 0, 0, 0]

    def test_times_out_with_last_reading(self):
        clock = FakeClock()
        tracker = StubTracker([2])
        result = wait_until_quiescent(
            tracker,
            poll_interval_s=0.1,
            timeout_s=1.0,
            sleep=clock.sleep,
            monotonic=clock.monotonic,
        )
        assert not result.quiescent
        assert result.outstanding == 2
        assert clock.now >= 1.0

    @pytest.mark.parametrize("stable_reads", [0, -1])
    def test_rejects_fewer_than_one_stable_read(self, stable_reads):
        clock = FakeClock()
        tracker = StubTracker([4])
        with pytest.raises(ValueError, match="stable_reads must be at least 1"):
            wait_until_quiescent(
                tracker,
                stable_reads=stable_reads,
                sleep=clock.sleep,
                monotonic=clock.monotonic,
            )
        assert clock.sleeps == []

    def test_async_rejects_zero_stable_reads(self):
        tracker = StubTracker([4])
        with pytest.raises(ValueError, match="stable_reads must be at least 1"):
            asyncio.run(wait_until_quiescent_async(tracker, stable_reads=0))

    def test_sync_and_async_agree(self):
        readings = [2, 0, 1, 0, 0]
        clock = FakeClock()
        sync_result = wait_until_quiescent(
            StubTracker(readings),
            stable_reads=2,
            sleep=clock.sleep,
            monotonic=clock.monotonic,
        )
        async_result = asyncio.run(
            wait_until_quiescent_async(StubTracker(readings), stable_reads=2, timeout_s=2.0)
        )
        assert sync_result == async_result
        assert sync_result.polls == 5

    def test_async_waits_for_completion(self):
        tracker = OpMetricsSummaryTracker()

        async def main():
            tracker.dispatch("read")

            async def finish():
                await asyncio.sleep(0.01)
                tracker.complete("read")

            task = asyncio.create_task(finish())
            result = await wait_until_quiescent_async(tracker, timeout_s=2.0)
            await task
            return result

        result = asyncio.run(main())
        assert result.quiescent
        assert result.readings[0] == 1
        assert result.outstanding == 0

    def test_async_times_out(self):
        tracker = OpMetricsSummaryTracker()
        tracker.dispatch("read")
        result = asyncio.run(
            wait_until_quiescent_async(tracker, poll_interval_s=0.001, timeout_s=0.02)
        )
        assert not result.quiescent
        assert result.outstanding == 1
