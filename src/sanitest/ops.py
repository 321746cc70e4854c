"""Outstanding-Operations Counter (C2) - Asynchronous host-call accounting.

The host-call layer records every operation it dispatches in an
``OpMetricsSummaryTracker``.  This module reads the aggregate and answers a
single question: how many asynchronous operations are still in flight?
A test or benchmark unit is only finished once that number is zero.

Reads are snapshots and never block.  A single zero reading is not proof of
quiescence, so ``wait_until_quiescent`` polls until the count is stable.

Pure Python. No host dependency.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# ── Constants ──

_DEFAULT_POLL_INTERVAL_S = 0.001
_DEFAULT_STABLE_READS = 3
_DEFAULT_QUIESCENCE_TIMEOUT_S = 5.0


# ── Exceptions ──


class OpAccountingError(Exception):
    """More operations were completed than were dispatched."""


# ── Data Classes ──


@dataclass
class OpMetrics:
    """Counters for a single named operation."""

    dispatched_sync: int = 0
    dispatched_async: int = 0
    completed_async: int = 0
    errors: int = 0


@dataclass
class OpMetricsSummary:
    """Aggregate counters across every operation.

    Attributes:
        ops_dispatched_sync: Synchronous calls made.
        ops_dispatched_async: Asynchronous calls started.
        ops_completed_async: Asynchronous calls that have finished.
    """

    ops_dispatched_sync: int = 0
    ops_dispatched_async: int = 0
    ops_completed_async: int = 0

    @property
    def ops_dispatched(self) -> int:
        return self.ops_dispatched_sync + self.ops_dispatched_async

    @property
    def ops_pending(self) -> int:
        return self.ops_dispatched_async - self.ops_completed_async

    def has_pending_ops(self) -> bool:
        return self.ops_pending > 0


# ── Tracker ──


class OpMetricsSummaryTracker:
    """Per-operation dispatch/completion counters kept by the host-call layer.

    Usage::

        tracker = OpMetricsSummaryTracker()
        tracker.dispatch("read_file", is_async=True)
        ...
        tracker.complete("read_file")
        assert outstanding(tracker) == 0
    """

    def __init__(self) -> None:
        self._ops: dict[str, OpMetrics] = {}

    def dispatch(self, name: str, is_async: bool = True) -> None:
        metrics = self._ops.setdefault(name, OpMetrics())
        if is_async:
            metrics.dispatched_async += 1
        else:
            metrics.dispatched_sync += 1

    def complete(self, name: str, failed: bool = False) -> None:
        metrics = self._ops.get(name)
        if metrics is None or metrics.completed_async >= metrics.dispatched_async:
            raise OpAccountingError(
                f"Operation {name!r} completed more times than it was dispatched"
            )
        metrics.completed_async += 1
        if failed:
            metrics.errors += 1

    def op(self, name: str) -> OpMetrics:
        return self._ops.get(name, OpMetrics())

    def op_names(self) -> list[str]:
        return sorted(self._ops)

    def aggregate(self) -> OpMetricsSummary:
        summary = OpMetricsSummary()
        for metrics in self._ops.values():
            summary.ops_dispatched_sync += metrics.dispatched_sync
            summary.ops_dispatched_async += metrics.dispatched_async
            summary.ops_completed_async += metrics.completed_async
        return summary


# ── Queries ──


def outstanding(tracker: Optional[OpMetricsSummaryTracker]) -> int:
    """Asynchronous operations dispatched but not yet completed.

    Returns 0 when no tracker is installed (instrumentation disabled).
    """
    if tracker is None:
        return 0
    summary = tracker.aggregate()
    return summary.ops_dispatched_async - summary.ops_completed_async


@dataclass
class QuiescenceResult:
    """Outcome of polling for quiescence."""

    outstanding: int
    polls: int
    quiescent: bool
    readings: list[int] = field(default_factory=list)


class _QuiescencePoll:
    """Reading and decision step shared by the sync and async waits."""

    def __init__(self, tracker: Optional[OpMetricsSummaryTracker], stable_reads: int) -> None:
        if stable_reads < 1:
            raise ValueError(f"stable_reads must be at least 1, got {stable_reads}")
        self._tracker = tracker
        self._stable_reads = stable_reads
        self._zeros = 0
        self.result = QuiescenceResult(outstanding=0, polls=0, quiescent=False)

    def read(self) -> bool:
        """Take one reading; True once enough consecutive zeros were seen."""
        count = outstanding(self._tracker)
        self.result.polls += 1
        self.result.readings.append(count)
        self.result.outstanding = count
        self._zeros = self._zeros + 1 if count == 0 else 0
        if self._zeros >= self._stable_reads:
            self.result.quiescent = True
        return self.result.quiescent

    def give_up(self) -> QuiescenceResult:
        logger.warning(
            "Gave up waiting for quiescence: %d ops outstanding after %d polls",
            self.result.outstanding, self.result.polls,
        )
        return self.result


def wait_until_quiescent(
    tracker: Optional[OpMetricsSummaryTracker],
    stable_reads: int = _DEFAULT_STABLE_READS,
    poll_interval_s: float = _DEFAULT_POLL_INTERVAL_S,
    timeout_s: float = _DEFAULT_QUIESCENCE_TIMEOUT_S,
    sleep: Callable[[float], None] = time.sleep,
    monotonic: Callable[[], float] = time.monotonic,
) -> QuiescenceResult:
    """Poll ``outstanding`` until it reads 0 ``stable_reads`` times in a row.

    Gives up after ``timeout_s`` and reports the last reading.  Work that is
    only completed by the event loop will never drain here; use
    ``wait_until_quiescent_async`` from inside a running loop.

    Raises:
        ValueError: If ``stable_reads`` is less than 1.
    """
    poll = _QuiescencePoll(tracker, stable_reads)
    deadline = monotonic() + timeout_s
    while not poll.read():
        if monotonic() >= deadline:
            return poll.give_up()
        sleep(poll_interval_s)
    return poll.result


async def wait_until_quiescent_async(
    tracker: Optional[OpMetricsSummaryTracker],
    stable_reads: int = _DEFAULT_STABLE_READS,
    poll_interval_s: float = _DEFAULT_POLL_INTERVAL_S,
    timeout_s: float = _DEFAULT_QUIESCENCE_TIMEOUT_S,
) -> QuiescenceResult:
    """Like ``wait_until_quiescent`` but yields to the event loop between polls."""
    poll = _QuiescencePoll(tracker, stable_reads)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    while not poll.read():
        if loop.time() >= deadline:
            return poll.give_up()
        await asyncio.sleep(poll_interval_s)
    return poll.result
