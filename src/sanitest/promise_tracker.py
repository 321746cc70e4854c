"""Promise Sanitization Tracker (C1) - Detects promises leaked by a test.

Records promise creation and settlement events per logical test and exposes
pending-promise counts.  A non-zero count after a test finishes means the
test created asynchronous work it never waited for.

The tracker is driven by a single lifecycle callback (``hook``) installed on
a host that implements ``PromiseHookHost``.  State is mutated under an
exclusive borrow: the hook must never re-enter the tracker while a borrow is
held, and doing so raises ``TrackerBorrowError``.

Pure Python. No host dependency.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Protocol

logger = logging.getLogger(__name__)

# ── Constants ──

HOOK_INIT = "init"
HOOK_RESOLVE = "resolve"
HOOK_BEFORE = "before"
HOOK_AFTER = "after"

PromiseHook = Callable[[str, int], None]


# ── Exceptions ──


class TrackerError(Exception):
    """Base exception for promise tracker errors."""


class TrackerBorrowError(TrackerError):
    """Tracker state was accessed re-entrantly while already borrowed."""


class HookAlreadyInstalledError(TrackerError):
    """A promise hook is already installed on this host."""


# ── Host Capability ──


class PromiseHookHost(Protocol):
    """Anything that can deliver promise lifecycle events to one callback."""

    def set_promise_hook(self, hook: PromiseHook) -> None:
        ...


# ── Data Classes ──


@dataclass
class PromiseRecord:
    """An active promise owned by a tracked test.

    Attributes:
        promise_id: Opaque identity supplied by the host.
        test_name: Test that was current when the promise was created.
    """

    promise_id: int
    test_name: str


@dataclass
class TestMetrics:
    """Promise counters for one logical test."""

    __test__ = False

    promises_initialized: int = 0
    promises_resolved: int = 0

    @property
    def pending(self) -> int:
        assert self.promises_initialized >= self.promises_resolved, (
            "Initialized promises should be greater or equal to resolved promises"
        )
        return self.promises_initialized - self.promises_resolved


# ── Tracker ──


class PromiseMetricsTracker:
    """Process-wide promise bookkeeping, keyed by the current test name.

    Usage::

        tracker = PromiseMetricsTracker()
        tracker.install(host)
        tracker.track("reads config")
        ...  # run the test
        leaked = tracker.pending("reads config")

    Promises created while no test name is bound are never tracked, and
    settlement of an untracked promise is silently ignored.
    """

    def __init__(self) -> None:
        self._current: Optional[str] = None
        self._metrics: dict[str, TestMetrics] = {}
        self._active: dict[int, PromiseRecord] = {}
        self._borrowed = False

    @contextmanager
    def _borrow_mut(self) -> Iterator[None]:
        if self._borrowed:
            raise TrackerBorrowError(
                "Promise tracker state is already borrowed; "
                "the promise hook must not re-enter the tracker"
            )
        self._borrowed = True
        try:
            yield
        finally:
            self._borrowed = False

    @property
    def current_test(self) -> Optional[str]:
        return self._current

    @property
    def active_count(self) -> int:
        """Number of promises initialized under a test and not yet settled."""
        return len(self._active)

    # ── Binding ──

    def track(self, test_name: str) -> None:
        """Attribute all promises created from now on to ``test_name``."""
        with self._borrow_mut():
            self._current = test_name
            self._metrics.setdefault(test_name, TestMetrics())
        logger.debug("Tracking promises for test %r", test_name)

    def untrack(self) -> None:
        """Stop attributing new promises to any test."""
        with self._borrow_mut():
            self._current = None

    # ── Lifecycle Events ──

    def initialized(self, promise_id: int) -> None:
        with self._borrow_mut():
            if self._current is None:
                return
            stale = self._active.get(promise_id)
            if stale is not None:
                # Identity reused before the earlier promise settled.
                logger.debug(
                    "Promise identity %d reused (was owned by %r)",
                    promise_id, stale.test_name,
                )
            self._metrics[self._current].promises_initialized += 1
            self._active[promise_id] = PromiseRecord(promise_id, self._current)

    def resolved(self, promise_id: int) -> None:
        with self._borrow_mut():
            record = self._active.pop(promise_id, None)
            if record is None:
                return
            self._metrics[record.test_name].promises_resolved += 1

    def hook(self, hook_type: str, promise_id: int) -> None:
        """Lifecycle callback handed to the host.

        Only ``"init"`` and ``"resolve"`` events are relevant; anything else
        the host reports is ignored.
        """
        if hook_type == HOOK_INIT:
            self.initialized(promise_id)
        elif hook_type == HOOK_RESOLVE:
            self.resolved(promise_id)

    def install(self, host: PromiseHookHost) -> None:
        host.set_promise_hook(self.hook)

    # ── Queries ──

    def metrics(self, test_name: Optional[str] = None) -> Optional[TestMetrics]:
        """Metrics for ``test_name``, or for the current test if omitted."""
        name = self._current if test_name is None else test_name
        if name is None:
            return None
        return self._metrics.get(name)

    def pending(self, test_name: str) -> int:
        metrics = self._metrics.get(test_name)
        return metrics.pending if metrics is not None else 0

    def current_pending(self) -> int:
        """Pending count for the currently bound test, 0 when none is bound."""
        metrics = self.metrics()
        return metrics.pending if metrics is not None else 0

    def test_names(self) -> list[str]:
        return list(self._metrics)
