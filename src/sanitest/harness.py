"""Instrumentation context (D1) - The dispatch layer between a test framework and C1-C4.

An ``InstrumentationContext`` is created once per process and passed
explicitly to whatever drives test execution.  It owns the optional promise
tracker and op tracker, and exposes the reported values the framework
needs: pending promises, outstanding ops, benchmark timings and diffs.

``run_test`` runs one sync or async test under the sanitizers and returns a
``TestOutcome``.  Leaked promises and outstanding ops are test failures, not
exceptions.
"""

import asyncio
import inspect
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from sanitest.asyncio_host import AsyncioPromiseHost
from sanitest.bench import BenchConfig, BenchResult, bench_detailed
from sanitest.diff import DEFAULT_DIFF_CONFIG, DiffBuildConfig, diff
from sanitest.ops import (
    OpMetricsSummaryTracker,
    outstanding,
    wait_until_quiescent_async,
)
from sanitest.promise_tracker import PromiseHookHost, PromiseMetricsTracker
from sanitest.runtime_state import (
    STATE_DEFAULT,
    parse_runtime_state,
    sanitizes_promises,
    tracks_ops,
)

logger = logging.getLogger(__name__)

# ── Constants ──

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})

_DEFAULT_QUIESCENCE_TIMEOUT_S = 1.0


# ── Exceptions ──


class HarnessError(Exception):
    """Base exception for instrumentation context errors."""


# ── Configuration ──


def _env_bool(name: str) -> Optional[bool]:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise HarnessError(f"{name} must be a boolean, got {raw!r}")


@dataclass
class InstrumentationConfig:
    """Which instrumentation is active and how it is tuned.

    Attributes:
        runtime_state: ``"default"``, ``"test"`` or ``"bench"``.
        sanitize_promises: Track promises per test.  ``None`` follows the
            runtime state (on in test mode only).
        track_ops: Count host operations.  ``None`` follows the runtime
            state (on in test and bench mode).
        diff_config: Rendering of assertion diffs.
        bench_config: Benchmark tuning.
        quiescence_timeout_s: How long a finished test may wait for its
            outstanding ops to drain.
    """

    runtime_state: str = STATE_DEFAULT
    sanitize_promises: Optional[bool] = None
    track_ops: Optional[bool] = None
    diff_config: DiffBuildConfig = DEFAULT_DIFF_CONFIG
    bench_config: BenchConfig = field(default_factory=BenchConfig)
    quiescence_timeout_s: float = _DEFAULT_QUIESCENCE_TIMEOUT_S

    def __post_init__(self) -> None:
        self.runtime_state = parse_runtime_state(self.runtime_state)
        if self.sanitize_promises is None:
            self.sanitize_promises = sanitizes_promises(self.runtime_state)
        if self.track_ops is None:
            self.track_ops = tracks_ops(self.runtime_state)

    @classmethod
    def from_env(cls) -> "InstrumentationConfig":
        """Build a config from ``SANITEST_*`` environment variables."""
        bench_config = BenchConfig()
        max_samples = os.environ.get("SANITEST_BENCH_MAX_SAMPLES")
        if max_samples:
            try:
                bench_config = BenchConfig(max_samples=int(max_samples))
            except ValueError as exc:
                raise HarnessError(
                    f"SANITEST_BENCH_MAX_SAMPLES must be an integer, got {max_samples!r}"
                ) from exc
        return cls(
            runtime_state=os.environ.get("SANITEST_MODE", STATE_DEFAULT),
            sanitize_promises=_env_bool("SANITEST_SANITIZE_PROMISES"),
            track_ops=_env_bool("SANITEST_TRACK_OPS"),
            bench_config=bench_config,
        )


# ── Context ──


class InstrumentationContext:
    """Process-wide instrumentation state, threaded explicitly.

    Usage::

        ctx = InstrumentationContext(InstrumentationConfig(runtime_state="test"))
        outcome = run_test(ctx, "adds numbers", test_adds_numbers)
    """

    def __init__(self, config: Optional[InstrumentationConfig] = None) -> None:
        self.config = config or InstrumentationConfig()
        self.promise_tracker: Optional[PromiseMetricsTracker] = (
            PromiseMetricsTracker() if self.config.sanitize_promises else None
        )
        self.op_tracker: Optional[OpMetricsSummaryTracker] = (
            OpMetricsSummaryTracker() if self.config.track_ops else None
        )

    @property
    def runtime_state(self) -> str:
        return self.config.runtime_state

    def install_promise_hook(self, host: PromiseHookHost) -> None:
        if self.promise_tracker is None:
            return
        self.promise_tracker.install(host)

    def set_promise_sanitized_test_name(self, test_name: str) -> None:
        if self.promise_tracker is None:
            return
        self.promise_tracker.track(test_name)

    def pending_promises(self, test_name: Optional[str] = None) -> int:
        """Pending promises of ``test_name`` (default: the current test)."""
        if self.promise_tracker is None:
            return 0
        if test_name is None:
            return self.promise_tracker.current_pending()
        return self.promise_tracker.pending(test_name)

    def outstanding_ops(self) -> int:
        return outstanding(self.op_tracker)

    def bench_fn(self, func: Callable) -> float:
        return self.bench_detailed(func).mean_ms

    def bench_detailed(self, func: Callable) -> BenchResult:
        return bench_detailed(func, self.config.bench_config)

    def diff_str(self, before: str, after: str) -> str:
        return diff(before, after, self.config.diff_config)


# ── Test Execution ──


@dataclass
class TestOutcome:
    """Result of one test run under the sanitizers.

    Attributes:
        name: Test name.
        passed: True if the test body succeeded and nothing leaked.
        duration_ms: Wall-clock time of the test body.
        pending_promises: Promises created by the test and never settled.
        outstanding_ops: Async host calls still in flight after draining.
        error: ``"ExcType: message"`` if the test body raised.
        failures: Human-readable failure reasons.
    """

    __test__ = False

    name: str
    passed: bool = True
    duration_ms: float = 0.0
    pending_promises: int = 0
    outstanding_ops: int = 0
    error: str = ""
    failures: list[str] = field(default_factory=list)


async def _drain(ctx: InstrumentationContext) -> None:
    # Let done-callbacks of finished tasks run before counts are read.
    await asyncio.sleep(0)
    if ctx.op_tracker is not None:
        await wait_until_quiescent_async(
            ctx.op_tracker, timeout_s=ctx.config.quiescence_timeout_s,
        )


def _cancel_leftovers(loop: asyncio.AbstractEventLoop) -> None:
    leftovers = [task for task in asyncio.all_tasks(loop) if not task.done()]
    if not leftovers:
        return
    for task in leftovers:
        task.cancel()
    loop.run_until_complete(asyncio.gather(*leftovers, return_exceptions=True))


def _run_async_test(
    ctx: InstrumentationContext, name: str, func: Callable,
) -> tuple[Optional[BaseException], int, int]:
    """Run a coroutine test on a fresh loop.

    Returns the error, pending promises and outstanding ops as measured
    after draining and before leftover tasks are cancelled, since
    cancellation settles them.
    """
    loop = asyncio.new_event_loop()
    host = AsyncioPromiseHost(loop)
    ctx.install_promise_hook(host)
    error: Optional[BaseException] = None
    try:
        try:
            loop.run_until_complete(func())
        except Exception as exc:
            error = exc
        if ctx.promise_tracker is not None:
            ctx.promise_tracker.untrack()
        loop.run_until_complete(_drain(ctx))
        return error, ctx.pending_promises(name), ctx.outstanding_ops()
    finally:
        host.remove_promise_hook()
        _cancel_leftovers(loop)
        loop.close()


def _run_sync_test(
    ctx: InstrumentationContext, name: str, func: Callable,
) -> tuple[Optional[BaseException], int, int]:
    error: Optional[BaseException] = None
    try:
        func()
    except Exception as exc:
        error = exc
    if ctx.promise_tracker is not None:
        ctx.promise_tracker.untrack()
    return error, ctx.pending_promises(name), ctx.outstanding_ops()


def run_test(ctx: InstrumentationContext, name: str, func: Callable) -> TestOutcome:
    """Run ``func`` as test ``name`` and check it left nothing behind."""
    outcome = TestOutcome(name=name)
    ops_before = ctx.outstanding_ops()
    ctx.set_promise_sanitized_test_name(name)

    started = time.perf_counter()
    if inspect.iscoroutinefunction(func):
        error, pending, ops_after = _run_async_test(ctx, name, func)
    else:
        error, pending, ops_after = _run_sync_test(ctx, name, func)
    outcome.duration_ms = (time.perf_counter() - started) * 1000

    if error is not None:
        outcome.error = f"{type(error).__name__}: {error}"
        outcome.failures.append(outcome.error)

    outcome.pending_promises = pending
    if outcome.pending_promises:
        outcome.failures.append(
            f"Test {name!r} leaked {outcome.pending_promises} pending promise(s)"
        )
        logger.warning(
            "Test %r leaked %d pending promise(s)", name, outcome.pending_promises,
        )

    outcome.outstanding_ops = max(0, ops_after - ops_before)
    if outcome.outstanding_ops:
        outcome.failures.append(
            f"Test {name!r} left {outcome.outstanding_ops} async op(s) outstanding"
        )
        logger.warning(
            "Test %r left %d async op(s) outstanding", name, outcome.outstanding_ops,
        )

    outcome.passed = not outcome.failures
    return outcome


# ── Report ──


@dataclass
class TestReport:
    """Outcomes of a test run."""

    __test__ = False

    outcomes: list[TestOutcome] = field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for o in self.outcomes if o.passed)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.passed)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def as_text(self) -> str:
        """Render the report as readable plain text."""
        lines: list[str] = []
        for o in self.outcomes:
            status = "ok" if o.passed else "FAILED"
            lines.append(f"{o.name} ... {status} ({o.duration_ms:.2f} ms)")
            for failure in o.failures:
                lines.append(f"    {failure}")
        lines.append("")
        lines.append(
            f"{len(self.outcomes)} tests: {self.passed} passed, {self.failed} failed"
        )
        return "\n".join(lines)


def run_tests(
    ctx: InstrumentationContext,
    tests: Iterable[tuple[str, Callable]],
) -> TestReport:
    """Run ``(name, func)`` pairs in order."""
    report = TestReport()
    for name, func in tests:
        report.outcomes.append(run_test(ctx, name, func))
    logger.info(
        "Ran %d tests: %d passed, %d failed",
        len(report.outcomes), report.passed, report.failed,
    )
    return report
