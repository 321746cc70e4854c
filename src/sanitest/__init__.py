"""sanitest: test and benchmark instrumentation for a script execution host."""

from sanitest.promise_tracker import (
    HookAlreadyInstalledError,
    PromiseHookHost,
    PromiseMetricsTracker,
    PromiseRecord,
    TestMetrics,
    TrackerBorrowError,
    TrackerError,
)
from sanitest.ops import (
    OpAccountingError,
    OpMetrics,
    OpMetricsSummary,
    OpMetricsSummaryTracker,
    QuiescenceResult,
    outstanding,
    wait_until_quiescent,
    wait_until_quiescent_async,
)
from sanitest.bench import (
    BenchConfig,
    BenchConfigError,
    BenchError,
    BenchResult,
    PassResult,
    bench,
    bench_detailed,
    format_duration,
)
from sanitest.diff import (
    DEFAULT_DIFF_CONFIG,
    DiffBuildConfig,
    DiffConfigError,
    DiffError,
    DiffHunk,
    DiffInputError,
    DiffOp,
    InternedInput,
    diff,
    diff_hunks,
    diff_ops,
    histogram_diff,
    myers_diff,
)
from sanitest.asyncio_host import AsyncioPromiseHost, instrument_op
from sanitest.runtime_state import RuntimeStateError, parse_runtime_state
from sanitest.assertions import TextMismatchError, assert_text_equal
from sanitest.harness import (
    HarnessError,
    InstrumentationConfig,
    InstrumentationContext,
    TestOutcome,
    TestReport,
    run_test,
    run_tests,
)

__all__ = [
    # Promise Sanitization Tracker (C1)
    "PromiseMetricsTracker",
    "PromiseHookHost",
    "PromiseRecord",
    "TestMetrics",
    "TrackerError",
    "TrackerBorrowError",
    "HookAlreadyInstalledError",
    # Outstanding-Operations Counter (C2)
    "outstanding",
    "wait_until_quiescent",
    "wait_until_quiescent_async",
    "OpMetrics",
    "OpMetricsSummary",
    "OpMetricsSummaryTracker",
    "QuiescenceResult",
    "OpAccountingError",
    # Adaptive Benchmark Runner (C3)
    "bench",
    "bench_detailed",
    "format_duration",
    "BenchConfig",
    "BenchResult",
    "PassResult",
    "BenchError",
    "BenchConfigError",
    # Diff Engine (C4)
    "diff",
    "diff_ops",
    "diff_hunks",
    "histogram_diff",
    "myers_diff",
    "InternedInput",
    "DiffBuildConfig",
    "DEFAULT_DIFF_CONFIG",
    "DiffOp",
    "DiffHunk",
    "DiffError",
    "DiffInputError",
    "DiffConfigError",
    # asyncio host
    "AsyncioPromiseHost",
    "instrument_op",
    # Runtime state
    "parse_runtime_state",
    "RuntimeStateError",
    # Assertions (D2)
    "assert_text_equal",
    "TextMismatchError",
    # Instrumentation context (D1)
    "InstrumentationConfig",
    "InstrumentationContext",
    "TestOutcome",
    "TestReport",
    "run_test",
    "run_tests",
    "HarnessError",
]
