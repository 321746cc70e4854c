"""Adaptive Benchmark Runner (C3) - Convergence-based timing of one callable.

The callable is measured twice.  The first pass only warms up whatever
caching or specialization the callable depends on and is discarded; the
second pass is reported.

Each pass keeps an exponentially-weighted running average (decay 0.5) of
per-call wall-clock time and stops once the latest sample is within 5 parts
per million of that average.  A pass that never settles is cut off after
``max_samples`` calls and reported as not converged.

Pure Python. No host dependency.
"""

import logging
import time
import types
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

# ── Constants ──

NS_IN_MS = 1e6

DEFAULT_PASSES = 2
DEFAULT_THRESHOLD = 5e-6
DEFAULT_MAX_SAMPLES = 10_000_000


# ── Exceptions ──


class BenchError(Exception):
    """Base exception for benchmark runner errors."""


class BenchConfigError(BenchError):
    """Invalid benchmark configuration."""


# ── Data Classes ──


@dataclass
class BenchConfig:
    """Benchmark tuning.

    Attributes:
        passes: Outer passes; all but the last are warm-up.
        threshold: Relative deviation between the latest sample and the
            running average at which a pass is considered stable.
        max_samples: Per-pass call cap.  ``None`` removes the cap, in which
            case a callable whose timing never settles loops forever.
        receiver: Bound as the callable's first (``self``) parameter on
            every call.  ``None`` calls the callable bare.
    """

    passes: int = DEFAULT_PASSES
    threshold: float = DEFAULT_THRESHOLD
    max_samples: Optional[int] = DEFAULT_MAX_SAMPLES
    receiver: Any = None

    def __post_init__(self) -> None:
        if self.passes < 1:
            raise BenchConfigError(f"passes must be at least 1, got {self.passes}")
        if self.threshold <= 0:
            raise BenchConfigError(
                f"threshold must be positive, got {self.threshold}"
            )
        if self.max_samples is not None and self.max_samples < 1:
            raise BenchConfigError(
                f"max_samples must be at least 1 or None, got {self.max_samples}"
            )


@dataclass
class PassResult:
    """A single measurement pass."""

    mean_ns: float
    samples: int
    converged: bool


@dataclass
class BenchResult:
    """Outcome of a benchmark run.

    ``mean_ns`` and ``converged`` describe the last (reported) pass;
    ``passes`` keeps every pass, warm-up included.
    """

    mean_ns: float
    converged: bool
    passes: list[PassResult] = field(default_factory=list)

    @property
    def mean_ms(self) -> float:
        return self.mean_ns / NS_IN_MS

    @property
    def samples(self) -> int:
        return self.passes[-1].samples if self.passes else 0

    @property
    def total_samples(self) -> int:
        return sum(p.samples for p in self.passes)


# ── Runner ──


def _bind(func: Callable, receiver: Any) -> Callable[[], Any]:
    if receiver is None:
        return func
    return types.MethodType(func, receiver)


def _measure_pass(
    call: Callable[[], Any],
    threshold: float,
    max_samples: Optional[int],
    clock: Callable[[], int],
) -> PassResult:
    avg = 0.0
    sample = 1.0  # forces at least one call
    count = 0
    while abs(sample - avg) > threshold * sample:
        if max_samples is not None and count >= max_samples:
            return PassResult(mean_ns=avg, samples=count, converged=False)
        start = clock()
        call()
        sample = float(clock() - start)
        avg = (avg + sample) / 2.0
        count += 1
    return PassResult(mean_ns=avg, samples=count, converged=True)


def bench_detailed(
    func: Callable,
    config: Optional[BenchConfig] = None,
    clock: Optional[Callable[[], int]] = None,
) -> BenchResult:
    """Benchmark ``func`` and return per-pass detail.

    Exceptions raised by ``func`` propagate unchanged.
    """
    config = config or BenchConfig()
    clock = clock or time.perf_counter_ns
    call = _bind(func, config.receiver)
    name = getattr(func, "__qualname__", repr(func))

    passes: list[PassResult] = []
    for index in range(config.passes):
        result = _measure_pass(call, config.threshold, config.max_samples, clock)
        logger.debug(
            "Bench %s pass %d: %.1f ns after %d samples%s",
            name, index + 1, result.mean_ns, result.samples,
            "" if result.converged else " (did not converge)",
        )
        passes.append(result)

    last = passes[-1]
    if not last.converged:
        logger.warning(
            "Benchmark of %s did not converge within %d samples; "
            "reporting best-effort average",
            name, last.samples,
        )
    return BenchResult(mean_ns=last.mean_ns, converged=last.converged, passes=passes)


def bench(
    func: Callable,
    config: Optional[BenchConfig] = None,
    clock: Optional[Callable[[], int]] = None,
) -> float:
    """Milliseconds one call of ``func`` takes, with nanosecond precision."""
    return bench_detailed(func, config, clock).mean_ms


def format_duration(ms: float) -> str:
    """Render a millisecond duration with a readable unit."""
    if ms < 0.001:
        return f"{ms * NS_IN_MS:.1f} ns"
    if ms < 1:
        return f"{ms * 1000:.2f} us"
    if ms < 1000:
        return f"{ms:.3f} ms"
    return f"{ms / 1000:.3f} s"
