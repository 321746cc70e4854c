"""sanitest CLI - diff texts, benchmark callables, run sanitized tests.

Usage::

    python -m sanitest diff BEFORE AFTER [options]
    python -m sanitest bench MODULE:CALLABLE [options]
    python -m sanitest test PATH [options]

Options::

    --context N           Unchanged lines shown around each change (diff)
    --no-edges            Do not force the first and last line into view (diff)
    --color               Color insert/delete markers (diff)
    --max-samples N       Per-pass sample cap, 0 for none (bench)
    --mode MODE           Runtime state: default, test or bench (test)
    --verbose / -v        Enable verbose logging
"""

import argparse
import importlib
import importlib.util
import inspect
import logging
import sys
from pathlib import Path
from typing import Callable

from sanitest.bench import BenchConfig, BenchConfigError, format_duration
from sanitest.diff import DiffBuildConfig
from sanitest.harness import (
    InstrumentationConfig,
    InstrumentationContext,
    run_tests,
)
from sanitest.runtime_state import RUNTIME_STATES, STATE_TEST


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _load_callable(target: str) -> Callable:
    """Resolve ``package.module:attr.path`` to an object."""
    module_name, sep, attr_path = target.partition(":")
    if not sep or not module_name or not attr_path:
        raise ValueError(f"Expected MODULE:CALLABLE, got {target!r}")
    obj = importlib.import_module(module_name)
    for attr in attr_path.split("."):
        obj = getattr(obj, attr)
    if not callable(obj):
        raise ValueError(f"{target} is not callable")
    return obj


def _load_tests(path: Path) -> list[tuple[str, Callable]]:
    """Module-level ``test_*`` functions of a Python file, in source order."""
    spec = importlib.util.spec_from_file_location(path.stem, path)
    if spec is None or spec.loader is None:
        raise ValueError(f"Cannot import {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    tests = [
        (name, func)
        for name, func in vars(module).items()
        if name.startswith("test_") and inspect.isfunction(func)
    ]
    tests.sort(key=lambda item: item[1].__code__.co_firstlineno)
    return tests


# ── Commands ──


def _cmd_diff(args: argparse.Namespace) -> int:
    config = DiffBuildConfig(
        lines_before=args.context,
        lines_after=args.context,
        print_first_and_last_lines=not args.no_edges,
        color=args.color,
    )
    ctx = InstrumentationContext(InstrumentationConfig(diff_config=config))
    rendered = ctx.diff_str(_read_text(args.before), _read_text(args.after))
    if not rendered:
        return 0
    sys.stdout.write(rendered)
    return 1


def _cmd_bench(args: argparse.Namespace) -> int:
    func = _load_callable(args.target)
    bench_config = BenchConfig(max_samples=args.max_samples or None)
    ctx = InstrumentationContext(
        InstrumentationConfig(runtime_state="bench", bench_config=bench_config)
    )
    result = ctx.bench_detailed(func)
    note = "" if result.converged else " (did not converge)"
    print(
        f"{args.target}: {format_duration(result.mean_ms)}/iter "
        f"over {result.samples} samples{note}"
    )
    return 0


def _cmd_test(args: argparse.Namespace) -> int:
    tests = _load_tests(args.path)
    ctx = InstrumentationContext(InstrumentationConfig(runtime_state=args.mode))
    report = run_tests(ctx, tests)
    print(report.as_text())
    return 0 if report.success else 1


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="sanitest",
        description=(
            "sanitest: test and benchmark instrumentation.\n\n"
            "Render line diffs, benchmark a callable until its timing "
            "stabilizes, or run test functions with promise and op "
            "sanitizers enabled."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=False,
        help="Enable verbose logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    diff_parser = sub.add_parser("diff", help="Show a line diff of two files")
    diff_parser.add_argument("before", type=Path, help="Original file")
    diff_parser.add_argument("after", type=Path, help="Changed file")
    diff_parser.add_argument(
        "--context",
        type=int,
        default=2,
        help="Unchanged lines shown before and after each change",
    )
    diff_parser.add_argument(
        "--no-edges",
        action="store_true",
        default=False,
        help="Do not always show the first and last line",
    )
    diff_parser.add_argument(
        "--color",
        action="store_true",
        default=False,
        help="Color insert and delete markers",
    )
    diff_parser.set_defaults(handler=_cmd_diff)

    bench_parser = sub.add_parser("bench", help="Benchmark a zero-argument callable")
    bench_parser.add_argument("target", help="Callable as MODULE:CALLABLE")
    bench_parser.add_argument(
        "--max-samples",
        type=int,
        default=BenchConfig().max_samples,
        help="Per-pass sample cap (0 for no cap)",
    )
    bench_parser.set_defaults(handler=_cmd_bench)

    test_parser = sub.add_parser("test", help="Run test_* functions of a file")
    test_parser.add_argument("path", type=Path, help="Python file with tests")
    test_parser.add_argument(
        "--mode",
        choices=sorted(RUNTIME_STATES),
        default=STATE_TEST,
        help="Runtime state controlling which sanitizers are active",
    )
    test_parser.set_defaults(handler=_cmd_test)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.  Returns exit code (0=success, 1=failure/differences, 2=error)."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    try:
        return args.handler(args)
    except (OSError, ValueError, ImportError, AttributeError, BenchConfigError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
