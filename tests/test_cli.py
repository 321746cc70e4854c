"""Tests for the sanitest CLI.

Tests cover:
  - Argument parsing per subcommand
  - diff exit codes and output
  - bench against an importable callable
  - test discovery and sanitized execution of a file
  - Error reporting for bad targets
"""

import sys
import textwrap

import pytest

from sanitest.cli import _load_callable, _load_tests, build_parser, main


@pytest.fixture
def bench_module(tmp_path, monkeypatch):
    (tmp_path / "bench_target_mod.py").write_text(textwrap.dedent("""\
        def work():
            return sum(range(10))

        VALUE = 3
    """))
    monkeypatch.syspath_prepend(str(tmp_path))
    yield "bench_target_mod"
    sys.modules.pop("bench_target_mod", None)


class TestParser:
    """Tests for argument parsing."""

    def test_diff_defaults(self):
        args = build_parser().parse_args(["diff", "a.txt", "b.txt"])
        assert args.context == 2
        assert not args.no_edges
        assert not args.color

    def test_test_mode_default(self):
        args = build_parser().parse_args(["test", "tests.py"])
        assert args.mode == "test"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestDiffCommand:
    """Tests for ``sanitest diff``."""

    def test_identical_files_exit_zero(self, tmp_path, capsys):
        a = tmp_path / "a.txt"
        a.write_text("same\n")
        assert main(["diff", str(a), str(a)]) == 0
        assert capsys.readouterr().out == ""

    def test_different_files_exit_one(self, tmp_path, capsys):
        a = tmp_path / "a.txt"
        b = tmp_path / "b.txt"
        a.write_text("a\nb\nc\n")
        b.write_text("a\nx\nc\n")
        assert main(["diff", "--context", "1", str(a), str(b)]) == 1
        assert capsys.readouterr().out == "  a\n- b\n+ x\n  c\n"

    def test_missing_file_exit_two(self, tmp_path, capsys):
        missing = tmp_path / "missing.txt"
        assert main(["diff", str(missing), str(missing)]) == 2
        assert "Error:" in capsys.readouterr().err


class TestBenchCommand:
    """Tests for ``sanitest bench``."""

    def test_load_callable(self, bench_module):
        func = _load_callable(f"{bench_module}:work")
        assert func() == 45

    @pytest.mark.parametrize("target", ["no_colon", ":work", "mod:"])
    def test_bad_target_format(self, target):
        with pytest.raises(ValueError, match="MODULE:CALLABLE"):
            _load_callable(target)

    def test_non_callable_rejected(self, bench_module):
        with pytest.raises(ValueError, match="not callable"):
            _load_callable(f"{bench_module}:VALUE")

    def test_bench_prints_timing(self, bench_module, capsys):
        assert main(["bench", f"{bench_module}:work", "--max-samples", "100"]) == 0
        out = capsys.readouterr().out
        assert out.startswith(f"{bench_module}:work: ")
        assert "/iter over" in out


class TestTestCommand:
    """Tests for ``sanitest test``."""

    def test_discovers_in_source_order(self, tmp_path):
        path = tmp_path / "suite.py"
        path.write_text(textwrap.dedent("""\
            def test_second():
                pass

            def helper():
                pass

            def test_first():
                pass
        """))
        names = [name for name, _ in _load_tests(path)]
        assert names == ["test_second", "test_first"]

    def test_leak_fails_run(self, tmp_path, capsys):
        path = tmp_path / "suite.py"
        path.write_text(textwrap.dedent("""\
            import asyncio

            def test_ok():
                assert True

            async def test_leaks():
                asyncio.create_task(asyncio.sleep(60))
                await asyncio.sleep(0)
        """))
        assert main(["test", str(path)]) == 1
        out = capsys.readouterr().out
        assert "test_ok ... ok" in out
        assert "test_leaks ... FAILED" in out
        assert "leaked 1 pending promise(s)" in out

    def test_default_mode_skips_sanitizers(self, tmp_path, capsys):
        path = tmp_path / "suite.py"
        path.write_text(textwrap.dedent("""\
            import asyncio

            async def test_leaks():
                asyncio.create_task(asyncio.sleep(60))
        """))
        assert main(["test", str(path), "--mode", "default"]) == 0
