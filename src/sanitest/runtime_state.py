"""Runtime state - Whether the host is running normally, testing, or benchmarking.

The mode decides which instrumentation the dispatch layer switches on:
promise sanitization and op tracking in ``"test"`` mode, only op tracking
in ``"bench"`` mode, nothing in ``"default"`` mode.
"""

STATE_DEFAULT = "default"
STATE_TEST = "test"
STATE_BENCH = "bench"

RUNTIME_STATES = frozenset({STATE_DEFAULT, STATE_TEST, STATE_BENCH})

_ALIASES = {
    "run": STATE_DEFAULT,
}


class RuntimeStateError(ValueError):
    """Unrecognized runtime state name."""


def parse_runtime_state(text: str) -> str:
    """Normalize a mode name, accepting ``"run"`` for ``"default"``."""
    name = text.strip().lower()
    name = _ALIASES.get(name, name)
    if name not in RUNTIME_STATES:
        raise RuntimeStateError(f"Failed parsing {text!r} as a runtime state")
    return name


def sanitizes_promises(state: str) -> bool:
    return state == STATE_TEST


def tracks_ops(state: str) -> bool:
    return state in (STATE_TEST, STATE_BENCH)
