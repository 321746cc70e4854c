"""Diff Engine (C4) - Line diffs for assertion-failure messages.

Both texts are interned into integer line tokens, diffed with a histogram
algorithm, and rendered with a bounded window of unchanged context around
each change.

Histogram diff:
  - Trim the common prefix and suffix of the current region.
  - Lines occurring exactly once on each side are all anchored in one
    pass, keeping the longest chain that is in order on both sides, and
    the gaps between them are diffed in turn.
  - Otherwise count how often each line occurs in the "before" side and
    anchor on the longest common run seeded from the rarest shared line,
    then diff the regions left and right of it.
  - Regions where every shared line is too frequent to be a useful anchor
    fall back to Myers' O(ND) diff, which gives a minimal edit script.

The result only ever feeds a message; nothing here touches program state.

Pure Python. No host dependency.
"""

import bisect
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

# ── Constants ──

# Lines occurring more often than this are never used as anchors.
MAX_CHAIN_LEN = 63

OP_EQUAL = "equal"
OP_INSERT = "insert"
OP_DELETE = "delete"

_MARKERS = {
    OP_EQUAL: "  ",
    OP_DELETE: "- ",
    OP_INSERT: "+ ",
}

_COLORS = {
    OP_DELETE: "\x1b[31m",
    OP_INSERT: "\x1b[32m",
}
_DIM = "\x1b[2m"
_RESET = "\x1b[0m"

SEPARATOR = "..."
NO_NEWLINE = "\\ No newline at end of file"


# ── Exceptions ──


class DiffError(Exception):
    """Base exception for diff engine errors."""


class DiffInputError(DiffError, TypeError):
    """Diff input was not text."""


class DiffConfigError(DiffError, ValueError):
    """Invalid diff rendering configuration."""


# ── Data Classes ──


@dataclass(frozen=True)
class DiffBuildConfig:
    """How much unchanged text to show around each change.

    Attributes:
        lines_before: Unchanged lines shown before each change.
        lines_after: Unchanged lines shown after each change.
        print_first_and_last_lines: Always show the first and last line of
            the compared text, however far they are from a change.
        color: Wrap markers in ANSI colors.
    """

    lines_before: int = 2
    lines_after: int = 2
    print_first_and_last_lines: bool = True
    color: bool = False

    def __post_init__(self) -> None:
        if self.lines_before < 0 or self.lines_after < 0:
            raise DiffConfigError(
                "Context sizes must be non-negative, got "
                f"lines_before={self.lines_before}, lines_after={self.lines_after}"
            )


DEFAULT_DIFF_CONFIG = DiffBuildConfig()


@dataclass(frozen=True)
class Change:
    """A replaced region: ``before[b_start:b_end]`` became ``after[a_start:a_end]``."""

    b_start: int
    b_end: int
    a_start: int
    a_end: int


@dataclass(frozen=True)
class DiffOp:
    """One line of the edit script.

    ``before_index`` is ``None`` for insertions and ``after_index`` is
    ``None`` for deletions.
    """

    kind: str
    before_index: Optional[int]
    after_index: Optional[int]
    line: str

    @property
    def is_change(self) -> bool:
        return self.kind != OP_EQUAL


@dataclass
class DiffHunk:
    """A contiguous window of ops around one or more changes."""

    ops: list[DiffOp] = field(default_factory=list)

    @property
    def before_start(self) -> int:
        return next((op.before_index for op in self.ops if op.before_index is not None), 0)

    @property
    def after_start(self) -> int:
        return next((op.after_index for op in self.ops if op.after_index is not None), 0)

    @property
    def before_len(self) -> int:
        return sum(1 for op in self.ops if op.kind != OP_INSERT)

    @property
    def after_len(self) -> int:
        return sum(1 for op in self.ops if op.kind != OP_DELETE)

    @property
    def insertions(self) -> int:
        return sum(1 for op in self.ops if op.kind == OP_INSERT)

    @property
    def deletions(self) -> int:
        return sum(1 for op in self.ops if op.kind == OP_DELETE)


# ── Interning ──


def split_lines(text: str) -> list[str]:
    """Split on ``\\n``, keeping each terminator on its line."""
    pieces = text.split("\n")
    lines = [piece + "\n" for piece in pieces[:-1]]
    if pieces[-1]:
        lines.append(pieces[-1])
    return lines


class InternedInput:
    """Both sides of a diff as integer tokens, one per line.

    Equal lines share a token, so comparisons during the diff are integer
    comparisons.  ``lines[token]`` recovers the text.
    """

    def __init__(self, before: str, after: str) -> None:
        for name, value in (("before", before), ("after", after)):
            if not isinstance(value, str):
                raise DiffInputError(
                    f"{name} must be str, got {type(value).__name__}"
                )
        self._tokens: dict[str, int] = {}
        self.lines: list[str] = []
        self.before = [self._intern(line) for line in split_lines(before)]
        self.after = [self._intern(line) for line in split_lines(after)]

    def _intern(self, line: str) -> int:
        token = self._tokens.get(line)
        if token is None:
            token = len(self.lines)
            self._tokens[line] = token
            self.lines.append(line)
        return token

    @property
    def num_tokens(self) -> int:
        return len(self.lines)


# ── Histogram Diff ──


def _find_anchor(
    before: Sequence[int], b_lo: int, b_hi: int,
    after: Sequence[int], a_lo: int, a_hi: int,
) -> tuple[Optional[tuple[int, int, int, int]], bool]:
    """Best anchor run in the region, and whether any line is shared at all."""
    positions: dict[int, list[int]] = {}
    for i in range(b_lo, b_hi):
        positions.setdefault(before[i], []).append(i)

    best: Optional[tuple[int, int, int, int]] = None
    best_count = MAX_CHAIN_LEN + 1
    shared = False

    ai = a_lo
    while ai < a_hi:
        occurrences = positions.get(after[ai])
        next_ai = ai + 1
        if occurrences is None:
            ai = next_ai
            continue
        shared = True
        if len(occurrences) > best_count:
            ai = next_ai
            continue
        for bi in occurrences:
            bs, as_ = bi, ai
            be, ae = bi + 1, ai + 1
            count = len(occurrences)
            while bs > b_lo and as_ > a_lo and before[bs - 1] == after[as_ - 1]:
                bs -= 1
                as_ -= 1
                count = min(count, len(positions[before[bs]]))
            while be < b_hi and ae < a_hi and before[be] == after[ae]:
                count = min(count, len(positions[before[be]]))
                be += 1
                ae += 1
            next_ai = max(next_ai, ae)
            if best is None or count < best_count or (
                count == best_count and be - bs > best[1] - best[0]
            ):
                best = (bs, be, as_, ae)
                best_count = count
        ai = next_ai

    if best is not None and best_count > MAX_CHAIN_LEN:
        best = None
    return best, shared


def _unique_anchors(
    before: Sequence[int], b_lo: int, b_hi: int,
    after: Sequence[int], a_lo: int, a_hi: int,
) -> list[tuple[int, int]]:
    """Lines occurring exactly once on each side, longest in-order chain.

    Returns ``(before_index, after_index)`` pairs, increasing on both sides.
    The chain is the longest increasing subsequence of the after positions
    taken in before order (patience sorting).
    """
    in_before: dict[int, Optional[int]] = {}
    for i in range(b_lo, b_hi):
        token = before[i]
        in_before[token] = None if token in in_before else i
    in_after: dict[int, Optional[int]] = {}
    for j in range(a_lo, a_hi):
        token = after[j]
        if in_before.get(token) is not None:
            in_after[token] = None if token in in_after else j

    pairs = sorted(
        (in_before[token], j) for token, j in in_after.items() if j is not None
    )
    if not pairs:
        return []

    tails: list[int] = []
    tail_pairs: list[int] = []
    previous = [-1] * len(pairs)
    for n, (_, j) in enumerate(pairs):
        k = bisect.bisect_left(tails, j)
        if k:
            previous[n] = tail_pairs[k - 1]
        if k == len(tails):
            tails.append(j)
            tail_pairs.append(n)
        else:
            tails[k] = j
            tail_pairs[k] = n

    chain: list[tuple[int, int]] = []
    n = tail_pairs[-1]
    while n >= 0:
        chain.append(pairs[n])
        n = previous[n]
    chain.reverse()
    return chain


# ── Myers Diff ──


def _middle_snake(
    before: Sequence[int], b_lo: int, b_hi: int,
    after: Sequence[int], a_lo: int, a_hi: int,
) -> Optional[tuple[int, int]]:
    """A point on a shortest edit path through the region.

    Searches forward from the start and backward from the end, one edit
    at a time, until the two frontiers meet on a diagonal.  Expects both
    sides non-empty with no common prefix or suffix.
    """
    n = b_hi - b_lo
    m = a_hi - a_lo
    delta = n - m
    odd = delta % 2 != 0
    # Furthest x reached on diagonal k = x - y, stored at index k + base.
    # -1 marks a diagonal not reachable with the current number of edits.
    base = m + 1
    forward = [-1] * (n + m + 3)
    backward = [-1] * (n + m + 3)

    for d in range((n + m + 1) // 2 + 1):
        lo = max(-d, -m)
        if (lo + d) % 2:
            lo += 1
        hi = min(d, n)

        for k in range(lo, hi + 1, 2):
            x = _furthest_start(forward, base + k, k, d, n, m)
            if x < 0:
                forward[base + k] = -1
                continue
            y = x - k
            while x < n and y < m and before[b_lo + x] == after[a_lo + y]:
                x += 1
                y += 1
            forward[base + k] = x
            if odd:
                u = backward[base + delta - k]
                if u >= 0 and x + u >= n:
                    return b_lo + x, a_lo + y

        for k in range(lo, hi + 1, 2):
            u = _furthest_start(backward, base + k, k, d, n, m)
            if u < 0:
                backward[base + k] = -1
                continue
            v = u - k
            while u < n and v < m and before[b_hi - 1 - u] == after[a_hi - 1 - v]:
                u += 1
                v += 1
            backward[base + k] = u
            if not odd:
                x = forward[base + delta - k]
                if x >= 0 and x + u >= n:
                    return b_lo + x, a_lo + x - (delta - k)

    return None


def _furthest_start(
    frontier: list[int], index: int, k: int, d: int, n: int, m: int,
) -> int:
    """Where diagonal k starts after d edits, before following its snake."""
    if d == 0:
        return 0
    x = -1
    down = frontier[index + 1]
    if down >= 0 and down - k <= m:
        x = down
    right = frontier[index - 1]
    if 0 <= right < n and right + 1 > x:
        x = right + 1
    return x


def myers_diff(
    before: Sequence[int], b_lo: int, b_hi: int,
    after: Sequence[int], a_lo: int, a_hi: int,
    changes: list[Change],
) -> None:
    """Append a minimal set of changes for the region to ``changes``.

    Myers' O(ND) algorithm in linear space: split the region at a point
    of a shortest edit path and solve both halves.
    """
    stack = [(b_lo, b_hi, a_lo, a_hi)]
    while stack:
        b_lo, b_hi, a_lo, a_hi = stack.pop()
        b_lo, b_hi, a_lo, a_hi = _trim(before, b_lo, b_hi, after, a_lo, a_hi)

        if b_lo == b_hi and a_lo == a_hi:
            continue
        if b_lo == b_hi or a_lo == a_hi:
            changes.append(Change(b_lo, b_hi, a_lo, a_hi))
            continue

        split = _middle_snake(before, b_lo, b_hi, after, a_lo, a_hi)
        if split is None:
            changes.append(Change(b_lo, b_hi, a_lo, a_hi))
            continue
        b_mid, a_mid = split
        stack.append((b_mid, b_hi, a_mid, a_hi))
        stack.append((b_lo, b_mid, a_lo, a_mid))


def _trim(
    before: Sequence[int], b_lo: int, b_hi: int,
    after: Sequence[int], a_lo: int, a_hi: int,
) -> tuple[int, int, int, int]:
    """Drop the common prefix and suffix of a region."""
    while b_lo < b_hi and a_lo < a_hi and before[b_lo] == after[a_lo]:
        b_lo += 1
        a_lo += 1
    while b_lo < b_hi and a_lo < a_hi and before[b_hi - 1] == after[a_hi - 1]:
        b_hi -= 1
        a_hi -= 1
    return b_lo, b_hi, a_lo, a_hi


# ── Histogram Driver ──


def histogram_diff(interned: InternedInput) -> list[Change]:
    """Replaced regions, in order, anchored on the rarest shared lines."""
    before, after = interned.before, interned.after
    changes: list[Change] = []
    stack = [(0, len(before), 0, len(after))]

    while stack:
        b_lo, b_hi, a_lo, a_hi = stack.pop()
        b_lo, b_hi, a_lo, a_hi = _trim(before, b_lo, b_hi, after, a_lo, a_hi)

        if b_lo == b_hi and a_lo == a_hi:
            continue
        if b_lo == b_hi or a_lo == a_hi:
            changes.append(Change(b_lo, b_hi, a_lo, a_hi))
            continue

        anchors = _unique_anchors(before, b_lo, b_hi, after, a_lo, a_hi)
        if anchors:
            for bi, ai in anchors:
                stack.append((b_lo, bi, a_lo, ai))
                b_lo, a_lo = bi + 1, ai + 1
            stack.append((b_lo, b_hi, a_lo, a_hi))
            continue

        anchor, shared = _find_anchor(before, b_lo, b_hi, after, a_lo, a_hi)
        if anchor is None:
            if shared:
                myers_diff(before, b_lo, b_hi, after, a_lo, a_hi, changes)
            else:
                changes.append(Change(b_lo, b_hi, a_lo, a_hi))
            continue

        bs, be, as_, ae = anchor
        stack.append((be, b_hi, ae, a_hi))
        stack.append((b_lo, bs, a_lo, as_))

    changes.sort(key=lambda c: (c.b_start, c.a_start))
    return _merge_adjacent(changes)


def _merge_adjacent(changes: list[Change]) -> list[Change]:
    merged: list[Change] = []
    for change in changes:
        if merged:
            last = merged[-1]
            if last.b_end == change.b_start and last.a_end == change.a_start:
                merged[-1] = Change(last.b_start, change.b_end, last.a_start, change.a_end)
                continue
        merged.append(change)
    return merged


# ── Edit Script ──


def _ops_from_changes(interned: InternedInput, changes: list[Change]) -> list[DiffOp]:
    lines = interned.lines
    before, after = interned.before, interned.after
    ops: list[DiffOp] = []
    bi = ai = 0

    def equal_until(b_stop: int) -> None:
        nonlocal bi, ai
        while bi < b_stop:
            ops.append(DiffOp(OP_EQUAL, bi, ai, lines[before[bi]]))
            bi += 1
            ai += 1

    for change in changes:
        equal_until(change.b_start)
        for i in range(change.b_start, change.b_end):
            ops.append(DiffOp(OP_DELETE, i, None, lines[before[i]]))
        for j in range(change.a_start, change.a_end):
            ops.append(DiffOp(OP_INSERT, None, j, lines[after[j]]))
        bi, ai = change.b_end, change.a_end
    equal_until(len(before))
    return ops


def diff_ops(before: str, after: str) -> list[DiffOp]:
    """Full line-level edit script turning ``before`` into ``after``."""
    interned = InternedInput(before, after)
    return _ops_from_changes(interned, histogram_diff(interned))


# ── Hunks ──


def _change_windows(ops: list[DiffOp], config: DiffBuildConfig) -> list[tuple[int, int]]:
    windows: list[tuple[int, int]] = []
    i = 0
    while i < len(ops):
        if not ops[i].is_change:
            i += 1
            continue
        start = i
        while i < len(ops) and ops[i].is_change:
            i += 1
        windows.append((
            max(0, start - config.lines_before),
            min(len(ops), i + config.lines_after),
        ))
    return windows


def _merge_windows(windows: list[tuple[int, int]]) -> list[tuple[int, int]]:
    merged: list[tuple[int, int]] = []
    for start, end in sorted(windows):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def diff_hunks(
    before: str,
    after: str,
    config: DiffBuildConfig = DEFAULT_DIFF_CONFIG,
) -> list[DiffHunk]:
    """Changes grouped into hunks with their surrounding context."""
    ops = diff_ops(before, after)
    return [
        DiffHunk(ops=ops[start:end])
        for start, end in _merge_windows(_change_windows(ops, config))
    ]


# ── Rendering ──


def _render_op(op: DiffOp, color: bool) -> list[str]:
    text = op.line[:-1] if op.line.endswith("\n") else op.line
    line = _MARKERS[op.kind] + text
    if color and op.kind in _COLORS:
        line = f"{_COLORS[op.kind]}{line}{_RESET}"
    rendered = [line]
    if op.is_change and not op.line.endswith("\n"):
        rendered.append(NO_NEWLINE)
    return rendered


def render_ops(ops: list[DiffOp], config: DiffBuildConfig = DEFAULT_DIFF_CONFIG) -> str:
    """Render an edit script, eliding unchanged runs outside the context."""
    windows = _change_windows(ops, config)
    if not windows:
        return ""
    if config.print_first_and_last_lines:
        windows.append((0, 1))
        windows.append((len(ops) - 1, len(ops)))

    separator = f"{_DIM}{SEPARATOR}{_RESET}" if config.color else SEPARATOR
    out: list[str] = []
    shown_until = 0
    for start, end in _merge_windows(windows):
        if start > shown_until:
            out.append(separator)
        for op in ops[start:end]:
            out.extend(_render_op(op, config.color))
        shown_until = end
    if shown_until < len(ops):
        out.append(separator)
    return "\n".join(out) + "\n"


def diff(
    before: str,
    after: str,
    config: DiffBuildConfig = DEFAULT_DIFF_CONFIG,
) -> str:
    """Human-readable diff of two texts; ``""`` when they are identical."""
    ops = diff_ops(before, after)
    logger.debug(
        "Diffed %d ops (%d changed)",
        len(ops), sum(1 for op in ops if op.is_change),
    )
    return render_ops(ops, config)
