"""Assertion helpers (D2) - Text comparison failures carrying a rendered diff."""

from typing import Optional

from sanitest.diff import DEFAULT_DIFF_CONFIG, DiffBuildConfig, diff


class TextMismatchError(AssertionError):
    """Two texts expected to be equal were not."""

    def __init__(self, message: str, rendered_diff: str) -> None:
        super().__init__(message)
        self.rendered_diff = rendered_diff


def format_mismatch(rendered_diff: str) -> str:
    return (
        "Values are not equal.\n\n"
        "    [Diff] Expected / Actual\n\n"
        f"{rendered_diff}"
    )


def assert_text_equal(
    actual: str,
    expected: str,
    config: Optional[DiffBuildConfig] = None,
) -> None:
    """Raise ``TextMismatchError`` with a line diff if the texts differ.

    Deleted lines (``-``) come from ``expected``, inserted lines (``+``)
    from ``actual``.
    """
    if actual == expected:
        return
    rendered = diff(expected, actual, config or DEFAULT_DIFF_CONFIG)
    raise TextMismatchError(format_mismatch(rendered), rendered)
