from __future__ import annotations

from ..models.outcome import ImportResult

"""SUMMARY line rendering.

Format:
    SUMMARY rows={n} success={n} created={n} updated={n} skipped={n}
    failed={n} warnings={n} elapsed_sec={s}
"""

__all__ = [
    "render_summary_line",
    "format_seconds",
]


def format_seconds(seconds: float) -> str:
    """Plain decimal text: integers without fraction, no scientific notation."""
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return f"{seconds:.3f}".rstrip("0").rstrip(".")


def render_summary_line(result: ImportResult) -> str:
    """Render the SUMMARY line for one import run.

    Examples:
        >>> result = ImportResult(success=3, skipped=1, total_rows=7, elapsed_seconds=2.0)
        >>> render_summary_line(result)
        'SUMMARY rows=7 success=3 created=0 updated=0 skipped=1 failed=0 warnings=0 elapsed_sec=2'
    """
    return (
        f"SUMMARY rows={result.total_rows} "
        f"success={result.success} "
        f"created={len(result.created)} "
        f"updated={len(result.updated)} "
        f"skipped={result.skipped} "
        f"failed={len(result.errors)} "
        f"warnings={len(result.warnings)} "
        f"elapsed_sec={format_seconds(result.elapsed_seconds)}"
    )
