from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

from ..models.outcome import RowOutcome

"""Row progress display with tqdm (TTY only).

- one tqdm instance per run, disabled when stdout is not a TTY so CI logs
  stay free of control sequences
- postfix shows running ok / error / warning counts
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """True when stdout is a TTY and a progress bar should be drawn."""
    return sys.stdout.isatty()


class ProgressTracker:
    """Progress bar over the rows of one import run."""

    def __init__(self, total_rows: int, *, description: str = "Importing rows") -> None:
        self.total_rows = total_rows
        self.description = description
        self.processed = 0
        self.ok = 0
        self.errors = 0
        self.warnings = 0

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows,
                desc=description,
                unit="row",
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def advance(self, outcome: RowOutcome) -> None:
        self.processed += 1
        if outcome.success:
            self.ok += 1
        else:
            self.errors += 1
        self.warnings += len(outcome.warnings)

        if self.enabled and self.pbar is not None:
            self.pbar.update(1)
            self.pbar.set_postfix(ok=self.ok, errors=self.errors, warnings=self.warnings)

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
