"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import Optional, Sequence

from ..model import Cell, CellResult, CellStatus, RunSummary, Step
from ..report import render_table


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, show_output: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            show_output: If True, print captured step output for failed cells
        """
        self.debug = debug
        self.show_output = show_output
        # cells report from worker threads
        self._lock = threading.Lock()

    def _print(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._print(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        repository: str,
        workflow: str,
        cell_count: int,
        max_concurrency: Optional[int] = None,
    ) -> None:
        """Print run start information."""
        self._print(
            "\nRUN STARTED",
            f"Repository: {repository}",
            f"Workflow: {workflow}",
            f"Cells: {cell_count}",
            f"Concurrency: {max_concurrency or cell_count}",
            "",
        )

    def print_plan(self, cells: Sequence[Cell]) -> None:
        """Print the expanded matrix."""
        self.print_header(f"MATRIX ({len(cells)} cells)")
        for c in cells:
            self._print(f"  {c.index + 1:>3}. {c.platform} / {c.toolchain}")
        if cells:
            self._print("", "Steps:")
            for s in cells[0].steps:
                suffix = f" [{s.mode}]" if s.mode else ""
                self._print(f"  - {s.name}: {s.run}{suffix}")

    def print_cell_state(self, cell: Cell, state: CellStatus) -> None:
        if state is CellStatus.RUNNING:
            self._print(f"CELL STARTED: {cell.label}")

    def print_step(self, cell: Cell, step: Step) -> None:
        """Print step start message."""
        self._print(f"[{cell.label}] STEP: {step.name}")

    def print_cell_result(self, result: CellResult) -> None:
        """Print one cell's terminal status as soon as it completes."""
        label = result.cell.label
        if result.passed:
            self._print(f"CELL PASSED: {label} ({result.duration:.1f}s)")
            return

        lines = [f"CELL {result.status.value.upper()}: {label}"]
        if result.failed_step:
            lines.append(f"Step: {result.failed_step}")
            last = result.steps[-1] if result.steps else None
            if last is not None and last.exit_code is not None:
                lines.append(f"Exit code: {last.exit_code}")
        if result.error:
            lines.append(f"Reason: {result.error}")
        if result.attempts > 1:
            lines.append(f"Attempts: {result.attempts}")
        if (self.show_output or self.debug) and result.steps and result.steps[-1].output:
            lines.append("Output:")
            lines.extend(f"  {ln}" for ln in result.steps[-1].output.rstrip().splitlines())
        self._print(*lines)

    def print_results(self, summary: RunSummary) -> None:
        """Print final results table."""
        self._print("\n" + "=" * 40, "RESULTS", "=" * 40, render_table(summary))
        if summary.duration:
            self._print(f"Duration: {summary.duration:.1f}s")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._print(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._print(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._print(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
