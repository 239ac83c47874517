# report.py
from __future__ import annotations

import json
from collections import Counter
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .model import Cell, CellResult, CellStatus, RunSummary

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def summarize(
    results: Iterable[CellResult],
    cells: Optional[Sequence[Cell]] = None,
    *,
    cancelled: bool = False,
    duration: float = 0.0,
) -> RunSummary:
    """
    Fold cell results into a RunSummary.

    Results are ordered by matrix position, so the report does not depend on
    completion order. Results sharing an index (hand-built cells all default
    to 0) keep the order they were given in. When `cells` is given, any cell
    without a result is recorded as cancelled (a run that was interrupted
    before it got there).

    The run passes iff there is at least one result, every result passed,
    and the run was not cancelled.
    """
    collected = list(results)

    if cells is not None:
        seen = Counter((r.cell.index, r.cell.key) for r in collected)
        for c in cells:
            if seen[(c.index, c.key)]:
                seen[(c.index, c.key)] -= 1
            else:
                collected.append(CellResult(cell=c, status=CellStatus.CANCELLED, error="never started"))

    ordered = tuple(sorted(collected, key=lambda r: r.cell.index))
    ok = bool(ordered) and not cancelled and all(r.passed for r in ordered)

    return RunSummary(
        results=ordered,
        status=CellStatus.PASSED if ok else CellStatus.FAILED,
        cancelled=cancelled,
        duration=duration,
    )


def exit_code(summary: RunSummary) -> int:
    if summary.cancelled:
        return EXIT_CANCELLED
    return EXIT_OK if summary.ok else EXIT_FAILED


def _reason(r: CellResult) -> str:
    if r.passed:
        return ""
    if r.failed_step:
        return r.failed_step
    return r.error or ""


def render_table(summary: RunSummary) -> str:
    """
    Deterministic text table: platform, toolchain, status, failing step or
    reason, followed by a one-line verdict.
    """
    header = ("PLATFORM", "TOOLCHAIN", "STATUS", "FAILED STEP / REASON")
    rows: List[tuple] = [
        (r.cell.platform, r.cell.toolchain, r.status.value.upper(), _reason(r))
        for r in summary.results
    ]
    widths = [len(h) for h in header[:3]]
    for row in rows:
        for i in range(3):
            widths[i] = max(widths[i], len(row[i]))

    def fmt(row: tuple) -> str:
        cols = [row[i].ljust(widths[i]) for i in range(3)]
        return "  ".join(cols + [row[3]]).rstrip()

    lines = [fmt(header), fmt(tuple("-" * w for w in widths) + ("-" * len(header[3]),))]
    lines.extend(fmt(row) for row in rows)
    lines.append("")

    verdict = "PASSED" if summary.ok else ("CANCELLED" if summary.cancelled else "FAILED")
    lines.append(
        f"{verdict}: {summary.passed}/{summary.total} passed, "
        f"{summary.failed} failed, {summary.unavailable} unavailable, "
        f"{summary.cancelled_cells} cancelled"
    )
    return "\n".join(lines)


def write_json(summary: RunSummary, path: str | Path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(summary.to_dict(), indent=2) + "\n", encoding="utf-8")
    return p
