# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class CellStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    UNAVAILABLE = "unavailable"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self not in (CellStatus.PENDING, CellStatus.RUNNING)


@dataclass(frozen=True)
class Step:
    """A single command (step) shared by every cell of the matrix."""
    name: str
    run: str
    cwd: str | None = None
    env: Dict[str, str] = field(default_factory=dict, hash=False)
    timeout: float | None = None
    requires: Tuple[str, ...] = ()
    mode: str | None = None  # e.g. "check" for check-only formatters


@dataclass(frozen=True)
class Cell:
    """
    One (platform, toolchain) pairing of the matrix plus the ordered steps
    to run for it.

    `index` is the position in the expanded matrix and drives report order.
    """
    platform: str
    toolchain: str
    steps: Tuple[Step, ...]
    index: int = 0

    @property
    def key(self) -> Tuple[str, str]:
        return (self.platform, self.toolchain)

    @property
    def label(self) -> str:
        return f"{self.platform}/{self.toolchain}"


@dataclass(frozen=True)
class StepOutcome:
    """What happened when a single step was attempted."""
    name: str
    command: str
    exit_code: Optional[int]
    output: str = ""
    duration: float = 0.0
    timed_out: bool = False

    @property
    def passed(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


@dataclass(frozen=True)
class CellResult:
    cell: Cell
    status: CellStatus
    steps: Tuple[StepOutcome, ...] = ()
    failed_step: str | None = None
    error: str | None = None
    attempts: int = 1
    duration: float = 0.0

    @property
    def passed(self) -> bool:
        return self.status is CellStatus.PASSED

    @property
    def output(self) -> str:
        """Captured output of every attempted step, in order."""
        return "\n".join(o.output for o in self.steps if o.output)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.cell.platform,
            "toolchain": self.cell.toolchain,
            "status": self.status.value,
            "failed_step": self.failed_step,
            "error": self.error,
            "attempts": self.attempts,
            "duration": round(self.duration, 3),
            "steps": [
                {
                    "name": o.name,
                    "command": o.command,
                    "exit_code": o.exit_code,
                    "timed_out": o.timed_out,
                    "duration": round(o.duration, 3),
                    "output": o.output,
                }
                for o in self.steps
            ],
        }


@dataclass(frozen=True)
class RunSummary:
    """Aggregate verdict over every cell of a run."""
    results: Tuple[CellResult, ...]
    status: CellStatus
    cancelled: bool = False
    duration: float = 0.0

    @property
    def total(self) -> int:
        return len(self.results)

    def _count(self, status: CellStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def passed(self) -> int:
        return self._count(CellStatus.PASSED)

    @property
    def failed(self) -> int:
        return self._count(CellStatus.FAILED)

    @property
    def unavailable(self) -> int:
        return self._count(CellStatus.UNAVAILABLE)

    @property
    def cancelled_cells(self) -> int:
        return self._count(CellStatus.CANCELLED)

    @property
    def ok(self) -> bool:
        return self.status is CellStatus.PASSED

    def failures(self) -> list[CellResult]:
        return [r for r in self.results if not r.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "cancelled": self.cancelled,
            "duration": round(self.duration, 3),
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "unavailable": self.unavailable,
            "cancelled_cells": self.cancelled_cells,
            "cells": [r.to_dict() for r in self.results],
        }
