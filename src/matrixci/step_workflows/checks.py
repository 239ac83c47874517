# step_workflows/checks.py
from __future__ import annotations

import shlex
from typing import List

from ..dsl import sh
from ..model import Step


# ---------------------------------------------------------------------
# Check step helpers
# ---------------------------------------------------------------------

def _command(tool: str, args: str | None, files: List[str] | None) -> str:
    parts = [tool]
    if args:
        parts.extend(shlex.split(args))
    if files:
        parts.extend(files)
    return " ".join(shlex.quote(p) if p and not p.startswith("{") else p for p in parts)


def run_tests(
    name: str = "test",
    tool: str = "cargo",
    args: str | None = "test --verbose",
    *,
    cwd: str | None = None,
    timeout: float | None = None,
) -> Step:
    """Run the project's test suite."""
    return sh(name, _command(tool, args, None), cwd=cwd, timeout=timeout, requires=[tool])


def format_check(
    name: str = "format",
    tool: str = "cargo",
    args: str | None = "fmt -- --check",
    *,
    cwd: str | None = None,
    files: List[str] | None = None,
) -> Step:
    """
    Check formatting without rewriting files.

    The check flag is part of `args`; the step is tagged mode="check" so the
    report can show it as a check-only invocation.
    """
    return sh(name, _command(tool, args, files), cwd=cwd, requires=[tool], mode="check")


def static_check(
    name: str = "check",
    tool: str = "cargo",
    args: str | None = "check",
    *,
    cwd: str | None = None,
    files: List[str] | None = None,
) -> Step:
    """Run a static checker / linter."""
    return sh(name, _command(tool, args, files), cwd=cwd, requires=[tool])


def cargo_checks(*, cwd: str | None = None) -> List[Step]:
    """The classic Rust trio: tests, rustfmt in check mode, cargo check."""
    return [
        run_tests("Run tests", cwd=cwd),
        format_check("Format", cwd=cwd),
        static_check("Check", cwd=cwd),
    ]


def python_checks(*, cwd: str | None = None) -> List[Step]:
    return [
        run_tests("Run tests", tool="pytest", args="-q", cwd=cwd),
        format_check("Format", tool="ruff", args="format --check .", cwd=cwd),
        static_check("Lint", tool="ruff", args="check .", cwd=cwd),
    ]
