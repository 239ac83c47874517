# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


TOOL_HINTS = {
    "cargo": "Install Rust via rustup (https://rustup.rs) or fix PATH.",
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "docker": "Install Docker and ensure the daemon is running.",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "ruff": "Install ruff (e.g., pip install ruff).",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "python3": "Install Python 3 or fix PATH (python3).",
}


@dataclass(eq=False)
class MatrixCIError(Exception):
    """
    Structured error with enough context for:
      - clean CLI output
      - the per-cell report
      - debugging without full tracebacks
    """
    kind: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


# ----------------------------------------------------------------------
# Configuration errors (fatal, raised before any cell runs)
# ----------------------------------------------------------------------

class ConfigError(MatrixCIError):
    def __init__(self, message: str, **details: Any):
        super().__init__(kind="config_error", message=message, details=details)


class EmptyMatrix(ConfigError):
    def __init__(self, message: str = "matrix has no cells to run", **details: Any):
        super().__init__(message, **details)
        self.kind = "empty_matrix"


# ----------------------------------------------------------------------
# Per-cell errors (recorded in the cell's result, never fatal to the run)
# ----------------------------------------------------------------------

class EnvironmentUnavailable(MatrixCIError):
    """The platform/toolchain pair could not be provisioned; no step ran."""

    def __init__(self, platform: str, toolchain: str, reason: str, hint: Optional[str] = None):
        details: Dict[str, Any] = {"platform": platform, "toolchain": toolchain}
        if hint:
            details["hint"] = hint
        super().__init__(kind="environment_unavailable", message=reason, details=details)
        self.platform = platform
        self.toolchain = toolchain
        self.reason = reason
        self.hint = hint


class StepFailed(MatrixCIError):
    def __init__(self, step: str, exit_code: Optional[int], output: str = "", command: str = ""):
        super().__init__(
            kind="step_failed",
            message=f"step '{step}' failed (exit={exit_code})",
            details={"command": command} if command else {},
        )
        self.step = step
        self.exit_code = exit_code
        self.output = output
        self.command = command


class StepTimeout(StepFailed):
    def __init__(self, step: str, timeout: float, output: str = "", command: str = ""):
        super().__init__(step, None, output=output, command=command)
        self.kind = "step_timeout"
        self.message = f"step '{step}' timed out after {timeout:g}s"
        self.timeout = timeout


class Cancelled(MatrixCIError):
    def __init__(self, message: str = "run cancelled"):
        super().__init__(kind="cancelled", message=message)
