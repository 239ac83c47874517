# executor.py
from __future__ import annotations

import time
from typing import Callable, List, Optional, Protocol

from .errors import Cancelled, EnvironmentUnavailable, StepFailed, StepTimeout
from .model import Cell, CellResult, CellStatus, Step, StepOutcome
from .process import CancelToken, run_command
from .provision import Environment


class SupportsProvision(Protocol):
    def provision(self, cell: Cell, cancel: CancelToken | None = None) -> Environment: ...


StepCallback = Callable[[Cell, Step], None]


def _effective_timeout(
    step: Step,
    step_timeout: float | None,
    cell_timeout: float | None,
    cell_started: float,
) -> float | None:
    """Per-step limit, capped by whatever is left of the cell budget."""
    limit = step.timeout if step.timeout is not None else step_timeout
    if cell_timeout is not None:
        remaining = cell_timeout - (time.monotonic() - cell_started)
        limit = remaining if limit is None else min(limit, remaining)
    return limit


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _run_step(
    env: Environment,
    step: Step,
    *,
    timeout: float | None,
    cancel: CancelToken,
) -> StepOutcome:
    """
    Run one step in the cell's environment.

    Raises:
        StepFailed: non-zero exit, or the command could not be started
        StepTimeout: the step ran past its timeout
        Cancelled: the run was cancelled while the step was running
    """
    args, cwd, proc_env = env.command(step.run, cwd=step.cwd, extra_env=step.env)
    command = env.render(step.run)

    if not cwd.exists():
        raise StepFailed(step.name, None, output=f"cwd not found: {cwd}", command=command)

    try:
        res = run_command(args, cwd=cwd, env=proc_env, timeout=timeout, cancel=cancel)
    except OSError as e:
        raise StepFailed(step.name, None, output=str(e), command=command) from e

    if res.cancelled:
        raise Cancelled(f"cancelled during step '{step.name}'")
    if res.timed_out:
        raise StepTimeout(step.name, timeout or 0.0, output=res.output, command=command)
    if res.exit_code != 0:
        raise StepFailed(step.name, res.exit_code, output=res.output, command=command)

    return StepOutcome(
        name=step.name,
        command=command,
        exit_code=res.exit_code,
        output=res.output,
        duration=res.duration,
    )


def execute_cell(
    cell: Cell,
    *,
    provisioner: SupportsProvision,
    cancel: CancelToken | None = None,
    step_timeout: float | None = None,
    cell_timeout: float | None = None,
    on_step: Optional[StepCallback] = None,
) -> CellResult:
    """
    Run one cell: provision its environment, then its steps in order.

    The first failing step ends the cell (later steps are never started).
    Never raises for per-cell problems; they are folded into the returned
    CellResult:
      - passed:       every step exited 0
      - failed:       a step exited non-zero or timed out (failed_step set)
      - unavailable:  the environment could not be provisioned, no step ran
      - cancelled:    the run was cancelled before or during the cell
    """
    cancel = cancel or CancelToken()
    started = time.monotonic()
    outcomes: List[StepOutcome] = []

    def result(status: CellStatus, **kwargs) -> CellResult:
        return CellResult(
            cell=cell,
            status=status,
            steps=tuple(outcomes),
            duration=time.monotonic() - started,
            **kwargs,
        )

    if cancel.cancelled:
        return result(CellStatus.CANCELLED, error="cancelled before start")

    try:
        env = provisioner.provision(cell, cancel)
    except EnvironmentUnavailable as e:
        error = e.reason if not e.hint else f"{e.reason} (hint: {e.hint})"
        return result(CellStatus.UNAVAILABLE, error=error)

    for step in cell.steps:
        if cancel.cancelled:
            return result(CellStatus.CANCELLED, error=f"cancelled before step '{step.name}'")

        timeout = _effective_timeout(step, step_timeout, cell_timeout, started)
        if timeout is not None and timeout <= 0:
            return result(
                CellStatus.FAILED,
                failed_step=step.name,
                error=f"cell timed out after {cell_timeout:g}s before step '{step.name}'",
            )

        if on_step is not None:
            on_step(cell, step)

        try:
            outcomes.append(_run_step(env, step, timeout=timeout, cancel=cancel))
        except Cancelled as e:
            return result(CellStatus.CANCELLED, error=e.message)
        except StepFailed as e:
            outcomes.append(
                StepOutcome(
                    name=step.name,
                    command=e.command,
                    exit_code=e.exit_code,
                    output=e.output,
                    timed_out=isinstance(e, StepTimeout),
                )
            )
            return result(CellStatus.FAILED, failed_step=e.step, error=e.message)

    return result(CellStatus.PASSED)
