# runner.py
from __future__ import annotations

import runpy
import time
from pathlib import Path
from typing import List, Optional, Sequence

from .config import MatrixConfig, load_yaml_config, parse_config
from .errors import ConfigError
from .executor import StepCallback, SupportsProvision
from .expand import expand_config
from .model import Cell, RunSummary
from .process import CancelToken
from .provision import Provisioner
from .report import summarize
from .scheduler import ResultCallback, Scheduler, StateCallback

YAML_SUFFIXES = (".yml", ".yaml")


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path, *, job: str | None = None) -> MatrixConfig:
    """
    Load a matrix declaration from a workflow file.

    A .py file must define either:
      - workflow() -> MatrixConfig (or a dict of options)
      - MATRIX = MatrixConfig(...) (or a dict of options)

    A .yml/.yaml file is either a flat matrix declaration or a GitHub
    Actions workflow with strategy.matrix; `job` picks the job in the latter.

    Raises:
        ConfigError: missing file, unknown suffix, or invalid declaration
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise ConfigError("Workflow file not found", path=str(wf_path))

    if wf_path.suffix in YAML_SUFFIXES:
        return load_yaml_config(wf_path, job=job)
    if wf_path.suffix != ".py":
        raise ConfigError(f"Workflow must be a .py, .yml or .yaml file, got: {wf_path.name}")

    module_name = f"matrixci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        declared = globals_dict["workflow"]()
    elif "MATRIX" in globals_dict:
        declared = globals_dict["MATRIX"]
    else:
        raise ConfigError(
            "Workflow must define workflow() -> MatrixConfig or MATRIX = MatrixConfig(...)",
            path=str(wf_path),
        )

    return parse_config(declared, source=str(wf_path))


def override(
    config: MatrixConfig,
    *,
    platforms: Optional[Sequence[str]] = None,
    toolchains: Optional[Sequence[str]] = None,
    max_concurrency: int | None = None,
    retry_unavailable: bool | None = None,
    step_timeout: float | None = None,
    cell_timeout: float | None = None,
) -> MatrixConfig:
    """Copy of `config` with command-line overrides applied (None = keep)."""
    updates = {}
    if platforms:
        updates["platforms"] = list(platforms)
    if toolchains:
        updates["toolchains"] = list(toolchains)
    if max_concurrency is not None:
        updates["max_concurrency"] = max_concurrency
    if retry_unavailable is not None:
        updates["retry_unavailable"] = retry_unavailable
    if step_timeout is not None:
        updates["step_timeout"] = step_timeout
    if cell_timeout is not None:
        updates["cell_timeout"] = cell_timeout
    if not updates:
        return config
    # re-validate so overrides get the same checks as the file
    data = config.model_dump()
    data.update(updates)
    return parse_config(data, source="<overrides>")


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def plan(config: MatrixConfig) -> List[Cell]:
    """Expanded cells, in run order. Raises EmptyMatrix."""
    return expand_config(config)


def run_matrix(
    config: MatrixConfig,
    *,
    repo_root: str | Path = ".",
    provisioner: SupportsProvision | None = None,
    cancel: CancelToken | None = None,
    on_result: Optional[ResultCallback] = None,
    on_state: Optional[StateCallback] = None,
    on_step: Optional[StepCallback] = None,
) -> RunSummary:
    """
    Expand -> schedule -> aggregate.

    Configuration errors (EmptyMatrix, ConfigError) are raised before any
    cell runs. Everything that goes wrong inside a cell ends up in the
    returned RunSummary instead.
    """
    cells = expand_config(config)
    cancel = cancel or CancelToken()

    if provisioner is None:
        provisioner = Provisioner(
            repo_root,
            env=config.env,
            setup=config.setup,
            images=config.images,
            setup_timeout=config.cell_timeout,
        )

    scheduler = Scheduler(
        max_concurrency=config.max_concurrency,
        retry_unavailable=config.retry_unavailable,
        step_timeout=config.step_timeout,
        cell_timeout=config.cell_timeout,
        provisioner=provisioner,
        on_result=on_result,
        on_state=on_state,
        on_step=on_step,
    )

    start = time.monotonic()
    results = scheduler.run(cells, cancel=cancel)
    return summarize(
        results,
        cells,
        cancelled=cancel.cancelled,
        duration=time.monotonic() - start,
    )
