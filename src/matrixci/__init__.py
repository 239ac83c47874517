from .config import MatrixConfig, StepConfig, load_yaml_config
from .dsl import sh, matrix, MatrixBuilder, build
from .errors import (
    MatrixCIError,
    ConfigError,
    EmptyMatrix,
    EnvironmentUnavailable,
    StepFailed,
    StepTimeout,
    Cancelled,
)
from .expand import expand_matrix, expand_config
from .executor import execute_cell
from .model import Step, Cell, CellStatus, CellResult, StepOutcome, RunSummary
from .process import CancelToken
from .provision import Provisioner, Environment
from .report import summarize, render_table, exit_code
from .runner import load_workflow, run_matrix, plan
from .scheduler import Scheduler

__all__ = [
    "MatrixConfig", "StepConfig", "load_yaml_config",
    "sh", "matrix", "MatrixBuilder", "build",
    "MatrixCIError", "ConfigError", "EmptyMatrix", "EnvironmentUnavailable",
    "StepFailed", "StepTimeout", "Cancelled",
    "expand_matrix", "expand_config", "execute_cell",
    "Step", "Cell", "CellStatus", "CellResult", "StepOutcome", "RunSummary",
    "CancelToken", "Provisioner", "Environment",
    "summarize", "render_table", "exit_code",
    "load_workflow", "run_matrix", "plan", "Scheduler",
]
