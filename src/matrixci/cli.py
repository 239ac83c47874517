# cli.py
from __future__ import annotations

import signal
import subprocess
import sys
from pathlib import Path

import click

from matrixci.errors import ConfigError, EmptyMatrix, MatrixCIError
from matrixci.process import CancelToken
from matrixci.report import exit_code, write_json
from matrixci.runner import YAML_SUFFIXES, load_workflow, override, plan, run_matrix
from matrixci.ui.console import Console, get_console, set_console

EXIT_CONFIG_ERROR = 2

DEFAULT_WORKFLOWS = ("matrixci_workflow.py", "matrixci.yml", "matrixci.yaml")


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    current_dir = Path(".")
    found: set[Path] = set()

    for name in DEFAULT_WORKFLOWS:
        candidate = current_dir / name
        if candidate.exists():
            found.add(candidate)

    for path in current_dir.glob("*_workflow.py"):
        found.add(path)

    return sorted(found)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix not in (".py",) + YAML_SUFFIXES:
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  matrixci run --workflow matrixci.yml",
            )
            sys.exit(EXIT_CONFIG_ERROR)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                *(f"  {n}" for n in DEFAULT_WORKFLOWS),
                "  *_workflow.py",
            ],
            suggestion="Create a workflow file:\n  matrixci.yml\n\nOr specify a workflow explicitly:\n  matrixci run --workflow .github/workflows/ci.yml",
        )
        sys.exit(EXIT_CONFIG_ERROR)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify a workflow explicitly:\n  matrixci run --workflow matrixci.yml",
        )
        sys.exit(EXIT_CONFIG_ERROR)

    return workflow_files[0]


def repository_name() -> str:
    try:
        url = subprocess.check_output(
            ["git", "remote", "get-url", "origin"],
            text=True,
            stderr=subprocess.DEVNULL,
        ).strip()
        return url.rstrip("/").split("/")[-1].replace(".git", "")
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path(".").resolve().name


def _config_error(e: MatrixCIError) -> None:
    console = get_console()
    title = "Empty matrix" if isinstance(e, EmptyMatrix) else "Invalid workflow"
    console.print_error(
        title,
        e.message,
        details=[f"{k}: {v}" for k, v in e.details.items()] or None,
    )
    sys.exit(EXIT_CONFIG_ERROR)


def _load(ctx, workflow, job):
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        return workflow_path, load_workflow(workflow_path, job=job)
    except ConfigError as e:
        _config_error(e)
    except Exception as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(EXIT_CONFIG_ERROR)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """matrixci: run a build/test matrix across platforms and toolchains."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py, .yml or .yaml)")
@click.option("--job", default=None, help="Job id to use from a GitHub Actions workflow")
@click.option("--max-concurrency", "max_concurrency", default=None, type=click.IntRange(min=1), help="Maximum cells running at once")
@click.option("--retry-unavailable/--no-retry-unavailable", default=None, help="Retry a cell once if its environment is unavailable")
@click.option("--step-timeout", default=None, type=click.FloatRange(min=0, min_open=True), help="Per-step timeout in seconds")
@click.option("--cell-timeout", default=None, type=click.FloatRange(min=0, min_open=True), help="Per-cell timeout in seconds")
@click.option("--platform", "platforms", multiple=True, help="Run only these platforms (repeatable)")
@click.option("--toolchain", "toolchains", multiple=True, help="Run only these toolchains (repeatable)")
@click.option("--repo-root", default=".", show_default=True, help="Directory steps run in")
@click.option("--json", "json_path", default=None, help="Also write the report as JSON to this path")
@click.option("--show-output/--no-show-output", default=False, show_default=True, help="Print captured output of failed steps")
@click.pass_context
def run(ctx, workflow, job, max_concurrency, retry_unavailable, step_timeout, cell_timeout,
        platforms, toolchains, repo_root, json_path, show_output):
    """Run every (platform, toolchain) cell of the matrix."""
    console = get_console()
    console.show_output = show_output

    workflow_path, config = _load(ctx, workflow, job)

    try:
        config = override(
            config,
            platforms=platforms,
            toolchains=toolchains,
            max_concurrency=max_concurrency,
            retry_unavailable=retry_unavailable,
            step_timeout=step_timeout,
            cell_timeout=cell_timeout,
        )
        cells = plan(config)
    except ConfigError as e:
        _config_error(e)

    cancel = CancelToken()
    previous = signal.getsignal(signal.SIGTERM)
    signal.signal(signal.SIGTERM, lambda signum, frame: cancel.cancel())

    try:
        console.print_run_started(
            repository=repository_name(),
            workflow=workflow_path.name,
            cell_count=len(cells),
            max_concurrency=config.max_concurrency,
        )

        summary = run_matrix(
            config,
            repo_root=repo_root,
            cancel=cancel,
            on_result=console.print_cell_result,
            on_state=console.print_cell_state,
            on_step=console.print_step,
        )

        if summary.cancelled:
            console.print_info("\nRun cancelled")
        console.print_results(summary)

        if json_path:
            out = write_json(summary, json_path)
            console.print_debug(f"JSON report written to {out}")

        sys.exit(exit_code(summary))

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except ConfigError as e:
        _config_error(e)
    finally:
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)


@cli.command("plan")
@click.option("--workflow", default=None, help="Workflow file (.py, .yml or .yaml)")
@click.option("--job", default=None, help="Job id to use from a GitHub Actions workflow")
@click.pass_context
def plan_cmd(ctx, workflow, job):
    """Show the expanded matrix without running anything."""
    console = get_console()
    _path, config = _load(ctx, workflow, job)
    try:
        cells = plan(config)
    except ConfigError as e:
        _config_error(e)
    console.print_plan(cells)


if __name__ == "__main__":
    cli()
