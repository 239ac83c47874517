# matrixci_workflow.py
# Workflow for checking matrixci itself: tests, format check and lint on every
# Python version installed locally.
from __future__ import annotations

from matrixci.dsl import matrix, sh


def workflow():
    return matrix(
        ["local"],
        ["3.10", "3.11", "3.12", "3.13"],
        sh("Install package", "python{toolchain} -m pip install -q -e '.[test]'"),
        sh("Run pytest", "python{toolchain} -m pytest -q"),
        sh("Ruff format check", "ruff format --check src tests", requires=["ruff"], mode="check"),
        sh("Ruff check", "ruff check src tests", requires=["ruff"]),
        # a missing interpreter makes the cell unavailable instead of failed
        setup="python{toolchain} --version",
        step_timeout=600,
    )
