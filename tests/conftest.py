from __future__ import annotations

import shlex
import sys
from pathlib import Path

import pytest

from matrixci.errors import EnvironmentUnavailable
from matrixci.model import Cell
from matrixci.provision import Provisioner


def py(code: str) -> str:
    """Shell command running `code` with the current interpreter."""
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


def touch(path: Path) -> str:
    return py(f"open({str(path)!r}, 'w').close()")


class FlakyProvisioner(Provisioner):
    """Host provisioner that reports chosen cells unavailable a number of times."""

    def __init__(self, repo_root, unavailable: dict[tuple[str, str], int], **kwargs):
        super().__init__(repo_root, **kwargs)
        self.remaining = dict(unavailable)
        self.calls: dict[tuple[str, str], int] = {}

    def provision(self, cell: Cell, cancel=None):
        self.calls[cell.key] = self.calls.get(cell.key, 0) + 1
        left = self.remaining.get(cell.key, 0)
        if left:
            self.remaining[cell.key] = left - 1
            raise EnvironmentUnavailable(cell.platform, cell.toolchain, "runner offline")
        return super().provision(cell, cancel)


@pytest.fixture
def provisioner(tmp_path: Path) -> Provisioner:
    return Provisioner(tmp_path)
