# provision.py
from __future__ import annotations

import os
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .errors import TOOL_HINTS, EnvironmentUnavailable
from .model import Cell
from .process import CancelToken, run_command


# label prefix -> sys.platform prefix
PLATFORM_FAMILIES: Dict[str, str] = {
    "ubuntu": "linux",
    "linux": "linux",
    "debian": "linux",
    "fedora": "linux",
    "windows": "win32",
    "macos": "darwin",
    "darwin": "darwin",
    "osx": "darwin",
}

# labels that always mean "this machine"
HOST_LABELS = {"local", "host", "self-hosted"}

CONTAINER_WORKDIR = "/workspace"


def platform_family(label: str) -> Optional[str]:
    """
    Map a platform label to a sys.platform family.

    Returns None for labels that name no known OS family; those are opaque
    identifiers and run on the current host.
    """
    name = label.lower()
    if name in HOST_LABELS:
        return None
    for prefix, family in PLATFORM_FAMILIES.items():
        if name.startswith(prefix):
            return family
    return None


def host_matches(label: str, host: str | None = None) -> bool:
    family = platform_family(label)
    if family is None:
        return True
    return (host or sys.platform).startswith(family)


@dataclass(frozen=True)
class Environment:
    """A provisioned (platform, toolchain) environment commands run in."""
    platform: str
    toolchain: str
    repo_root: Path
    env: Dict[str, str] = field(default_factory=dict)
    image: str | None = None

    def render(self, text: str) -> str:
        return text.replace("{platform}", self.platform).replace("{toolchain}", self.toolchain)

    def command(
        self,
        cmd: str,
        cwd: str | None = None,
        extra_env: Optional[Dict[str, str]] = None,
    ) -> Tuple[Union[str, List[str]], Path, Dict[str, str]]:
        """
        Build (argv-or-shell-string, host cwd, process env) for a step.

        On the host the command runs through the shell in repo_root/cwd.
        With an image it runs as `docker run ... sh -c <cmd>` with the repo
        mounted at /workspace.
        """
        matrix_env = dict(self.env)
        matrix_env.update({k: self.render(v) for k, v in (extra_env or {}).items()})
        matrix_env["MATRIX_PLATFORM"] = self.platform
        matrix_env["MATRIX_TOOLCHAIN"] = self.toolchain

        host_cwd = (self.repo_root / (cwd or ".")).resolve()
        rendered = self.render(cmd)

        if self.image is None:
            proc_env = os.environ.copy()
            proc_env.update(matrix_env)
            return rendered, host_cwd, proc_env

        argv = ["docker", "run", "--rm"]
        argv.extend(["-v", f"{self.repo_root.resolve()}:{CONTAINER_WORKDIR}"])
        container_cwd = f"{CONTAINER_WORKDIR}/{cwd or '.'}".replace("//", "/")
        argv.extend(["-w", container_cwd])
        # only matrix variables cross into the container; host PATH etc. would break it
        for key, value in matrix_env.items():
            argv.extend(["-e", f"{key}={value}"])
        argv.append(self.image)
        argv.extend(["sh", "-c", rendered])
        return argv, self.repo_root.resolve(), os.environ.copy()


class Provisioner:
    """
    Decides whether a cell can run here, and prepares its environment.

    Checks, in order:
      - platform: a docker image is configured, or the label matches the host
      - tools: every `requires` entry of the cell's steps is on PATH
        (docker when an image is used)
      - setup: the optional setup command template exits 0
    Any failure raises EnvironmentUnavailable; no step has run yet.
    """

    def __init__(
        self,
        repo_root: str | Path = ".",
        *,
        env: Optional[Dict[str, str]] = None,
        setup: str | None = None,
        images: Optional[Dict[str, str]] = None,
        setup_timeout: float | None = None,
        host: str | None = None,
    ):
        self.repo_root = Path(repo_root).resolve()
        self.env = dict(env or {})
        self.setup = setup
        self.images = dict(images or {})
        self.setup_timeout = setup_timeout
        self.host = host or sys.platform

    def _unavailable(self, cell: Cell, reason: str, tool: str | None = None) -> EnvironmentUnavailable:
        hint = TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.") if tool else None
        return EnvironmentUnavailable(cell.platform, cell.toolchain, reason, hint=hint)

    def _check_docker_available(self, cell: Cell) -> None:
        try:
            subprocess.run(["docker", "--version"], capture_output=True, check=True)
        except (subprocess.CalledProcessError, FileNotFoundError):
            raise self._unavailable(cell, "Docker is not available", tool="docker")

    def _check_tools(self, cell: Cell) -> None:
        for step in cell.steps:
            for tool in step.requires:
                if shutil.which(tool) is None:
                    raise self._unavailable(cell, f"{tool} is not available (needed by '{step.name}')", tool=tool)

    def provision(self, cell: Cell, cancel: CancelToken | None = None) -> Environment:
        image = self.images.get(cell.platform)
        env = Environment(
            platform=cell.platform,
            toolchain=cell.toolchain,
            repo_root=self.repo_root,
            env={k: v.replace("{platform}", cell.platform).replace("{toolchain}", cell.toolchain)
                 for k, v in self.env.items()},
            image=image,
        )

        if image is not None:
            self._check_docker_available(cell)
        else:
            if not host_matches(cell.platform, self.host):
                raise self._unavailable(
                    cell,
                    f"platform '{cell.platform}' cannot run on host '{self.host}' and has no image",
                )
            self._check_tools(cell)

        if self.setup:
            args, cwd, proc_env = env.command(self.setup)
            try:
                res = run_command(args, cwd=cwd, env=proc_env, timeout=self.setup_timeout, cancel=cancel)
            except OSError as e:
                raise self._unavailable(cell, f"setup could not start: {e}")
            if res.cancelled:
                # caller sees the token and reports the cell as cancelled
                return env
            if res.timed_out:
                raise self._unavailable(cell, f"setup timed out: {env.render(self.setup)}")
            if res.exit_code != 0:
                last = res.output.strip().splitlines()[-1:] or [""]
                raise self._unavailable(
                    cell,
                    f"setup failed (exit={res.exit_code}): {env.render(self.setup)} {last[0]}".rstrip(),
                )

        return env
