# src/matrixci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .config import MatrixConfig, MatrixEntry, StepConfig
from .model import Step


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    timeout: float | None = None,
    requires: Optional[Iterable[str]] = None,
    mode: str | None = None,
) -> Step:
    """Create a shell step. `cmd` may use {platform} and {toolchain}."""
    return Step(
        name=name,
        run=cmd,
        cwd=cwd,
        env={k: str(v) for k, v in (env or {}).items()},
        timeout=timeout,
        requires=tuple(requires or ()),
        mode=mode,
    )


# ---------------------------------------------------------------------
# Functional matrix helper
# ---------------------------------------------------------------------

def matrix(
    platforms: Iterable[str],
    toolchains: Iterable[str],
    *steps: Step,  # allow: matrix([...], [...], sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,
    max_concurrency: int | None = None,
    retry_unavailable: bool = False,
    step_timeout: float | None = None,
    cell_timeout: float | None = None,
    env: Optional[Dict[str, str]] = None,
    setup: str | None = None,
    images: Optional[Dict[str, str]] = None,
    include: Optional[List[Dict[str, str]]] = None,
    exclude: Optional[List[Dict[str, str]]] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> MatrixConfig:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return MatrixConfig(
        platforms=list(platforms),
        toolchains=list(toolchains),
        steps=[StepConfig.from_step(s) for s in steps_final],
        max_concurrency=max_concurrency,
        retry_unavailable=retry_unavailable,
        step_timeout=step_timeout,
        cell_timeout=cell_timeout,
        env={k: str(v) for k, v in (env or {}).items()},
        setup=setup,
        images=dict(images or {}),
        include=[MatrixEntry(**e) for e in (include or [])],
        exclude=[MatrixEntry(**e) for e in (exclude or [])],
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class MatrixBuilder:
    def __init__(self):
        self._platforms: list[str] = []
        self._toolchains: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._images: dict[str, str] = {}
        self._include: list[dict[str, str]] = []
        self._exclude: list[dict[str, str]] = []
        self._setup: str | None = None
        self._max_concurrency: int | None = None
        self._retry_unavailable: bool = False
        self._step_timeout: float | None = None
        self._cell_timeout: float | None = None

    def on(self, *platforms: str):
        self._platforms.extend(platforms)
        return self

    def with_toolchains(self, *toolchains: str):
        self._toolchains.extend(toolchains)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, **kwargs):
        self._steps.append(sh(name, run, cwd=cwd, **kwargs))
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def setup_with(self, cmd: str):
        self._setup = cmd
        return self

    def in_image(self, platform: str, image: str):
        self._images[platform] = image
        return self

    def include(self, platform: str, toolchain: str):
        self._include.append({"platform": platform, "toolchain": toolchain})
        return self

    def exclude(self, platform: str | None = None, toolchain: str | None = None):
        entry = {}
        if platform is not None:
            entry["platform"] = platform
        if toolchain is not None:
            entry["toolchain"] = toolchain
        self._exclude.append(entry)
        return self

    def concurrency(self, n: int):
        self._max_concurrency = n
        return self

    def retry_unavailable(self, enabled: bool = True):
        self._retry_unavailable = enabled
        return self

    def timeouts(self, *, step: float | None = None, cell: float | None = None):
        self._step_timeout = step
        self._cell_timeout = cell
        return self

    def build(self) -> MatrixConfig:
        return matrix(
            self._platforms,
            self._toolchains,
            steps_list=self._steps,
            max_concurrency=self._max_concurrency,
            retry_unavailable=self._retry_unavailable,
            step_timeout=self._step_timeout,
            cell_timeout=self._cell_timeout,
            env=self._env,
            setup=self._setup,
            images=self._images,
            include=self._include,
            exclude=self._exclude,
        )


def build() -> MatrixBuilder:
    """Convenience: build().on('ubuntu').with_toolchains('stable').define_step(...).build()"""
    return MatrixBuilder()
