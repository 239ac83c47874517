# config.py
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .model import Step


# -------------------- Schemas --------------------

class StepConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: str
    run: str = Field(alias="command")
    cwd: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[float] = Field(default=None, gt=0)
    requires: List[str] = Field(default_factory=list)
    mode: Optional[str] = None

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        return v

    def to_step(self) -> Step:
        return Step(
            name=self.name,
            run=self.run,
            cwd=self.cwd,
            env=dict(self.env),
            timeout=self.timeout,
            requires=tuple(self.requires),
            mode=self.mode,
        )

    @classmethod
    def from_step(cls, step: Step) -> "StepConfig":
        return cls(
            name=step.name,
            run=step.run,
            cwd=step.cwd,
            env=dict(step.env),
            timeout=step.timeout,
            requires=list(step.requires),
            mode=step.mode,
        )


class MatrixEntry(BaseModel):
    """A partial (platform, toolchain) pair used by include/exclude."""
    model_config = ConfigDict(extra="forbid")

    platform: Optional[str] = None
    toolchain: Optional[str] = None

    def matches(self, platform: str, toolchain: str) -> bool:
        if self.platform is not None and self.platform != platform:
            return False
        if self.toolchain is not None and self.toolchain != toolchain:
            return False
        return True


class MatrixConfig(BaseModel):
    """
    The matrix declaration: which platforms and toolchains to combine, the
    ordered checks every cell runs, and the scheduler knobs.

    camelCase aliases (maxConcurrency, retryUnavailable, ...) are accepted so
    YAML files can use either spelling.
    """
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    platforms: List[str]
    toolchains: List[str]
    steps: List[StepConfig]

    max_concurrency: Optional[int] = Field(default=None, gt=0, alias="maxConcurrency")
    retry_unavailable: bool = Field(default=False, alias="retryUnavailable")
    step_timeout: Optional[float] = Field(default=None, gt=0, alias="stepTimeout")
    cell_timeout: Optional[float] = Field(default=None, gt=0, alias="cellTimeout")

    env: Dict[str, str] = Field(default_factory=dict)
    setup: Optional[str] = None
    images: Dict[str, str] = Field(default_factory=dict)

    include: List[MatrixEntry] = Field(default_factory=list)
    exclude: List[MatrixEntry] = Field(default_factory=list)

    @field_validator("platforms", "toolchains", mode="before")
    @classmethod
    def _stringify_ids(cls, v: Any) -> Any:
        # YAML turns `nightly` into a str but `1.70` into a float
        if isinstance(v, (list, tuple)):
            return [str(x) for x in v]
        return v

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        return v

    @field_validator("steps", mode="before")
    @classmethod
    def _accept_steps(cls, v: Any) -> Any:
        # allow Step dataclasses from the Python DSL
        if isinstance(v, (list, tuple)):
            return [StepConfig.from_step(s) if isinstance(s, Step) else s for s in v]
        return v

    def step_list(self) -> List[Step]:
        return [s.to_step() for s in self.steps]


def parse_config(data: Any, *, source: str = "<config>") -> MatrixConfig:
    """Validate raw data (dict or MatrixConfig) into a MatrixConfig."""
    if isinstance(data, MatrixConfig):
        return data
    if not isinstance(data, dict):
        raise ConfigError(
            "Matrix configuration must be a mapping",
            source=source,
            got=type(data).__name__,
        )
    try:
        return MatrixConfig.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError("Invalid matrix configuration", source=source, errors=problems) from e


# ----------------------------------------------------------------------
# YAML loading
# ----------------------------------------------------------------------

_MATRIX_EXPR = re.compile(r"\$\{\{\s*matrix\.([A-Za-z0-9_-]+)\s*\}\}")

PLATFORM_KEYS = ("os", "platform", "runs-on")
TOOLCHAIN_KEYS = ("toolchain", "rust", "compiler", "python-version", "python", "node-version", "node")

RUST_TOOLCHAIN_ACTIONS = ("actions-rs/toolchain", "dtolnay/rust-toolchain")


def _load_yaml_mapping(path: Path) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError("Workflow file not found", path=str(path)) from e
    except yaml.YAMLError as e:
        raise ConfigError("Invalid YAML", path=str(path), error=str(e)) from e
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("Expected a YAML mapping at top level", path=str(path))
    return raw


def _pick_key(matrix: dict[str, Any], candidates: tuple[str, ...]) -> Optional[str]:
    for k in candidates:
        if k in matrix:
            return k
    return None


def _rewrite_expr(text: str, platform_key: str, toolchain_key: str) -> str:
    def sub(m: re.Match) -> str:
        key = m.group(1)
        if key == platform_key:
            return "{platform}"
        if key == toolchain_key:
            return "{toolchain}"
        return m.group(0)

    return _MATRIX_EXPR.sub(sub, text)


def _rust_setup(with_: dict[str, Any], platform_key: str, toolchain_key: str) -> str:
    toolchain = _rewrite_expr(str(with_.get("toolchain", "{toolchain}")), platform_key, toolchain_key)
    cmd = f"rustup toolchain install {toolchain} --profile minimal"
    components = with_.get("components")
    if components:
        parts = [c.strip() for c in str(components).split(",") if c.strip()]
        cmd += "".join(f" --component {c}" for c in parts)
    return cmd


def from_github_workflow(raw: dict[str, Any], *, job: str | None = None, source: str = "<yaml>") -> MatrixConfig:
    """
    Translate a GitHub Actions workflow with a two-axis `strategy.matrix`
    into a MatrixConfig.

    `uses:` steps are dropped, except a Rust toolchain action which becomes
    the per-cell `setup` command. `${{ matrix.<key> }}` references become
    `{platform}` / `{toolchain}` placeholders.
    """
    jobs = raw.get("jobs") or {}
    if not isinstance(jobs, dict) or not jobs:
        raise ConfigError("Workflow has no jobs", source=source)

    if job is not None:
        if job not in jobs:
            raise ConfigError(f"Job '{job}' not found in workflow", source=source, jobs=sorted(jobs))
        job_id = job
    else:
        with_matrix = [k for k, v in jobs.items() if isinstance(v, dict) and (v.get("strategy") or {}).get("matrix")]
        if not with_matrix:
            raise ConfigError("No job declares strategy.matrix", source=source)
        job_id = with_matrix[0]

    job_def = jobs[job_id] or {}
    matrix = dict((job_def.get("strategy") or {}).get("matrix") or {})
    include = matrix.pop("include", []) or []
    exclude = matrix.pop("exclude", []) or []

    platform_key = _pick_key(matrix, PLATFORM_KEYS)
    toolchain_key = _pick_key(matrix, TOOLCHAIN_KEYS)
    if platform_key is None or toolchain_key is None:
        remaining = [k for k in matrix if k not in (platform_key, toolchain_key)]
        if platform_key is None and remaining:
            platform_key = remaining.pop(0)
        if toolchain_key is None and remaining:
            toolchain_key = remaining.pop(0)
    if platform_key is None or toolchain_key is None:
        raise ConfigError(
            "strategy.matrix needs a platform axis and a toolchain axis",
            source=source,
            job=job_id,
            keys=sorted(matrix),
        )

    def entry(e: dict[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if platform_key in e:
            out["platform"] = str(e[platform_key])
        if toolchain_key in e:
            out["toolchain"] = str(e[toolchain_key])
        return out

    env: dict[str, Any] = {}
    env.update(raw.get("env") or {})
    env.update(job_def.get("env") or {})

    setup: str | None = None
    steps: list[dict[str, Any]] = []
    for i, s in enumerate(job_def.get("steps") or []):
        if not isinstance(s, dict):
            continue
        uses = s.get("uses")
        if uses:
            if str(uses).startswith(RUST_TOOLCHAIN_ACTIONS):
                with_ = s.get("with") or {}
                setup = _rust_setup(with_, platform_key, toolchain_key)
                if with_.get("override"):
                    env["RUSTUP_TOOLCHAIN"] = "{toolchain}"
            continue
        run = s.get("run")
        if not run:
            continue
        run = _rewrite_expr(str(run).strip(), platform_key, toolchain_key)
        step: dict[str, Any] = {
            "name": s.get("name") or run.splitlines()[0],
            "run": run,
        }
        if s.get("working-directory"):
            step["cwd"] = s["working-directory"]
        if s.get("env"):
            step["env"] = {
                str(k): _rewrite_expr(str(v), platform_key, toolchain_key)
                for k, v in s["env"].items()
            }
        if s.get("timeout-minutes"):
            step["timeout"] = float(s["timeout-minutes"]) * 60
        if "--check" in run:
            step["mode"] = "check"
        steps.append(step)

    data: dict[str, Any] = {
        "platforms": matrix.get(platform_key) or [],
        "toolchains": matrix.get(toolchain_key) or [],
        "steps": steps,
        "env": {str(k): _rewrite_expr(str(v), platform_key, toolchain_key) for k, v in env.items()},
        "include": [entry(e) for e in include if isinstance(e, dict)],
        "exclude": [entry(e) for e in exclude if isinstance(e, dict)],
    }
    if setup:
        data["setup"] = setup
    strategy = job_def.get("strategy") or {}
    if strategy.get("max-parallel"):
        data["max_concurrency"] = int(strategy["max-parallel"])
    if job_def.get("timeout-minutes"):
        data["cell_timeout"] = float(job_def["timeout-minutes"]) * 60

    return parse_config(data, source=source)


def load_yaml_config(path: str | Path, *, job: str | None = None) -> MatrixConfig:
    """
    Load a matrix config from YAML.

    Accepts either a flat matrix declaration (platforms / toolchains / steps
    at the top level) or a GitHub Actions workflow.
    """
    p = Path(path)
    raw = _load_yaml_mapping(p)
    if "jobs" in raw and "platforms" not in raw:
        return from_github_workflow(raw, job=job, source=str(p))
    return parse_config(raw, source=str(p))
