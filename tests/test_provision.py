from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from conftest import py

from matrixci.dsl import sh
from matrixci.errors import EnvironmentUnavailable
from matrixci.model import Cell
from matrixci.provision import Provisioner, host_matches, platform_family


@pytest.mark.parametrize(
    "label,family",
    [
        ("ubuntu-latest", "linux"),
        ("ubuntu-22.04", "linux"),
        ("windows-latest", "win32"),
        ("macos-13", "darwin"),
        ("local", None),
        ("self-hosted", None),
        ("A", None),
    ],
)
def test_platform_family(label: str, family) -> None:
    assert platform_family(label) == family


def test_host_matches() -> None:
    assert host_matches("ubuntu-latest", host="linux")
    assert not host_matches("windows-latest", host="linux")
    assert host_matches("macos-latest", host="darwin")
    assert host_matches("anything-opaque", host="win32")


def cell(platform: str = "A", toolchain: str = "x", *steps) -> Cell:
    return Cell(platform=platform, toolchain=toolchain, steps=tuple(steps) or (sh("t", "true"),))


def test_foreign_platform_without_image_is_unavailable(tmp_path: Path) -> None:
    prov = Provisioner(tmp_path, host="linux")
    with pytest.raises(EnvironmentUnavailable) as exc:
        prov.provision(cell("windows-latest"))
    assert exc.value.platform == "windows-latest"
    assert "cannot run on host" in exc.value.reason


def test_missing_tool_is_unavailable_with_hint(tmp_path: Path) -> None:
    prov = Provisioner(tmp_path)
    c = cell("A", "x", sh("test", "cargo test", requires=["definitely-not-a-real-tool-xyz"]))
    with pytest.raises(EnvironmentUnavailable) as exc:
        prov.provision(c)
    assert "definitely-not-a-real-tool-xyz" in exc.value.reason
    assert exc.value.hint == "Install definitely-not-a-real-tool-xyz or fix PATH."


def test_setup_failure_is_unavailable(tmp_path: Path) -> None:
    prov = Provisioner(tmp_path, setup=py("import sys; print('no such toolchain'); sys.exit(1)") + " {toolchain}")
    with pytest.raises(EnvironmentUnavailable) as exc:
        prov.provision(cell("A", "nightly"))
    assert "exit=1" in exc.value.reason
    assert "nightly" in exc.value.reason
    assert "no such toolchain" in exc.value.reason


def test_setup_success_returns_environment(tmp_path: Path) -> None:
    marker = tmp_path / "setup-x"
    prov = Provisioner(
        tmp_path,
        setup=py(f"open({str(tmp_path)!r} + '/setup-' + __import__('sys').argv[1], 'w').close()") + " {toolchain}",
        env={"TOOLCHAIN_NAME": "{toolchain}"},
    )

    env = prov.provision(cell("A", "x"))

    assert marker.exists()
    assert env.platform == "A"
    assert env.toolchain == "x"
    assert env.env == {"TOOLCHAIN_NAME": "x"}


def test_image_requires_docker(tmp_path: Path, monkeypatch) -> None:
    def no_docker(*args, **kwargs):
        raise FileNotFoundError("docker")

    monkeypatch.setattr(subprocess, "run", no_docker)
    prov = Provisioner(tmp_path, images={"windows-latest": "mcr.microsoft.com/windows:ltsc2022"}, host="linux")

    with pytest.raises(EnvironmentUnavailable) as exc:
        prov.provision(cell("windows-latest"))
    assert exc.value.hint == "Install Docker and ensure the daemon is running."


def test_image_wraps_commands_in_docker_run(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(subprocess, "run", lambda *a, **k: subprocess.CompletedProcess(a, 0))
    prov = Provisioner(tmp_path, images={"ubuntu-latest": "rust:latest"}, env={"CARGO_TERM_COLOR": "always"})

    env = prov.provision(cell("ubuntu-latest", "beta"))
    argv, cwd, _ = env.command("cargo +{toolchain} test", cwd="crate")

    assert argv[:3] == ["docker", "run", "--rm"]
    assert f"{tmp_path.resolve()}:/workspace" in argv
    assert argv[argv.index("-w") + 1] == "/workspace/crate"
    assert "CARGO_TERM_COLOR=always" in argv
    assert "MATRIX_TOOLCHAIN=beta" in argv
    assert argv[-4:] == ["rust:latest", "sh", "-c", "cargo +beta test"]
    assert cwd == tmp_path.resolve()
