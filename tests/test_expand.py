from __future__ import annotations

import itertools

import pytest

from matrixci.config import MatrixConfig
from matrixci.dsl import sh
from matrixci.errors import EmptyMatrix
from matrixci.expand import expand_config, expand_matrix

STEPS = [sh("test", "true"), sh("format-check", "true"), sh("check", "true")]


def test_example_scenario_order() -> None:
    cells = expand_matrix(["A", "B"], ["x", "y", "z"], STEPS)

    assert [c.key for c in cells] == [
        ("A", "x"), ("A", "y"), ("A", "z"),
        ("B", "x"), ("B", "y"), ("B", "z"),
    ]
    assert [c.index for c in cells] == list(range(6))
    assert all(c.steps == tuple(STEPS) for c in cells)


@pytest.mark.parametrize("n_platforms,n_toolchains", [(1, 1), (1, 4), (3, 3), (5, 2)])
def test_cross_product_is_complete_and_unique(n_platforms: int, n_toolchains: int) -> None:
    platforms = [f"p{i}" for i in range(n_platforms)]
    toolchains = [f"t{i}" for i in range(n_toolchains)]

    cells = expand_matrix(platforms, toolchains, STEPS)

    keys = [c.key for c in cells]
    assert len(keys) == n_platforms * n_toolchains
    assert len(set(keys)) == len(keys)
    assert set(keys) == set(itertools.product(platforms, toolchains))


def test_expansion_is_deterministic() -> None:
    a = expand_matrix(["ubuntu", "windows", "macos"], ["stable", "beta", "nightly"], STEPS)
    b = expand_matrix(["ubuntu", "windows", "macos"], ["stable", "beta", "nightly"], STEPS)
    assert a == b


def test_duplicates_are_dropped_keeping_first_position() -> None:
    cells = expand_matrix(["A", "B", "A"], ["x", "x"], STEPS)
    assert [c.key for c in cells] == [("A", "x"), ("B", "x")]


@pytest.mark.parametrize(
    "platforms,toolchains,steps",
    [([], ["x"], STEPS), (["A"], [], STEPS), (["A"], ["x"], [])],
)
def test_empty_input_raises(platforms, toolchains, steps) -> None:
    with pytest.raises(EmptyMatrix):
        expand_matrix(platforms, toolchains, steps)


def test_exclude_and_include() -> None:
    config = MatrixConfig(
        platforms=["A", "B"],
        toolchains=["x", "y"],
        steps=STEPS,
        exclude=[{"platform": "B", "toolchain": "y"}, {"toolchain": "x", "platform": "A"}],
        include=[{"platform": "C", "toolchain": "x"}, {"platform": "A", "toolchain": "y"}],
    )

    cells = expand_config(config)

    assert [c.key for c in cells] == [("A", "y"), ("B", "x"), ("C", "x")]
    assert [c.index for c in cells] == [0, 1, 2]


def test_partial_exclude_matches_any_value() -> None:
    config = MatrixConfig(
        platforms=["A", "B"],
        toolchains=["x", "y"],
        steps=STEPS,
        exclude=[{"toolchain": "y"}],
    )
    assert [c.key for c in expand_config(config)] == [("A", "x"), ("B", "x")]


def test_excluding_everything_is_an_empty_matrix() -> None:
    config = MatrixConfig(platforms=["A"], toolchains=["x"], steps=STEPS, exclude=[{"platform": "A"}])
    with pytest.raises(EmptyMatrix):
        expand_config(config)
