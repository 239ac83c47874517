# expand.py
from __future__ import annotations

from typing import Iterable, List, Sequence

from .config import MatrixConfig, MatrixEntry
from .errors import EmptyMatrix
from .model import Cell, Step


def _unique(values: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    out: List[str] = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


def expand_matrix(
    platforms: Iterable[str],
    toolchains: Iterable[str],
    steps: Sequence[Step],
) -> List[Cell]:
    """
    Cross product of platforms x toolchains, platforms outer, toolchains inner.

    Every cell gets the same step tuple. Repeated identifiers are dropped
    (first occurrence wins) so each (platform, toolchain) pair appears once.

    Raises:
        EmptyMatrix: if platforms, toolchains or steps is empty
    """
    p = _unique(platforms)
    t = _unique(toolchains)
    step_tuple = tuple(steps)

    if not p:
        raise EmptyMatrix("no platforms configured")
    if not t:
        raise EmptyMatrix("no toolchains configured")
    if not step_tuple:
        raise EmptyMatrix("no steps configured")

    cells: List[Cell] = []
    for platform in p:
        for toolchain in t:
            cells.append(Cell(platform=platform, toolchain=toolchain, steps=step_tuple, index=len(cells)))
    return cells


def _apply(cells: List[Cell], include: List[MatrixEntry], exclude: List[MatrixEntry]) -> List[Cell]:
    kept = [c for c in cells if not any(e.matches(c.platform, c.toolchain) for e in exclude)]

    if cells:
        steps = cells[0].steps
        present = {c.key for c in kept}
        for e in include:
            # a partial include entry has no single pair to add
            if e.platform is None or e.toolchain is None:
                continue
            if (e.platform, e.toolchain) in present:
                continue
            present.add((e.platform, e.toolchain))
            kept.append(Cell(platform=e.platform, toolchain=e.toolchain, steps=steps))

    # renumber so index always matches position
    return [
        c if c.index == i else Cell(platform=c.platform, toolchain=c.toolchain, steps=c.steps, index=i)
        for i, c in enumerate(kept)
    ]


def expand_config(config: MatrixConfig) -> List[Cell]:
    """Expand a MatrixConfig, then apply its exclude and include entries."""
    cells = expand_matrix(config.platforms, config.toolchains, config.step_list())
    cells = _apply(cells, config.include, config.exclude)
    if not cells:
        raise EmptyMatrix("every cell was excluded", exclude=len(config.exclude))
    return cells
