from __future__ import annotations

import threading
from pathlib import Path

import pytest

from conftest import FlakyProvisioner, py

from matrixci.dsl import sh
from matrixci.expand import expand_matrix
from matrixci.model import Cell, CellStatus
from matrixci.process import CancelToken
from matrixci.scheduler import CellTracker, Scheduler

FAIL_FOR_A_X = py(
    "import os, sys; "
    "sys.exit(1 if (os.environ['MATRIX_PLATFORM'], os.environ['MATRIX_TOOLCHAIN']) == ('A', 'x') else 0)"
)


def test_failure_of_one_cell_does_not_affect_others(provisioner) -> None:
    cells = expand_matrix(["A", "B"], ["x", "y"], [sh("test", FAIL_FOR_A_X), sh("after", "true")])

    results = Scheduler(provisioner=provisioner).run(cells)

    by_key = {r.cell.key: r for r in results}
    assert len(results) == 4
    assert by_key[("A", "x")].status is CellStatus.FAILED
    for key in [("A", "y"), ("B", "x"), ("B", "y")]:
        assert by_key[key].status is CellStatus.PASSED
        assert [o.name for o in by_key[key].steps] == ["test", "after"]


def test_concurrency_bound_is_respected(provisioner) -> None:
    cells = expand_matrix(["A", "B"], ["x", "y", "z"], [sh("sleep", py("import time; time.sleep(0.3)"))])
    scheduler = Scheduler(max_concurrency=2, provisioner=provisioner)

    results = scheduler.run(cells)

    assert len(results) == 6
    assert all(r.passed for r in results)
    assert scheduler.tracker.peak == 2
    assert scheduler.tracker.running == 0


def test_default_concurrency_runs_all_cells_at_once(provisioner) -> None:
    cells = expand_matrix(["A", "B"], ["x", "y"], [sh("sleep", py("import time; time.sleep(0.5)"))])
    scheduler = Scheduler(provisioner=provisioner)

    scheduler.run(cells)

    assert scheduler.tracker.peak == 4


def test_results_stream_in_completion_order(provisioner) -> None:
    slow_first = py(
        "import os, time; time.sleep(1.0 if os.environ['MATRIX_TOOLCHAIN'] == 'slow' else 0.0)"
    )
    cells = expand_matrix(["A"], ["slow", "fast"], [sh("work", slow_first)])
    streamed = []

    results = Scheduler(provisioner=provisioner, on_result=streamed.append).run(cells)

    assert [r.cell.toolchain for r in results] == ["fast", "slow"]
    assert streamed == results


def test_states_reach_terminal(provisioner) -> None:
    transitions = []
    lock = threading.Lock()

    def on_state(cell, state):
        with lock:
            transitions.append((cell.key, state))

    cells = expand_matrix(["A", "B"], ["x"], [sh("test", FAIL_FOR_A_X)])
    scheduler = Scheduler(provisioner=provisioner, on_state=on_state)
    scheduler.run(cells)

    assert scheduler.tracker.snapshot() == {0: CellStatus.FAILED, 1: CellStatus.PASSED}
    for key in [("A", "x"), ("B", "x")]:
        states = [s for k, s in transitions if k == key]
        assert states[0] is CellStatus.RUNNING
        assert states[-1].terminal
        assert len(states) == 2


def test_retry_unavailable_once(tmp_path: Path) -> None:
    prov = FlakyProvisioner(tmp_path, {("A", "x"): 1, ("B", "x"): 5})
    cells = expand_matrix(["A", "B", "C"], ["x"], [sh("test", "true")])

    results = Scheduler(provisioner=prov, retry_unavailable=True).run(cells)

    by_key = {r.cell.key: r for r in results}
    assert by_key[("A", "x")].status is CellStatus.PASSED
    assert by_key[("A", "x")].attempts == 2
    assert by_key[("B", "x")].status is CellStatus.UNAVAILABLE
    assert by_key[("B", "x")].attempts == 2
    assert by_key[("C", "x")].attempts == 1
    assert prov.calls == {("A", "x"): 2, ("B", "x"): 2, ("C", "x"): 1}


def test_no_retry_by_default(tmp_path: Path) -> None:
    prov = FlakyProvisioner(tmp_path, {("A", "x"): 1})
    cells = expand_matrix(["A"], ["x"], [sh("test", "true")])

    [res] = Scheduler(provisioner=prov).run(cells)

    assert res.status is CellStatus.UNAVAILABLE
    assert res.attempts == 1
    assert prov.calls == {("A", "x"): 1}


def test_cancel_marks_unstarted_cells_cancelled(tmp_path: Path, provisioner) -> None:
    cells = expand_matrix(["A"], ["x", "y", "z", "w"], [sh("sleep", py("import time; time.sleep(0.2)"))])
    token = CancelToken()

    def cancel_after_first(result):
        token.cancel()

    results = Scheduler(max_concurrency=1, provisioner=provisioner, on_result=cancel_after_first).run(
        cells, cancel=token
    )

    statuses = [r.status for r in sorted(results, key=lambda r: r.cell.index)]
    assert len(results) == 4
    assert statuses[0] is CellStatus.PASSED
    assert CellStatus.PENDING not in statuses
    assert statuses[-1] is CellStatus.CANCELLED


def test_cancel_terminates_running_cells(provisioner) -> None:
    cells = expand_matrix(["A", "B"], ["x"], [sh("hang", py("import time; time.sleep(60)"))])
    token = CancelToken()
    timer = threading.Timer(0.5, token.cancel)
    timer.start()
    try:
        results = Scheduler(provisioner=provisioner).run(cells, cancel=token)
    finally:
        timer.cancel()

    assert [r.status for r in results] == [CellStatus.CANCELLED, CellStatus.CANCELLED]
    assert all(r.duration < 30 for r in results)


def test_tracker_rejects_second_terminal_state() -> None:
    c = Cell(platform="A", toolchain="x", steps=(sh("t", "true"),))
    tracker = CellTracker([c])

    assert tracker.start(0) is True
    tracker.finish(0, CellStatus.PASSED)

    assert tracker.start(0) is False
    with pytest.raises(RuntimeError):
        tracker.finish(0, CellStatus.FAILED)
    with pytest.raises(ValueError):
        tracker.finish(0, CellStatus.RUNNING)


def test_hand_built_cells_sharing_an_index_run_independently(provisioner) -> None:
    cells = [
        Cell(platform="A", toolchain="x", steps=(sh("test", FAIL_FOR_A_X),)),
        Cell(platform="B", toolchain="y", steps=(sh("test", FAIL_FOR_A_X),)),
    ]
    scheduler = Scheduler(max_concurrency=1, provisioner=provisioner)

    results = scheduler.run(cells)

    by_key = {r.cell.key: r for r in results}
    assert len(results) == 2
    assert by_key[("A", "x")].status is CellStatus.FAILED
    assert by_key[("A", "x")].failed_step == "test"
    assert by_key[("B", "y")].status is CellStatus.PASSED
    assert by_key[("B", "y")].error is None
    assert scheduler.tracker.snapshot() == {0: CellStatus.FAILED, 1: CellStatus.PASSED}


def test_step_timeout_fails_only_its_own_cell(provisioner) -> None:
    hang_on_x = py("import os, time; time.sleep(30 if os.environ['MATRIX_TOOLCHAIN'] == 'x' else 0)")
    cells = expand_matrix(["A"], ["x", "y"], [sh("build", hang_on_x), sh("after", "true")])

    results = Scheduler(provisioner=provisioner, step_timeout=0.5).run(cells)

    by_key = {r.cell.key: r for r in results}
    timed_out = by_key[("A", "x")]
    assert timed_out.status is CellStatus.FAILED
    assert timed_out.failed_step == "build"
    assert timed_out.steps[-1].timed_out is True
    assert timed_out.duration < 15
    assert by_key[("A", "y")].status is CellStatus.PASSED
    assert [o.name for o in by_key[("A", "y")].steps] == ["build", "after"]


def test_interrupt_in_result_callback_keeps_every_result(provisioner) -> None:
    cells = expand_matrix(["A"], ["x", "y", "z"], [sh("sleep", py("import time; time.sleep(0.2)"))])
    token = CancelToken()
    streamed = []

    def interrupt_once(result):
        streamed.append(result)
        if len(streamed) == 1:
            raise KeyboardInterrupt

    results = Scheduler(max_concurrency=1, provisioner=provisioner, on_result=interrupt_once).run(
        cells, cancel=token
    )

    assert token.cancelled
    assert sorted(r.cell.index for r in results) == [0, 1, 2]
    assert results == streamed
    assert results[0].status is CellStatus.PASSED
    assert all(r.status.terminal for r in results)
    assert max(results, key=lambda r: r.cell.index).status is CellStatus.CANCELLED


def test_invalid_concurrency() -> None:
    with pytest.raises(ValueError):
        Scheduler(max_concurrency=0)
