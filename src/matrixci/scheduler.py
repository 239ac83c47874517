# scheduler.py
from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Set

from .executor import StepCallback, SupportsProvision, execute_cell
from .model import Cell, CellResult, CellStatus
from .process import CancelToken
from .provision import Provisioner

ResultCallback = Callable[[CellResult], None]
StateCallback = Callable[[Cell, CellStatus], None]


class CellTracker:
    """
    Per-cell state machine shared by the worker threads.

    pending -> running -> {passed, failed, unavailable, cancelled}
    pending -> cancelled

    Cells are tracked by slot, their position in the list the tracker was
    built from, so hand-built cells sharing an index stay distinct.

    The running count is the only shared counter; it changes under the lock
    on every start and finish, and its high-water mark is kept in `peak`.
    """

    def __init__(self, cells: Iterable[Cell], on_state: Optional[StateCallback] = None):
        self._lock = threading.Lock()
        self._cells: List[Cell] = list(cells)
        self._states: List[CellStatus] = [CellStatus.PENDING] * len(self._cells)
        self._on_state = on_state
        self.running = 0
        self.peak = 0

    def _notify(self, slot: int, state: CellStatus) -> None:
        if self._on_state is not None:
            self._on_state(self._cells[slot], state)

    def cell(self, slot: int) -> Cell:
        return self._cells[slot]

    def start(self, slot: int) -> bool:
        """Move a pending cell to running. False if it is already terminal."""
        with self._lock:
            if self._states[slot] is not CellStatus.PENDING:
                return False
            self._states[slot] = CellStatus.RUNNING
            self.running += 1
            self.peak = max(self.peak, self.running)
        self._notify(slot, CellStatus.RUNNING)
        return True

    def finish(self, slot: int, state: CellStatus) -> None:
        if not state.terminal:
            raise ValueError(f"{state.value} is not a terminal state")
        with self._lock:
            current = self._states[slot]
            if current.terminal:
                raise RuntimeError(f"cell {self._cells[slot].label} already finished as {current.value}")
            if current is CellStatus.RUNNING:
                self.running -= 1
            self._states[slot] = state
        self._notify(slot, state)

    def state(self, slot: int) -> CellStatus:
        with self._lock:
            return self._states[slot]

    def snapshot(self) -> Dict[int, CellStatus]:
        with self._lock:
            return dict(enumerate(self._states))


class Scheduler:
    """
    Runs every cell on a bounded thread pool.

    Cells are independent: a failing cell never stops, delays or changes any
    other cell. Results are handed to `on_result` (and returned) in
    completion order.
    """

    def __init__(
        self,
        *,
        max_concurrency: int | None = None,
        retry_unavailable: bool = False,
        step_timeout: float | None = None,
        cell_timeout: float | None = None,
        provisioner: SupportsProvision | None = None,
        on_result: Optional[ResultCallback] = None,
        on_state: Optional[StateCallback] = None,
        on_step: Optional[StepCallback] = None,
    ):
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError(f"max_concurrency must be positive, got {max_concurrency}")
        self.max_concurrency = max_concurrency
        self.retry_unavailable = retry_unavailable
        self.step_timeout = step_timeout
        self.cell_timeout = cell_timeout
        self.provisioner = provisioner or Provisioner(".")
        self.on_result = on_result
        self.on_state = on_state
        self.on_step = on_step
        self.tracker: CellTracker | None = None

    def _execute(self, cell: Cell, cancel: CancelToken) -> CellResult:
        return execute_cell(
            cell,
            provisioner=self.provisioner,
            cancel=cancel,
            step_timeout=self.step_timeout,
            cell_timeout=self.cell_timeout,
            on_step=self.on_step,
        )

    def _run_cell(self, slot: int, tracker: CellTracker, cancel: CancelToken) -> CellResult:
        cell = tracker.cell(slot)
        if cancel.cancelled:
            res = CellResult(cell=cell, status=CellStatus.CANCELLED, error="cancelled before start")
            tracker.finish(slot, res.status)
            return res

        if not tracker.start(slot):
            state = tracker.state(slot)
            return CellResult(cell=cell, status=state, error=f"cell {cell.label} already finished as {state.value}")

        try:
            res = self._execute(cell, cancel)
            if (
                res.status is CellStatus.UNAVAILABLE
                and self.retry_unavailable
                and not cancel.cancelled
            ):
                res = replace(self._execute(cell, cancel), attempts=2)
        except BaseException:
            tracker.finish(slot, CellStatus.FAILED)
            raise
        tracker.finish(slot, res.status)
        return res

    def run(self, cells: Iterable[Cell], cancel: CancelToken | None = None) -> List[CellResult]:
        """
        Execute all cells and return their results in completion order.

        KeyboardInterrupt in the calling thread cancels the run: in-flight
        cells have their processes terminated, cells not yet started finish
        as cancelled, and every cell still gets a result.
        """
        cells = list(cells)
        cancel = cancel or CancelToken()
        tracker = CellTracker(cells, on_state=self.on_state)
        self.tracker = tracker
        if not cells:
            return []

        max_workers = self.max_concurrency or len(cells)
        results: List[CellResult] = []
        futures: Dict[Future, Cell] = {}
        pending: Set[Future] = set()

        def collect(fut: Future) -> None:
            cell = futures[fut]
            try:
                res = fut.result()
            except Exception as e:
                res = CellResult(cell=cell, status=CellStatus.FAILED, error=f"internal error: {e}")
            results.append(res)
            pending.discard(fut)
            if self.on_result is not None:
                self.on_result(res)

        pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="matrixci")
        try:
            for slot, cell in enumerate(cells):
                futures[pool.submit(self._run_cell, slot, tracker, cancel)] = cell
            pending.update(futures)

            try:
                for fut in as_completed(futures):
                    collect(fut)
            except KeyboardInterrupt:
                cancel.cancel()
                for fut in as_completed(set(pending)):
                    collect(fut)
        finally:
            pool.shutdown(wait=True)

        return results
