# process.py
from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

# how often a waiting cell checks for cancellation / timeout
POLL_INTERVAL = 0.1
# seconds between SIGTERM and SIGKILL
KILL_GRACE = 3.0
# keep only the tail of very chatty commands
MAX_OUTPUT = 20_000


class CancelToken:
    """Shared cancellation flag for a run. Thread-safe."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


@dataclass(frozen=True)
class ProcessResult:
    exit_code: Optional[int]
    output: str
    duration: float
    timed_out: bool = False
    cancelled: bool = False


def _tail(text: str, limit: int = MAX_OUTPUT) -> str:
    if len(text) <= limit:
        return text
    return "...(truncated)...\n" + text[-limit:]


def _popen_kwargs() -> dict:
    # own process group so the whole tree can be signalled
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _terminate(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    try:
        if os.name == "nt":
            proc.terminate()
        else:
            os.killpg(proc.pid, signal.SIGTERM)
    except (ProcessLookupError, PermissionError):
        pass
    try:
        proc.wait(timeout=KILL_GRACE)
        return
    except subprocess.TimeoutExpired:
        pass
    try:
        if os.name == "nt":
            proc.kill()
        else:
            os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


def run_command(
    cmd: Union[str, List[str]],
    *,
    cwd: str | Path | None = None,
    env: Optional[Dict[str, str]] = None,
    timeout: float | None = None,
    cancel: CancelToken | None = None,
) -> ProcessResult:
    """
    Run a command, capturing stdout+stderr together.

    A string is run through the shell, a list is executed directly. The call
    blocks the calling thread only; other cells keep running. When `timeout`
    elapses or `cancel` fires, the process group is terminated and the
    output captured so far is returned.

    Raises:
        FileNotFoundError: if the executable (list form) or cwd does not exist
    """
    start = time.monotonic()
    deadline = start + timeout if timeout else None

    proc = subprocess.Popen(
        cmd,
        shell=isinstance(cmd, str),
        cwd=str(cwd) if cwd is not None else None,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        stdin=subprocess.DEVNULL,
        text=True,
        errors="replace",
        **_popen_kwargs(),
    )

    timed_out = False
    cancelled = False
    while True:
        try:
            out, _ = proc.communicate(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.cancelled:
                cancelled = True
            elif deadline is not None and time.monotonic() >= deadline:
                timed_out = True
            else:
                continue
            _terminate(proc)
            try:
                out, _ = proc.communicate(timeout=KILL_GRACE)
            except subprocess.TimeoutExpired:
                # grandchildren outside the group still hold the pipe
                proc.kill()
                out, _ = proc.communicate()
            break

    return ProcessResult(
        exit_code=None if (timed_out or cancelled) else proc.returncode,
        output=_tail(out or ""),
        duration=time.monotonic() - start,
        timed_out=timed_out,
        cancelled=cancelled,
    )
