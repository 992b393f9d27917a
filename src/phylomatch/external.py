"""Run an external model-fitting program on a reconciled tree/data pair.

Model fits (Brownian motion, OU, Mk, MCMC samplers, rate-shift detection) are
done by other programs, typically an ``Rscript`` call. They can run for hours,
so every run has a timeout and can be cancelled from another thread.
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from .io import write_table, write_tree
from .reconcile import ReconciledPair

POLL_INTERVAL_SEC = 0.1

CommandStatus = Literal["OK", "FAIL", "TIMEOUT", "CANCELLED"]


@dataclass
class CommandOutcome:
    status: CommandStatus
    returncode: int | None
    stdout: str
    stderr: str
    runtime_sec: float
    command: str


@dataclass
class FitOutcome:
    outcome: CommandOutcome
    tree_path: Path
    data_path: Path
    n_taxa: int

    @property
    def ok(self) -> bool:
        return self.outcome.status == "OK"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.outcome.status,
            "returncode": self.outcome.returncode,
            "runtime_sec": self.outcome.runtime_sec,
            "command": self.outcome.command,
            "tree_path": str(self.tree_path),
            "data_path": str(self.data_path),
            "n_taxa": self.n_taxa,
            "stderr_tail": _stderr_tail(self.outcome.stderr),
        }

    def render(self) -> str:
        lines = [
            f"[{self.outcome.status}] {self.outcome.command}",
            f"  taxa={self.n_taxa} runtime={self.outcome.runtime_sec:.1f}s "
            f"returncode={self.outcome.returncode}",
        ]
        tail = _stderr_tail(self.outcome.stderr, n=10)
        if tail and not self.ok:
            lines.append("  stderr:")
            lines.extend(f"    {line}" for line in tail.splitlines())
        return "\n".join(lines)


def _stderr_tail(stderr: str, n: int = 40) -> str:
    lines = stderr.strip().splitlines()
    if not lines:
        return ""
    return "\n".join(lines[-n:])


def _kill(proc: subprocess.Popen) -> None:
    """Kill ``proc`` together with every process it started."""
    if os.name != "posix":
        proc.kill()
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        # Group already gone; the child has exited on its own.
        pass


def run_command(
    cmd: list[str],
    cwd: str | Path,
    *,
    timeout_sec: float = 3600,
    cancel_event: threading.Event | None = None,
) -> CommandOutcome:
    """Run ``cmd`` and wait for it, killing it on timeout or cancellation.

    The command runs in its own session, so a kill reaches the processes it
    spawned as well as the direct child.
    """
    if not cmd:
        raise ValueError("Command is empty.")
    if timeout_sec <= 0:
        raise ValueError("timeout_sec must be > 0.")
    started = time.perf_counter()
    proc = subprocess.Popen(
        cmd,
        cwd=str(cwd),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        start_new_session=True,
    )
    status: CommandStatus = "OK"
    deadline = started + float(timeout_sec)
    while True:
        try:
            stdout, stderr = proc.communicate(timeout=POLL_INTERVAL_SEC)
            break
        except subprocess.TimeoutExpired:
            if cancel_event is not None and cancel_event.is_set():
                status = "CANCELLED"
            elif time.perf_counter() >= deadline:
                status = "TIMEOUT"
            else:
                continue
            _kill(proc)
            stdout, stderr = proc.communicate()
            break

    if status == "OK" and proc.returncode != 0:
        status = "FAIL"
    return CommandOutcome(
        status=status,
        returncode=proc.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
        runtime_sec=float(time.perf_counter() - started),
        command=" ".join(cmd),
    )


def run_external_fit(
    pair: ReconciledPair,
    command: list[str],
    workdir: str | Path,
    *,
    timeout_sec: float = 3600,
    cancel_event: threading.Event | None = None,
    tree_format: str = "newick",
) -> FitOutcome:
    """Write ``pair`` into ``workdir`` and run ``command`` on it.

    ``{tree}``, ``{data}`` and ``{workdir}`` inside command arguments are
    replaced by the written file paths.
    """
    workdir = Path(workdir)
    workdir.mkdir(parents=True, exist_ok=True)
    suffix = ".nex" if tree_format.lower() == "nexus" else ".nwk"
    tree_path = write_tree(pair.tree, workdir / f"tree{suffix}", tree_format)
    data_path = write_table(pair.data, workdir / "data.csv")

    replacements = {
        "{tree}": str(tree_path.resolve()),
        "{data}": str(data_path.resolve()),
        "{workdir}": str(workdir.resolve()),
    }
    resolved: list[str] = []
    for token in command:
        for placeholder, value in replacements.items():
            token = token.replace(placeholder, value)
        resolved.append(token)

    outcome = run_command(resolved, workdir, timeout_sec=timeout_sec, cancel_event=cancel_event)
    return FitOutcome(
        outcome=outcome,
        tree_path=tree_path,
        data_path=data_path,
        n_taxa=len(pair.data),
    )
