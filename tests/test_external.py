import os
import shutil
import sys
import threading
import typing
from pathlib import Path

import pandas as pd
import pytest

from phylomatch.external import CommandStatus, run_command, run_external_fit
from phylomatch.io import parse_tree
from phylomatch.reconcile import reconcile


def _pair():
    tree = parse_tree("((A:1,B:1):1,(C:1,D:1):1);")
    data = pd.DataFrame({"species": ["B", "A", "C"], "y": [2.0, 1.0, 3.0]})
    _, pair = reconcile(tree, data, "species")
    return pair


def test_run_external_fit_substitutes_paths(tmp_path: Path) -> None:
    script = (
        "import sys, pathlib; "
        "tree = pathlib.Path(sys.argv[1]).read_text(); "
        "rows = pathlib.Path(sys.argv[2]).read_text().splitlines(); "
        "print(len(rows) - 1, tree.count(':'))"
    )
    result = run_external_fit(
        _pair(),
        [sys.executable, "-c", script, "{tree}", "{data}"],
        tmp_path / "fit",
        timeout_sec=60,
    )
    assert result.ok
    assert result.n_taxa == 3
    assert result.tree_path.exists()
    assert result.data_path.exists()
    assert result.outcome.stdout.split()[0] == "3"
    assert result.to_dict()["status"] == "OK"


def test_run_command_reports_failure(tmp_path: Path) -> None:
    outcome = run_command(
        [sys.executable, "-c", "import sys; sys.stderr.write('model did not converge'); sys.exit(3)"],
        tmp_path,
        timeout_sec=60,
    )
    assert outcome.status == "FAIL"
    assert outcome.returncode == 3
    assert typing.get_args(CommandStatus) == ("OK", "FAIL", "TIMEOUT", "CANCELLED")
    assert "converge" in outcome.stderr


def test_run_command_times_out(tmp_path: Path) -> None:
    outcome = run_command(
        [sys.executable, "-c", "import time; time.sleep(30)"],
        tmp_path,
        timeout_sec=0.5,
    )
    assert outcome.status == "TIMEOUT"
    assert outcome.runtime_sec < 20


def test_run_command_can_be_cancelled(tmp_path: Path) -> None:
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    try:
        outcome = run_command(
            [sys.executable, "-c", "import time; time.sleep(30)"],
            tmp_path,
            timeout_sec=60,
            cancel_event=cancel,
        )
    finally:
        timer.cancel()
    assert outcome.status == "CANCELLED"
    assert outcome.runtime_sec < 20


needs_bash = pytest.mark.skipif(
    shutil.which("bash") is None or os.name != "posix",
    reason="needs bash and POSIX process groups",
)


@needs_bash
def test_run_command_timeout_kills_wrapped_command(tmp_path: Path) -> None:
    # bash stays alive as the parent of sleep, which inherits the output pipes.
    outcome = run_command(["bash", "-c", "sleep 8; echo done"], tmp_path, timeout_sec=0.5)
    assert outcome.status == "TIMEOUT"
    assert outcome.runtime_sec < 3
    assert "done" not in outcome.stdout


@needs_bash
def test_run_command_cancel_kills_wrapped_command(tmp_path: Path) -> None:
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    try:
        outcome = run_command(
            ["bash", "-c", "sleep 8; echo done"],
            tmp_path,
            timeout_sec=60,
            cancel_event=cancel,
        )
    finally:
        timer.cancel()
    assert outcome.status == "CANCELLED"
    assert outcome.runtime_sec < 3
    assert "done" not in outcome.stdout


def test_run_command_rejects_empty(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="empty"):
        run_command([], tmp_path)
