from __future__ import annotations

import hashlib
import os
import platform
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from . import __version__


def now_utc_iso() -> str:
    fixed = os.environ.get("PHYLOMATCH_FIXED_TIMESTAMP_UTC")
    if fixed:
        return fixed
    return datetime.now(tz=timezone.utc).isoformat()


def sha256_file(path: str | Path) -> str:
    h = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def _file_entries(paths: Iterable[str | Path | None]) -> dict[str, str]:
    return {str(Path(p)): sha256_file(p) for p in paths if p is not None and Path(p).is_file()}


def build_manifest(
    *,
    command: str,
    argv: list[str],
    inputs: Iterable[str | Path | None],
    outputs: Iterable[str | Path | None],
    summary: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "schema_version": 1,
        "command": command,
        "command_line": "phylomatch " + " ".join(argv),
        "tool_version": __version__,
        "created_at_utc": now_utc_iso(),
        "python_version": platform.python_version(),
        "platform": platform.platform(),
        "inputs": _file_entries(inputs),
        "outputs": _file_entries(outputs),
        "summary": dict(summary or {}),
    }
