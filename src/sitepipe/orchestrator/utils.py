"""Small helpers shared by the orchestrator and the tasks."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List


def _get(d: Dict, *keys, default=None):
    cur = d
    for k in keys:
        if not isinstance(cur, dict):
            return default
        cur = cur.get(k)
        if cur is None:
            return default
    return cur


def get_folders(directory: Path) -> List[str]:
    """Names of the immediate subdirectories of ``directory``, sorted.

    A missing directory has no subfolders.
    """
    if not directory.is_dir():
        return []
    return sorted(p.name for p in directory.iterdir() if p.is_dir())


def human_size(n: int | None) -> str:
    if n is None:
        return "-"
    if n < 1024:
        return f"{n} B"
    if n < 1024 * 1024:
        return f"{n / 1024:.2f} kB"
    return f"{n / (1024 * 1024):.2f} MB"
