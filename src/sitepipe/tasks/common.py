"""Shared helpers for task modules (no tasks are declared here)."""

import os
from pathlib import Path
from typing import List, Sequence

from ..orchestrator.cache import expand_globs


def files(ctx, patterns: Sequence[str], exclude: Sequence[str] = ()) -> List[Path]:
    return [p for p, _ in expand_globs(patterns, ctx.config.root, exclude)]


def optional_step(ctx, tool: str, path: Path, title: str) -> bool:
    """Run ``tool`` over ``path`` in place when it is configured.

    Logs the size before and after the step. Returns False when the tool is
    not configured.
    """
    if ctx.tool(tool) is None:
        return False
    staged = path.with_name(path.name + f".{tool}.tmp")
    staged_map = staged.with_name(staged.name + ".map")
    before = path.stat().st_size
    try:
        ctx.run_tool(tool, inputs=[path], output=staged)
        os.replace(staged, path)
        # a map written next to the staged file belongs to the final one
        if staged_map.exists():
            os.replace(staged_map, path.with_name(path.name + ".map"))
    finally:
        staged.unlink(missing_ok=True)
        staged_map.unlink(missing_ok=True)
    ctx.report_size(title, before, path.stat().st_size)
    return True
