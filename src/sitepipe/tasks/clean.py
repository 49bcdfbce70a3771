import os
from pathlib import Path
from typing import List

from ..orchestrator import task
from ..orchestrator.errors import CleanError


def remove_tree(root: Path) -> List[Path]:
    """Delete ``root`` bottom-up and return the paths that could not be removed.

    A directory that still holds an unremovable entry is not reported itself.
    """
    failed: List[Path] = []
    if not root.exists() and not root.is_symlink():
        return failed
    if root.is_symlink() or not root.is_dir():
        try:
            root.unlink()
        except OSError:
            failed.append(root)
        return failed
    for dirpath, dirnames, filenames in os.walk(root, topdown=False):
        d = Path(dirpath)
        links = [n for n in dirnames if (d / n).is_symlink()]
        for name in filenames + links:
            try:
                (d / name).unlink()
            except OSError:
                failed.append(d / name)
        if any(d in f.parents for f in failed):
            continue
        try:
            d.rmdir()
        except OSError:
            failed.append(d)
    return failed


def clean_paths(paths: List[Path]) -> List[Path]:
    failed: List[Path] = []
    for p in paths:
        failed.extend(remove_tree(p))
    if failed:
        raise CleanError(failed)
    return paths


@task(name="clean", output=lambda c: c.paths.build)
def clean(ctx):
    """Remove the build folder and the lint reports."""
    targets = [ctx.output, ctx.config.resolve(ctx.config.paths.lint_reports)]
    existing = [t for t in targets if t.exists()]
    clean_paths(existing)
    ctx.wrote(len(existing))
