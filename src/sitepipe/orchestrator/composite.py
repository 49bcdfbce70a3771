from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Generic, List, Optional, Tuple, TypeVar

from . import cache as cache_mod
from .errors import TransformError
from .utils import get_folders


R = TypeVar("R")


@dataclass(frozen=True)
class SubUnit:
    """One fan-out unit: the top-level files (``folder is None``) or one subfolder."""

    folder: Optional[str]
    inputs: Tuple[Path, ...]

    @property
    def label(self) -> str:
        return self.folder or "root"


class CompositeTask(Generic[R]):
    """A task whose sub-units are discovered from directory contents at run time.

    When ``directory`` has no subfolders there is nothing to do. Otherwise one
    unit is built from the files matching ``root_pattern`` and one per subfolder
    from ``sub_pattern``. Units run concurrently and the task succeeds only when
    every unit succeeds.
    """

    def __init__(
        self,
        directory: Path,
        root_pattern: str = "*",
        sub_pattern: str = "**/*",
        max_workers: int | None = None,
    ):
        self.directory = directory
        self.root_pattern = root_pattern
        self.sub_pattern = sub_pattern
        self.max_workers = max_workers

    def discover(self) -> List[SubUnit]:
        folders = get_folders(self.directory)
        if not folders:
            return []
        units = [SubUnit(None, self._files(self.root_pattern))]
        for folder in folders:
            units.append(SubUnit(folder, self._files(f"{folder}/{self.sub_pattern}")))
        return units

    def _files(self, pattern: str) -> Tuple[Path, ...]:
        return tuple(p for p, _ in cache_mod.expand_globs([pattern], self.directory))

    def run(
        self,
        ctx,
        worker: Callable[[SubUnit], R],
        done: Callable[[List[Tuple[SubUnit, R]]], None] | None = None,
    ) -> List[Tuple[SubUnit, R]]:
        """Run ``worker`` on every unit, then call ``done`` with all results."""
        units = self.discover()
        if not units:
            ctx.log.info("No subfolders in %s, nothing to do", self.directory)
            if done is not None:
                done([])
            return []

        with ThreadPoolExecutor(max_workers=self.max_workers or len(units)) as pool:
            futures = [(u, pool.submit(worker, u)) for u in units]
            results: List[Tuple[SubUnit, R]] = []
            failures: List[str] = []
            for unit, fut in futures:
                try:
                    results.append((unit, fut.result()))
                except Exception as e:  # noqa: BLE001
                    detail = e.message if isinstance(e, TransformError) else str(e)
                    ctx.log.error("Sub-unit %s failed: %s", unit.label, detail)
                    failures.append(f"{unit.label}: {detail}")

        if failures:
            raise TransformError(ctx.task.name, "; ".join(failures))
        if done is not None:
            done(results)
        return results
