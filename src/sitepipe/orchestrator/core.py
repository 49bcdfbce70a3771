from __future__ import annotations

import importlib
import json
import pkgutil
import shutil
import sys
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from . import cache as cache_mod
from . import tools as tools_mod
from .config import BuildConfig, ToolSpec
from .errors import CleanError, ConfigError, DuplicateTaskError, SitepipeError, TransformError
from .logging import get_logger
from .utils import human_size


# Allow static values or callables that build paths from the config
PathSpec = Union[Sequence[str], Callable[[BuildConfig], Sequence[str]]]
DirSpec = Union[str, Callable[[BuildConfig], str]]

# Errors that must stop the whole run instead of failing a single task
FATAL_ERRORS = (CleanError, ConfigError)


@dataclass
class TaskSpec:
    name: str
    inputs: PathSpec
    output: DirSpec
    fn: Callable[["TaskContext"], None]
    exclude: PathSpec = ()
    description: str = ""

    def bind(self, config: BuildConfig) -> "Task":
        return Task(
            name=self.name,
            inputs=tuple(_resolve(self.inputs, config)),
            exclude=tuple(_resolve(self.exclude, config)),
            output=config.resolve(self.output(config) if callable(self.output) else self.output)
            if self.output
            else None,
            action=self.fn,
            config=config,
            description=self.description,
        )


@dataclass(frozen=True)
class Task:
    """A TaskSpec bound to one BuildConfig."""

    name: str
    inputs: Tuple[str, ...]
    exclude: Tuple[str, ...]
    output: Optional[Path]
    action: Callable[["TaskContext"], None]
    config: BuildConfig
    description: str = ""

    def matches(self) -> List[Tuple[Path, Path]]:
        return cache_mod.expand_globs(self.inputs, self.config.root, self.exclude)


def task(name: str, inputs: PathSpec = (), output: DirSpec = "", exclude: PathSpec = ()):
    """Decorator to declare a task on a function.

    The wrapped function receives a single ``TaskContext``. ``inputs``,
    ``output`` and ``exclude`` may be static or callables of the BuildConfig.
    """

    def deco(fn: Callable[["TaskContext"], None]):
        doc = (fn.__doc__ or "").strip().splitlines()
        spec = TaskSpec(
            name=name,
            inputs=inputs,
            output=output,
            fn=fn,
            exclude=exclude,
            description=doc[0] if doc else "",
        )
        setattr(fn, "_task_spec", spec)
        return fn

    return deco


def _resolve(spec: PathSpec, config: BuildConfig) -> List[str]:
    paths = spec(config) if callable(spec) else spec
    if paths is None:
        return []
    if isinstance(paths, (str, Path)):
        return [str(paths)]
    return [str(p) for p in paths]


def discover_tasks(package: str = "sitepipe.tasks") -> Dict[str, TaskSpec]:
    """Import all modules in ``package`` and collect decorated functions."""
    log = get_logger("sitepipe.discover")
    specs: Dict[str, TaskSpec] = {}
    pkg = importlib.import_module(package)
    for m in pkgutil.iter_modules(pkg.__path__, prefix=f"{package}."):
        mod = importlib.import_module(m.name)
        for attr_name in dir(mod):
            obj = getattr(mod, attr_name)
            spec = getattr(obj, "_task_spec", None)
            if isinstance(spec, TaskSpec):
                specs[spec.name] = spec
    log.debug("Discovered tasks: %s", ", ".join(sorted(specs)))
    return specs


@dataclass
class SizeReport:
    title: str
    before: int
    after: int


@dataclass
class RunResult:
    name: str
    status: str  # ok | failed | skipped
    error: Optional[str] = None
    duration: float = 0.0
    processed: int = 0
    skipped_files: int = 0
    sizes: List[SizeReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class TaskContext:
    """What a running task sees: its bound Task, the config and a logger."""

    def __init__(self, task: Task, logger, force: bool = False, hub: Any = None):
        self.task = task
        self.config = task.config
        self.log = logger
        self.force = force
        self.hub = hub
        self.processed = 0
        self.skipped = 0
        self.sizes: List[SizeReport] = []

    @property
    def output(self) -> Path:
        if self.task.output is None:
            raise TransformError(self.task.name, "task has no output directory")
        return self.task.output

    def inputs(self) -> List[Tuple[Path, Path]]:
        return self.task.matches()

    def newer(self, suffix: str | None = None) -> List[Tuple[Path, Path]]:
        """``(src, dest)`` pairs whose output is missing or older than the input."""
        pairs = self.inputs()
        if self.force:
            return [(s, cache_mod.target_path(s, b, self.output, suffix)) for s, b in pairs]
        todo, skipped = cache_mod.newer_only(pairs, self.output, suffix)
        self.skipped += len(skipped)
        return todo

    def wrote(self, count: int = 1) -> None:
        self.processed += count

    def report_size(self, title: str, before: int, after: int) -> None:
        self.sizes.append(SizeReport(title, before, after))
        if self.config.report_sizes:
            self.log.info("%s %s -> %s", title, human_size(before), human_size(after))

    def tool(self, name: str) -> Optional[ToolSpec]:
        return self.config.tool(name)

    def run_tool(self, name: str, inputs: Sequence[Path] = (), output: Path | None = None, check: bool = True):
        spec = self.tool(name)
        if spec is None:
            raise TransformError(self.task.name, f"tool {name!r} is not configured")
        return tools_mod.run_tool(
            self.task.name,
            spec,
            inputs=inputs,
            output=output,
            dev_mode=self.config.dev_mode,
            check=check,
            cwd=self.config.root,
        )


def topo_sort(nodes: Iterable[str], edges: Iterable[tuple[str, str]]) -> list[str]:
    nodes = list(nodes)
    incoming = {n: set() for n in nodes}
    outgoing = {n: set() for n in nodes}
    for u, v in edges:
        if u not in incoming or v not in incoming:
            raise ValueError(f"Edge references unknown node: {(u, v)}")
        outgoing[u].add(v)
        incoming[v].add(u)
    ordered: list[str] = []
    # keep declaration order among independent nodes
    roots = [n for n in nodes if not incoming[n]]
    while roots:
        n = roots.pop(0)
        ordered.append(n)
        for m in [x for x in nodes if x in outgoing[n]]:
            incoming[m].discard(n)
            outgoing[n].discard(m)
            if not incoming[m]:
                roots.append(m)
    if any(incoming[n] for n in nodes):
        raise ValueError("Cycle detected in DAG")
    return ordered


class Pipeline:
    def __init__(
        self,
        tasks: dict[str, Task],
        edges: list[tuple[str, str]],
        name: str = "pipeline",
        hub: Any = None,
    ):
        self.name = name
        self.tasks = tasks
        self.edges = list(edges)
        self.order = topo_sort(tasks.keys(), self.edges)
        self.predecessors: Dict[str, set] = {n: set() for n in self.order}
        for u, v in self.edges:
            self.predecessors[v].add(u)
        self.hub = hub
        self.logger = get_logger(f"sitepipe.{self.name}")

    def _run_step(self, step_name: str, force: bool, retries: int) -> RunResult:
        step = self.tasks[step_name]
        step_logger = get_logger(f"sitepipe.{self.name}.{step_name}")
        attempt = 0
        while True:
            ctx = TaskContext(step, step_logger, force=force, hub=self.hub)
            started = time.monotonic()
            try:
                step_logger.info("Run: %s", step_name)
                step.action(ctx)
            except FATAL_ERRORS:
                step_logger.error("Step failed (%s), stopping", step_name)
                raise
            except Exception as e:  # noqa: BLE001
                attempt += 1
                if isinstance(e, SitepipeError):
                    step_logger.error(
                        "Step failed (%s), attempt %d/%d: %s", step_name, attempt, retries + 1, e
                    )
                else:
                    step_logger.exception(
                        "Step failed (%s), attempt %d/%d", step_name, attempt, retries + 1
                    )
                if attempt > retries:
                    return RunResult(
                        name=step_name,
                        status="failed",
                        error=str(e),
                        duration=time.monotonic() - started,
                        processed=ctx.processed,
                        skipped_files=ctx.skipped,
                        sizes=ctx.sizes,
                    )
                continue
            duration = time.monotonic() - started
            step_logger.info(
                "Done: %s in %.2fs (%d written, %d up to date)",
                step_name,
                duration,
                ctx.processed,
                ctx.skipped,
            )
            return RunResult(
                name=step_name,
                status="ok",
                duration=duration,
                processed=ctx.processed,
                skipped_files=ctx.skipped,
                sizes=ctx.sizes,
            )

    def run(
        self,
        force: set[str] | bool | None = None,
        retries: int = 0,
        max_workers: int | None = None,
        state_dir: Path | None = None,
        keep_runs: int = 0,
    ) -> Dict[str, RunResult]:
        """Run every step once its predecessors have succeeded.

        Independent steps run concurrently. A failed step never cancels its
        siblings; steps downstream of it are recorded as ``skipped``. With
        ``state_dir`` the results are written to ``state_dir/<name>/<run_id>``
        and only the newest ``keep_runs`` run folders are kept (0 keeps all).
        """
        if force is True:
            force = set(self.order)
        force = force or set()
        run_id = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        self.logger.info("Selected steps: %s", ", ".join(self.order))

        results: Dict[str, RunResult] = {}
        running: Dict[Future, str] = {}

        def submit_ready(pool: ThreadPoolExecutor) -> None:
            started = set(running.values())
            for n in self.order:
                if n in results or n in started:
                    continue
                preds = self.predecessors[n]
                if any(p in results and not results[p].ok for p in preds):
                    self.logger.warning("Skip: %s (upstream failed)", n)
                    results[n] = RunResult(name=n, status="skipped", error="upstream failed")
                elif all(p in results for p in preds):
                    fut = pool.submit(self._run_step, n, n in force, retries)
                    running[fut] = n

        with ThreadPoolExecutor(max_workers=max_workers or max(len(self.order), 1)) as pool:
            submit_ready(pool)
            while running:
                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for fut in done:
                    name = running.pop(fut)
                    results[name] = fut.result()
                submit_ready(pool)

        ordered = {n: results[n] for n in self.order}
        if state_dir is not None:
            _write_state(
                Path(state_dir) / self.name / run_id,
                {
                    "pipeline": self.name,
                    "run_id": run_id,
                    "steps": [asdict(r) for r in ordered.values()],
                    "python": sys.version,
                },
            )
            if keep_runs:
                _prune_runs(Path(state_dir) / self.name, keep_runs)
        return ordered


def _write_state(run_dir: Path, state: dict) -> None:
    run_dir.mkdir(parents=True, exist_ok=True)
    with open(run_dir / "state.json", "w", encoding="utf-8") as f:
        json.dump(state, f, indent=2)


def _prune_runs(pipeline_dir: Path, keep: int) -> None:
    # run ids sort chronologically
    runs = sorted(d for d in pipeline_dir.iterdir() if d.is_dir())
    for old in runs[:-keep]:
        shutil.rmtree(old, ignore_errors=True)


def chain(names: Sequence[str]) -> list[tuple[str, str]]:
    return [(a, b) for a, b in zip(names, names[1:])]


class Orchestrator:
    """Registry of bound tasks plus the run_parallel / run_series / watch entry points."""

    def __init__(
        self,
        config: BuildConfig,
        specs: Iterable[TaskSpec] = (),
        hub: Any = None,
        max_workers: int | None = None,
    ):
        self.config = config
        self.hub = hub
        self.max_workers = max_workers
        self.tasks: Dict[str, Task] = {}
        self.watch_rules: list = []
        self.logger = get_logger("sitepipe.orchestrator")
        for spec in specs:
            self.register(spec)

    @classmethod
    def from_config(cls, config: BuildConfig, **kwargs) -> "Orchestrator":
        return cls(config, discover_tasks().values(), **kwargs)

    def register(self, spec: TaskSpec | Task) -> Task:
        if spec.name in self.tasks:
            raise DuplicateTaskError(spec.name)
        bound = spec.bind(self.config) if isinstance(spec, TaskSpec) else spec
        self.tasks[bound.name] = bound
        return bound

    def _select(self, names: Iterable[str]) -> Dict[str, Task]:
        selected: Dict[str, Task] = {}
        for n in names:
            if n not in self.tasks:
                raise KeyError(f"Unknown task: {n}")
            selected[n] = self.tasks[n]
        return selected

    def run_graph(
        self,
        names: Sequence[str],
        edges: Sequence[tuple[str, str]] = (),
        pipeline: str = "graph",
        force: set[str] | bool | None = None,
        retries: int = 0,
        state_dir: Path | None = None,
    ) -> Dict[str, RunResult]:
        pipe = Pipeline(self._select(names), list(edges), name=pipeline, hub=self.hub)
        return pipe.run(
            force=force,
            retries=retries,
            max_workers=self.max_workers,
            state_dir=state_dir,
            keep_runs=self.config.keep_runs,
        )

    def run_parallel(self, names: Sequence[str], **kwargs) -> List[RunResult]:
        return list(self.run_graph(names, [], pipeline=kwargs.pop("pipeline", "parallel"), **kwargs).values())

    def run_series(self, names: Sequence[str], **kwargs) -> List[RunResult]:
        """Run ``names`` in order; the first failure aborts the rest and raises."""
        results = self.run_graph(
            names, chain(list(names)), pipeline=kwargs.pop("pipeline", "series"), **kwargs
        )
        for r in results.values():
            if r.status == "failed":
                detail = (r.error or "failed").removeprefix(f"{r.name}: ")
                raise TransformError(r.name, detail)
        return list(results.values())

    def run_task(self, name: str, force: bool = False, retries: int = 0) -> RunResult:
        return self.run_graph([name], pipeline=f"task.{name}", force=force, retries=retries)[name]

    def watch(self, patterns: str | Sequence[str], on_change: Sequence[str], name: str | None = None):
        from .watch import WatchRule

        if isinstance(patterns, str):
            patterns = [patterns]
        self._select(on_change)
        rule = WatchRule(
            name=name or ",".join(on_change),
            patterns=tuple(patterns),
            on_change=tuple(on_change),
            run=lambda: self.run_series(on_change, pipeline=f"watch.{name or on_change[0]}"),
        )
        self.watch_rules.append(rule)
        return rule
