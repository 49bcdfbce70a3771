from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

import pytest

from sitepipe.orchestrator.core import Orchestrator, Pipeline, TaskSpec, task, topo_sort
from sitepipe.orchestrator.errors import CleanError, DuplicateTaskError, TransformError

from .fakes import make_config, tree, write


def spec(name: str, fn=None, **kwargs) -> TaskSpec:
    return TaskSpec(name=name, inputs=kwargs.pop("inputs", ()), output=kwargs.pop("output", ""), fn=fn or (lambda ctx: None), **kwargs)


def failing(ctx) -> None:
    raise TransformError(ctx.task.name, "tool exploded")


def test_register_rejects_duplicates(tmp_path: Path) -> None:
    orch = Orchestrator(make_config(tmp_path), [spec("a")])
    with pytest.raises(DuplicateTaskError):
        orch.register(spec("a"))


def test_task_decorator_attaches_spec() -> None:
    @task(name="copy", inputs=["a/*.txt"], output="out")
    def copy(ctx):
        """Copy text files."""

    s = copy._task_spec
    assert s.name == "copy"
    assert s.description == "Copy text files."


def test_bind_resolves_callables_against_config(tmp_path: Path) -> None:
    cfg = make_config(tmp_path)
    s = spec("styles", inputs=lambda c: c.paths.sass.inputs, output=lambda c: c.paths.sass.out)

    bound = s.bind(cfg)

    assert bound.inputs == ("src/sass/**/*.scss",)
    assert bound.output == tmp_path / "dist" / "css"
    assert bound.config is cfg


def test_topo_sort_orders_and_detects_cycles() -> None:
    order = topo_sort(["c", "b", "a"], [("a", "b"), ("b", "c")])
    assert order == ["a", "b", "c"]
    with pytest.raises(ValueError, match="Cycle"):
        topo_sort(["a", "b"], [("a", "b"), ("b", "a")])
    with pytest.raises(ValueError, match="unknown"):
        topo_sort(["a"], [("a", "zzz")])


def test_parallel_tasks_overlap(tmp_path: Path) -> None:
    barrier = threading.Barrier(2, timeout=5)

    def meet(ctx) -> None:
        # both tasks must be running at the same time to pass the barrier
        barrier.wait()

    orch = Orchestrator(make_config(tmp_path), [spec("a", meet), spec("b", meet)])
    results = orch.run_parallel(["a", "b"])

    assert [r.status for r in results] == ["ok", "ok"]


def test_failure_keeps_siblings_and_skips_dependents(tmp_path: Path) -> None:
    ran = []
    orch = Orchestrator(
        make_config(tmp_path),
        [
            spec("broken", failing),
            spec("sibling", lambda ctx: ran.append("sibling")),
            spec("after", lambda ctx: ran.append("after")),
        ],
    )

    results = orch.run_graph(["broken", "sibling", "after"], [("broken", "after")])

    assert results["broken"].status == "failed"
    assert "tool exploded" in results["broken"].error
    assert results["sibling"].status == "ok"
    assert results["after"].status == "skipped"
    assert ran == ["sibling"]


def test_series_aborts_on_first_failure(tmp_path: Path) -> None:
    ran = []
    orch = Orchestrator(
        make_config(tmp_path),
        [
            spec("first", lambda ctx: ran.append("first")),
            spec("broken", failing),
            spec("last", lambda ctx: ran.append("last")),
        ],
    )

    with pytest.raises(TransformError):
        orch.run_series(["first", "broken", "last"])
    assert ran == ["first"]


def test_series_runs_in_declared_order(tmp_path: Path) -> None:
    ran = []
    names = ["c", "a", "b"]
    orch = Orchestrator(make_config(tmp_path), [spec(n, lambda ctx, n=n: ran.append(n)) for n in names])

    orch.run_series(names)

    assert ran == names


def test_unexpected_exception_becomes_failed_result(tmp_path: Path) -> None:
    def boom(ctx):
        raise RuntimeError("nope")

    orch = Orchestrator(make_config(tmp_path), [spec("boom", boom)])
    result = orch.run_task("boom")

    assert result.status == "failed"
    assert result.error == "nope"


def test_retries_rerun_the_action(tmp_path: Path) -> None:
    attempts = []

    def flaky(ctx):
        attempts.append(1)
        if len(attempts) < 2:
            raise TransformError("flaky", "first try")

    orch = Orchestrator(make_config(tmp_path), [spec("flaky", flaky)])

    assert orch.run_task("flaky", retries=1).ok
    assert len(attempts) == 2


def test_clean_errors_stop_the_run(tmp_path: Path) -> None:
    def blocked(ctx):
        raise CleanError([tmp_path / "dist" / "locked.txt"])

    orch = Orchestrator(make_config(tmp_path), [spec("clean", blocked)])
    with pytest.raises(CleanError):
        orch.run_task("clean")


def test_empty_inputs_are_a_vacuous_success(tmp_path: Path) -> None:
    def copy(ctx):
        for src, dest in ctx.newer():
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(src.read_bytes())
            ctx.wrote()

    out = tmp_path / "out"
    write(out / "keep.txt", "keep")
    orch = Orchestrator(make_config(tmp_path), [spec("copy", copy, inputs=["nothing/**/*.txt"], output="out")])
    before = tree(out)

    result = orch.run_task("copy")

    assert result.ok
    assert result.processed == 0
    assert tree(out) == before


def test_pipeline_writes_run_state(tmp_path: Path) -> None:
    cfg = make_config(tmp_path)
    tasks = {"a": spec("a").bind(cfg), "b": spec("b", failing).bind(cfg)}
    pipe = Pipeline(tasks, [("a", "b")], name="demo")

    results = pipe.run(state_dir=tmp_path / "runs")

    states = list((tmp_path / "runs" / "demo").glob("*/state.json"))
    assert len(states) == 1
    state = json.loads(states[0].read_text(encoding="utf-8"))
    assert state["pipeline"] == "demo"
    assert [s["status"] for s in state["steps"]] == ["ok", "failed"]
    assert results["b"].status == "failed"


def test_unknown_task_names_raise(tmp_path: Path) -> None:
    orch = Orchestrator(make_config(tmp_path), [spec("a")])
    with pytest.raises(KeyError):
        orch.run_parallel(["a", "missing"])


def test_run_state_keeps_only_recent_runs(tmp_path: Path) -> None:
    orch = Orchestrator(make_config(tmp_path, keep_runs=2), [spec("a")])

    for _ in range(3):
        orch.run_graph(["a"], pipeline="demo", state_dir=tmp_path / "runs")

    runs = sorted((tmp_path / "runs" / "demo").iterdir())
    assert len(runs) == 2
    assert all((r / "state.json").exists() for r in runs)


def test_report_sizes_logs_before_and_after(tmp_path: Path, caplog) -> None:
    def shrink(ctx):
        ctx.report_size("js", 2048, 512)

    orch = Orchestrator(make_config(tmp_path, report_sizes=True), [spec("shrink", shrink)])

    with caplog.at_level(logging.INFO, logger="sitepipe"):
        result = orch.run_task("shrink")

    assert [(s.before, s.after) for s in result.sizes] == [(2048, 512)]
    assert "js 2.00 kB -> 512 B" in caplog.messages


def test_sizes_are_not_logged_unless_requested(tmp_path: Path, caplog) -> None:
    orch = Orchestrator(make_config(tmp_path), [spec("shrink", lambda ctx: ctx.report_size("js", 2048, 512))])

    with caplog.at_level(logging.INFO, logger="sitepipe"):
        result = orch.run_task("shrink")

    assert len(result.sizes) == 1
    assert not any("->" in m for m in caplog.messages)
