from __future__ import annotations

import threading
import time
from pathlib import Path

from watchdog.events import (
    DirModifiedEvent,
    FileClosedEvent,
    FileCreatedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from sitepipe.orchestrator.core import Orchestrator, TaskSpec
from sitepipe.orchestrator.pipelines import watch_specs
from sitepipe.orchestrator.watch import RuleHandler, Watcher, WatchRule, watch_dirs

from .fakes import make_config, write


def wait_until(cond, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if cond():
            return True
        time.sleep(0.01)
    return cond()


def test_changes_during_a_run_coalesce_into_one_rerun() -> None:
    release = threading.Event()
    started = threading.Event()
    calls = []

    def run():
        calls.append(time.monotonic())
        started.set()
        if len(calls) == 1:
            release.wait(5)

    rule = WatchRule(name="styles", patterns=(), on_change=("styles",), run=run)

    rule.trigger()
    assert started.wait(5)
    rule.trigger()
    rule.trigger()
    assert rule.pending is True
    release.set()

    assert wait_until(lambda: not rule.running)
    rule.join(5)
    assert len(calls) == 2
    assert rule.pending is False


def test_failed_run_does_not_stop_the_rule() -> None:
    calls = []

    def run():
        calls.append(1)
        raise RuntimeError("boom")

    rule = WatchRule(name="x", patterns=(), on_change=("x",), run=run)
    rule.trigger()
    assert wait_until(lambda: not rule.running)
    rule.trigger()
    assert wait_until(lambda: len(calls) == 2 and not rule.running)


def counting_rule(name: str, *patterns: str) -> WatchRule:
    return WatchRule(name, patterns, (name,), run=lambda: None)


def test_handler_triggers_only_for_matching_files(tmp_path: Path) -> None:
    rule = counting_rule("scripts", "src/js/**/*.js")
    handler = RuleHandler(rule, tmp_path, debounce=0)

    handler.dispatch(FileModifiedEvent(str(tmp_path / "src" / "sass" / "main.scss")))
    handler.dispatch(DirModifiedEvent(str(tmp_path / "src" / "js")))
    handler.dispatch(FileClosedEvent(str(tmp_path / "src" / "js" / "app.js")))
    assert rule.runs == 0

    handler.dispatch(FileCreatedEvent(str(tmp_path / "src" / "js" / "deep" / "app.js")))
    rule.join(5)
    assert rule.runs == 1


def test_moves_into_a_watched_pattern_count(tmp_path: Path) -> None:
    rule = counting_rule("sprites", "src/icons/**/*.svg")
    handler = RuleHandler(rule, tmp_path, debounce=0)

    handler.dispatch(
        FileMovedEvent(str(tmp_path / "tmp" / "x.part"), str(tmp_path / "src" / "icons" / "x.svg"))
    )

    rule.join(5)
    assert rule.runs == 1


def test_burst_of_changes_is_debounced_into_one_run(tmp_path: Path) -> None:
    rule = counting_rule("styles", "src/sass/**/*.scss")
    handler = RuleHandler(rule, tmp_path, debounce=0.2)

    for name in ("a", "b", "c"):
        handler.dispatch(FileModifiedEvent(str(tmp_path / "src" / "sass" / f"{name}.scss")))
        time.sleep(0.02)
    assert rule.runs == 0

    assert wait_until(lambda: rule.runs == 1)
    rule.join(5)
    time.sleep(0.3)
    assert rule.runs == 1


def test_watch_dirs_use_nearest_existing_folder(tmp_path: Path) -> None:
    (tmp_path / "src" / "js").mkdir(parents=True)
    (tmp_path / "src" / "js" / "vendor").mkdir()

    js = ["src/js/**/*.js", "src/js/vendor/*.js"]

    assert watch_dirs(js, tmp_path) == [tmp_path / "src" / "js"]
    # src/icons does not exist yet, so all of src is observed
    assert watch_dirs([*js, "src/icons/**/*.svg"], tmp_path) == [tmp_path / "src"]


def test_watcher_sees_new_files(tmp_path: Path) -> None:
    (tmp_path / "src" / "icons").mkdir(parents=True)
    hits = []
    rule = WatchRule("sprites", ("src/icons/**/*.svg",), ("sprites",), run=lambda: hits.append(1))
    watcher = Watcher([rule], tmp_path, debounce=0.05).start()
    try:
        write(tmp_path / "src" / "icons" / "a" / "new.svg", "<svg/>")
        assert wait_until(lambda: len(hits) >= 1)
    finally:
        watcher.close()


def test_run_forever_stops_on_request(tmp_path: Path) -> None:
    watcher = Watcher([], tmp_path)
    thread = threading.Thread(target=watcher.run_forever)
    thread.start()
    watcher.stop()
    thread.join(5)
    assert not thread.is_alive()


def test_orchestrator_watch_runs_tasks_in_series(tmp_path: Path) -> None:
    ran = []
    orch = Orchestrator(
        make_config(tmp_path),
        [
            TaskSpec("styles", (), "", lambda ctx: ran.append("styles")),
            TaskSpec("inject", (), "", lambda ctx: ran.append("inject")),
        ],
    )

    rule = orch.watch("src/sass/**/*.scss", ["styles", "inject"], name="styles")
    rule.trigger()

    assert wait_until(lambda: not rule.running)
    rule.join(5)
    assert ran == ["styles", "inject"]
    assert orch.watch_rules == [rule]


def test_watch_specs_follow_hot_reload(tmp_path: Path) -> None:
    hot = {w.name: w for w in watch_specs(make_config(tmp_path))}
    cold = {w.name: w for w in watch_specs(make_config(tmp_path, hot_reload=False))}

    assert hot["styles"].on_change == ("styles", "inject")
    assert cold["styles"].on_change == ("styles", "reload")
    assert hot["sprites"].on_change == ("clean_sprites", "sprites", "reload")


def test_watch_patterns_follow_configured_inputs(tmp_path: Path) -> None:
    cfg = make_config(
        tmp_path,
        paths={"sass": {"in": ["assets/styles/*.scss"]}, "pug": {"in": ["views/{pages,mail}/*.pug"]}},
    )
    specs = {w.name: w for w in watch_specs(cfg)}

    assert specs["styles"].patterns == ("assets/styles/**/*.scss",)
    assert specs["html"].patterns == ("views/pages/**/*.pug", "views/mail/**/*.pug")


def test_default_watch_patterns(tmp_path: Path) -> None:
    specs = {w.name: w for w in watch_specs(make_config(tmp_path))}

    assert specs["styles"].patterns == ("src/sass/**/*.scss",)
    assert specs["html"].patterns == ("src/pug/**/*.pug",)
