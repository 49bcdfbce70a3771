from __future__ import annotations

import dataclasses
import signal
from typing import Dict, Optional

import typer

from .config import BuildConfig, load_config
from .core import Orchestrator, RunResult
from .errors import CleanError, ConfigError, DuplicateTaskError
from .logging import attach_log_file, get_logger
from .pipelines import entry_points, watch_specs
from .utils import human_size


app = typer.Typer(add_completion=False, help="Static site build orchestrator")
log = get_logger("sitepipe.cli")

ConfigOption = typer.Option("sitepipe.yaml", "--config", "-c", help="Path to YAML config")


def _load(config: str, **overrides) -> BuildConfig:
    try:
        cfg = load_config(config)
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=2)
    if overrides:
        cfg = dataclasses.replace(cfg, **overrides)
    if cfg.log_file:
        attach_log_file(cfg.resolve(cfg.log_file))
    for line in cfg.highlights().splitlines():
        log.info(line)
    return cfg


def _orchestrator(cfg: BuildConfig, hub=None) -> Orchestrator:
    try:
        return Orchestrator.from_config(cfg, hub=hub)
    except DuplicateTaskError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=2)


def _summarize(results: Dict[str, RunResult]) -> bool:
    ok = True
    for r in results.values():
        line = f"{r.status:8} {r.name} ({r.duration:.2f}s, {r.processed} written, {r.skipped_files} up to date)"
        if r.error:
            line += f": {r.error}"
            ok = False
        typer.echo(line)
        for s in r.sizes:
            typer.echo(f"         {s.title}: {human_size(s.before)} -> {human_size(s.after)}")
    return ok


def _run_entry(orch: Orchestrator, name: str) -> Dict[str, RunResult]:
    ep = entry_points()[name]
    try:
        return orch.run_graph(
            ep.tasks,
            ep.edges,
            pipeline=ep.name,
            state_dir=orch.config.resolve(orch.config.paths.runs),
        )
    except CleanError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)


@app.command("list")
def list_tasks(config: str = ConfigOption):
    """List registered tasks."""
    orch = _orchestrator(_load(config))
    typer.echo("Registered tasks:")
    for name in sorted(orch.tasks):
        typer.echo(f"- {name}: {orch.tasks[name].description}")


@app.command()
def build(config: str = ConfigOption):
    """Clean, then build every asset once (no server)."""
    orch = _orchestrator(_load(config))
    if not _summarize(_run_entry(orch, "build")):
        raise typer.Exit(code=1)


@app.command()
def clean(config: str = ConfigOption):
    """Remove build output and lint reports."""
    orch = _orchestrator(_load(config))
    try:
        result = orch.run_task("clean")
    except CleanError as e:
        typer.echo("Could not remove:", err=True)
        for p in e.paths:
            typer.echo(f"  {p}", err=True)
        raise typer.Exit(code=1)
    _summarize({"clean": result})


@app.command()
def sprites(config: str = ConfigOption):
    """Build the SVG sprites."""
    orch = _orchestrator(_load(config))
    if not _summarize(_run_entry(orch, "sprites")):
        raise typer.Exit(code=1)


@app.command()
def jslint(
    config: str = ConfigOption,
    strict: bool = typer.Option(False, help="Exit non-zero when the linter reports messages"),
):
    """Lint the script bundle folders."""
    overrides = {"lint_fails_build": True} if strict else {}
    orch = _orchestrator(_load(config, **overrides))
    if not _summarize(_run_entry(orch, "jslint")):
        raise typer.Exit(code=1)


@app.command()
def run_task(
    name: str = typer.Argument(..., help="Task name to run"),
    config: str = ConfigOption,
    force: bool = typer.Option(False, help="Process every input, even up-to-date ones"),
    retries: int = typer.Option(0, help="Retries on failure"),
):
    """Run a single task by name."""
    orch = _orchestrator(_load(config))
    if name not in orch.tasks:
        typer.echo(f"Task not found: {name}")
        raise typer.Exit(code=1)
    try:
        result = orch.run_task(name, force=force, retries=retries)
    except CleanError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)
    if not _summarize({name: result}):
        raise typer.Exit(code=1)


@app.command("default")
def default(
    config: str = ConfigOption,
    port: Optional[int] = typer.Option(None, help="Override the server port"),
):
    """Build everything once, then serve with live reload and watch for changes."""
    from ..backend.server import LiveReloadServer, ReloadHub
    from .watch import Watcher

    cfg = _load(config)
    if port is not None:
        cfg = dataclasses.replace(cfg, server=dataclasses.replace(cfg.server, port=port))
    hub = ReloadHub()
    orch = _orchestrator(cfg, hub=hub)
    _summarize(_run_entry(orch, "default"))

    for spec in watch_specs(cfg):
        orch.watch(spec.patterns, spec.on_change, name=spec.name)
    watcher = Watcher(orch.watch_rules, cfg.root, debounce=cfg.watch.debounce)
    server = LiveReloadServer(
        cfg.resolve(cfg.paths.build), hub, host=cfg.server.host, port=cfg.server.port
    ).start()
    typer.echo(f"Serving {server.url}")

    signal.signal(signal.SIGTERM, lambda *_: watcher.stop())
    try:
        watcher.run_forever()
    except KeyboardInterrupt:
        # run_forever has already closed the observer and joined the rules
        typer.echo("Stopped")
    finally:
        server.stop()


def main():  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
