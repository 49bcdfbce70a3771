"""Entry points and watch rules, expressed as data."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from .cache import expand_braces, glob_base
from .config import BuildConfig


ASSETS = ["images", "sprites", "fonts", "html", "styles", "scripts"]


@dataclass(frozen=True)
class EntryPoint:
    name: str
    tasks: Tuple[str, ...]
    edges: Tuple[Tuple[str, str], ...] = ()


def entry_points() -> dict[str, EntryPoint]:
    return {
        # everything once, then the server is started by the CLI
        "default": EntryPoint("default", tuple(ASSETS)),
        "build": EntryPoint(
            "build",
            ("clean", *ASSETS),
            tuple(("clean", a) for a in ASSETS),
        ),
        "sprites": EntryPoint("sprites", ("sprites",)),
        "jslint": EntryPoint("jslint", ("jslint",)),
    }


@dataclass(frozen=True)
class WatchSpec:
    name: str
    patterns: Tuple[str, ...]
    on_change: Tuple[str, ...]


def _tree(patterns: Tuple[str, ...], ext: str) -> Tuple[str, ...]:
    """Every ``ext`` file below the fixed folder of each pattern.

    Watching the whole tree also catches partials and includes that are not
    build inputs themselves.
    """
    out: List[str] = []
    for raw in patterns:
        for pat in expand_braces(raw):
            tree = f"{glob_base(pat).as_posix()}/**/*{ext}"
            if tree not in out:
                out.append(tree)
    return tuple(out)


def watch_specs(config: BuildConfig) -> List[WatchSpec]:
    """Each rule re-runs only its own tasks and then notifies the browser."""
    paths = config.paths
    style_notifier = "inject" if config.hot_reload else "reload"
    return [
        WatchSpec("scripts", (f"{paths.js_bundle_dir}/**/*.js", *paths.js_vendor), ("scripts", "reload")),
        WatchSpec("styles", _tree(paths.sass.inputs, ".scss"), ("styles", style_notifier)),
        WatchSpec("html", _tree(paths.pug.inputs, ".pug"), ("html", "reload")),
        WatchSpec(
            "sprites",
            (f"{paths.sprites_folder}/**/*.svg",),
            ("clean_sprites", "sprites", "reload"),
        ),
    ]
