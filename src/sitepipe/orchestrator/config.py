"""Build configuration.

The configuration is resolved once at startup (YAML file merged over the
defaults below, then environment overrides) into a frozen ``BuildConfig`` that is
handed to every task when the orchestrator binds it.
"""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .errors import ConfigError
from .utils import _get


MODES = ("development", "production")
BUNDLE_STRATEGIES = ("bundle", "concatenate")

DEFAULTS: Dict[str, Any] = {
    "project": {"name": "site", "version": "0.0.0"},
    "mode": "development",
    # inject stylesheets in place instead of reloading the page on style changes
    "hot_reload": True,
    # if "concatenate" all module files are joined instead of bundled
    "bundle_strategy": "bundle",
    # log how much space minification saved
    "report_sizes": False,
    "lint_fails_build": False,
    "paths": {
        "dev": "src",
        "build": "dist",
        "lint_reports": "reports/lint",
        "runs": ".sitepipe/runs",
        "sass": {
            "in": ["src/sass/**/*.scss"],
            "exclude": ["src/sass/vendor/*.scss"],
            "out": "dist/css",
        },
        "pug": {"in": ["src/pug/*.pug"], "out": "dist"},
        "js": {
            "modules": ["src/js/bundle/modules/*.js"],
            "vendor": ["src/js/vendor/*.js*"],
            "entry": "src/js/bundle/app.js",
            "bundle_dir": "src/js/bundle",
            "out": "dist/js",
        },
        "images": {"in": ["src/images/**/*.{png,jpg,jpeg,svg}"], "out": "dist/images"},
        "fonts": {"in": ["src/fonts/**/*.{woff,woff2}"], "out": "dist/fonts"},
        "sprites": {"folder": "src/icons", "out": "dist/icons"},
    },
    "images": {"jpeg_quality": 85},
    "tools": {
        "stylelint": {"argv": ["npx", "stylelint", "{inputs}"]},
        "sass": {
            "argv": ["npx", "sass", "--style=compressed", "{sourcemap}", "{input}", "{output}"],
            "sourcemap": ["--source-map"],
            "no_sourcemap": ["--no-source-map"],
        },
        "postcss": {
            "argv": ["npx", "postcss", "{input}", "--use", "autoprefixer", "--use", "cssnano", "-o", "{output}"],
        },
        "pug": {"argv": ["npx", "pug", "--path", "{input}"], "stdin": True},
        "htmlmin": {
            "argv": ["npx", "html-minifier-terser", "--collapse-whitespace", "{input}", "-o", "{output}"],
        },
        "bundler": {
            "argv": ["npx", "esbuild", "{inputs}", "--bundle", "{sourcemap}", "--outfile={output}"],
            "sourcemap": ["--sourcemap=inline"],
        },
        "transpile": None,
        "minify": {
            "argv": ["npx", "terser", "{input}", "--compress", "--mangle", "{sourcemap}", "-o", "{output}"],
            # reads the bundler's inline map and writes bundle.min.js.map beside the output
            "sourcemap": ["--source-map", "content=inline,url=bundle.min.js.map"],
        },
        "eslint": {"argv": ["npx", "eslint", "--format", "json", "{inputs}"]},
    },
    "server": {"host": "127.0.0.1", "port": 3000},
    "watch": {"debounce": 0.2},
    # rotating log file, relative to the project root
    "log_file": None,
    # run state folders kept per entry point, 0 keeps all of them
    "keep_runs": 20,
}


@dataclass(frozen=True)
class AssetPaths:
    inputs: Tuple[str, ...]
    out: str
    exclude: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Paths:
    dev: str
    build: str
    lint_reports: str
    runs: str
    sass: AssetPaths
    pug: AssetPaths
    images: AssetPaths
    fonts: AssetPaths
    js_modules: Tuple[str, ...]
    js_vendor: Tuple[str, ...]
    js_entry: str
    js_bundle_dir: str
    js_out: str
    sprites_folder: str
    sprites_out: str


@dataclass(frozen=True)
class ToolSpec:
    """argv template for an external tool.

    Placeholders: ``{input}``, ``{output}``, ``{output_dir}`` and the standalone
    elements ``{inputs}`` (expands to every input) and ``{sourcemap}`` (expands to
    ``sourcemap`` in development mode, ``no_sourcemap`` otherwise). Without an
    ``{output}`` placeholder the tool's stdout becomes the output file.
    """

    name: str
    argv: Tuple[str, ...]
    sourcemap: Tuple[str, ...] = ()
    no_sourcemap: Tuple[str, ...] = ()
    stdin: bool = False


@dataclass(frozen=True)
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 3000


@dataclass(frozen=True)
class WatchConfig:
    debounce: float = 0.2


@dataclass(frozen=True)
class BuildConfig:
    root: Path
    paths: Paths
    mode: str = "development"
    hot_reload: bool = True
    bundle_strategy: str = "bundle"
    report_sizes: bool = False
    lint_fails_build: bool = False
    tools: Mapping[str, Optional[ToolSpec]] = field(default_factory=dict)
    server: ServerConfig = ServerConfig()
    watch: WatchConfig = WatchConfig()
    project_name: str = "site"
    project_version: str = "0.0.0"
    jpeg_quality: int = 85
    log_file: Optional[str] = None
    keep_runs: int = 20

    @property
    def dev_mode(self) -> bool:
        return self.mode != "production"

    def resolve(self, path: str | Path) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self.root / p

    def tool(self, name: str) -> Optional[ToolSpec]:
        return self.tools.get(name)

    def highlights(self) -> str:
        return "\n".join(
            [
                f"{self.project_name} {self.project_version}",
                f"mode: {self.mode}",
                "js bundling: "
                + ("bundler" if self.bundle_strategy == "bundle" else "concatenation"),
                "browser refresh type: "
                + ("style injection" if self.hot_reload else "full reload"),
            ]
        )


def _deep_merge(base: dict, override: Mapping) -> dict:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, Mapping) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out


_TRUE = {"1", "true", "on", "yes"}
_FALSE = {"0", "false", "off", "no"}


def parse_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    raise ConfigError(f"Invalid boolean for {key}: {value!r}")


def _choice(value: Any, key: str, allowed: Tuple[str, ...]) -> str:
    s = str(value).strip().lower()
    if s not in allowed:
        raise ConfigError(f"Invalid {key}: {value!r} (expected one of {', '.join(allowed)})")
    return s


def _env_overrides(raw: dict, env: Mapping[str, str]) -> dict:
    raw = dict(raw)
    if env.get("SITEPIPE_MODE"):
        raw["mode"] = env["SITEPIPE_MODE"]
    elif env.get("NODE_ENV"):
        # anything but "production" is a development build
        is_prod = env["NODE_ENV"].strip().lower() == "production"
        raw["mode"] = "production" if is_prod else "development"
    for key in ("hot_reload", "bundle_strategy", "report_sizes", "lint_fails_build"):
        val = env.get(f"SITEPIPE_{key.upper()}")
        if val is not None and val != "":
            raw[key] = val
    return raw


def _as_tuple(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (str, Path)):
        return (str(value),)
    return tuple(str(v) for v in value)


def _asset(raw: dict, key: str) -> AssetPaths:
    section = _get(raw, "paths", key, default={})
    return AssetPaths(
        inputs=_as_tuple(section.get("in")),
        out=str(section.get("out", "")),
        exclude=_as_tuple(section.get("exclude")),
    )


def _tool(name: str, value: Any) -> Optional[ToolSpec]:
    if not value:
        return None
    if isinstance(value, (list, tuple)):
        value = {"argv": value}
    if not isinstance(value, Mapping) or not value.get("argv"):
        raise ConfigError(f"Tool {name!r} needs an 'argv' list")
    return ToolSpec(
        name=name,
        argv=_as_tuple(value["argv"]),
        sourcemap=_as_tuple(value.get("sourcemap")),
        no_sourcemap=_as_tuple(value.get("no_sourcemap")),
        stdin=bool(value.get("stdin", False)),
    )


def build_config(
    raw: Mapping | None = None,
    root: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> BuildConfig:
    """Merge ``raw`` over the defaults, apply environment overrides and validate."""
    merged = _deep_merge(DEFAULTS, raw or {})
    merged = _env_overrides(merged, os.environ if env is None else env)

    paths = Paths(
        dev=str(_get(merged, "paths", "dev")),
        build=str(_get(merged, "paths", "build")),
        lint_reports=str(_get(merged, "paths", "lint_reports")),
        runs=str(_get(merged, "paths", "runs")),
        sass=_asset(merged, "sass"),
        pug=_asset(merged, "pug"),
        images=_asset(merged, "images"),
        fonts=_asset(merged, "fonts"),
        js_modules=_as_tuple(_get(merged, "paths", "js", "modules")),
        js_vendor=_as_tuple(_get(merged, "paths", "js", "vendor")),
        js_entry=str(_get(merged, "paths", "js", "entry", default="")),
        js_bundle_dir=str(_get(merged, "paths", "js", "bundle_dir")),
        js_out=str(_get(merged, "paths", "js", "out")),
        sprites_folder=str(_get(merged, "paths", "sprites", "folder")),
        sprites_out=str(_get(merged, "paths", "sprites", "out")),
    )
    tools = {name: _tool(name, spec) for name, spec in (merged.get("tools") or {}).items()}

    try:
        server = ServerConfig(
            host=str(_get(merged, "server", "host", default="127.0.0.1")),
            port=int(_get(merged, "server", "port", default=3000)),
        )
        watch = WatchConfig(
            debounce=float(_get(merged, "watch", "debounce", default=0.2)),
        )
        jpeg_quality = int(_get(merged, "images", "jpeg_quality", default=85))
        keep_runs = int(merged.get("keep_runs") or 0)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid numeric setting: {e}") from e
    if keep_runs < 0:
        raise ConfigError(f"Invalid keep_runs: {keep_runs} (must be 0 or more)")

    return BuildConfig(
        root=Path(root) if root is not None else Path.cwd(),
        paths=paths,
        mode=_choice(merged["mode"], "mode", MODES),
        hot_reload=parse_bool(merged["hot_reload"], "hot_reload"),
        bundle_strategy=_choice(merged["bundle_strategy"], "bundle_strategy", BUNDLE_STRATEGIES),
        report_sizes=parse_bool(merged["report_sizes"], "report_sizes"),
        lint_fails_build=parse_bool(merged["lint_fails_build"], "lint_fails_build"),
        tools=tools,
        server=server,
        watch=watch,
        project_name=str(_get(merged, "project", "name", default="site")),
        project_version=str(_get(merged, "project", "version", default="0.0.0")),
        jpeg_quality=jpeg_quality,
        log_file=str(merged["log_file"]) if merged.get("log_file") else None,
        keep_runs=keep_runs,
    )


def load_config(path: str | Path, env: Mapping[str, str] | None = None) -> BuildConfig:
    p = Path(path)
    raw: dict = {}
    if p.exists():
        try:
            with open(p, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {p}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"{p} must contain a mapping at the top level")
        root = p.resolve().parent
    else:
        root = Path.cwd()
    return build_config(raw, root=root, env=env)
