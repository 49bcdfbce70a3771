# tests/conftest.py

from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image

from sitepipe.orchestrator.config import BuildConfig
from sitepipe.orchestrator.core import Orchestrator, discover_tasks

from .fakes import make_config, svg, write


@pytest.fixture()
def site(tmp_path: Path) -> Path:
    """A small source tree in the default layout."""
    src = tmp_path / "src"
    write(src / "sass" / "main.scss", "body { color: red; }\n")
    write(src / "sass" / "_partial.scss", "$x: 1;\n")
    write(src / "sass" / "vendor" / "reset.scss", "* { margin: 0; }\n")
    write(src / "pug" / "index.pug", "h1 Hello\n")
    write(src / "js" / "bundle" / "modules" / "a.js", "var a = 1;\n")
    write(src / "js" / "bundle" / "modules" / "b.js", "var b = 2;\n")
    write(src / "js" / "vendor" / "lib.js", "var lib = true;\n")
    write(src / "fonts" / "body.woff2", "font-bytes")
    write(src / "icons" / "home.svg", svg(1))
    write(src / "icons" / "a" / "one.svg", svg(2))
    write(src / "icons" / "b" / "two.svg", svg(3))
    (src / "images").mkdir(parents=True)
    Image.new("RGB", (16, 16), (200, 30, 30)).save(src / "images" / "red.png")
    write(src / "images" / "logo.svg", svg(4))
    return tmp_path


@pytest.fixture()
def config(site: Path) -> BuildConfig:
    return make_config(site)


@pytest.fixture()
def orch(config: BuildConfig) -> Orchestrator:
    return Orchestrator(config, discover_tasks().values())
