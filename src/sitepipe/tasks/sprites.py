"""SVG sprite tasks.

``sprites`` builds ``sprite.svg`` from the top-level icons and one
``sprite-<folder>.svg`` per icon subfolder, in symbol mode: every icon becomes
a ``<symbol>`` whose id is its path relative to the sprite's folder.
"""

import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional, Sequence

from ..orchestrator import task
from ..orchestrator.composite import CompositeTask, SubUnit
from ..orchestrator.errors import TransformError


SVG_NS = "http://www.w3.org/2000/svg"
ET.register_namespace("", SVG_NS)
ET.register_namespace("xlink", "http://www.w3.org/1999/xlink")


def sprite_name(unit: SubUnit) -> str:
    return "sprite.svg" if unit.folder is None else f"sprite-{unit.folder}.svg"


def _symbol_id(path: Path, base: Path) -> str:
    return path.relative_to(base).with_suffix("").as_posix().replace("/", "--")


def _view_box(svg: ET.Element) -> Optional[str]:
    if svg.get("viewBox"):
        return svg.get("viewBox")
    width, height = svg.get("width"), svg.get("height")
    if width and height:
        return f"0 0 {width.rstrip('px')} {height.rstrip('px')}"
    return None


def build_sprite(icons: Sequence[Path], base: Path) -> bytes:
    sprite = ET.Element(f"{{{SVG_NS}}}svg")
    for icon in sorted(icons):
        svg = ET.parse(icon).getroot()
        attrs = {"id": _symbol_id(icon, base)}
        view_box = _view_box(svg)
        if view_box:
            attrs["viewBox"] = view_box
        symbol = ET.SubElement(sprite, f"{{{SVG_NS}}}symbol", attrs)
        for child in list(svg):
            symbol.append(child)
    return ET.tostring(sprite, encoding="utf-8", xml_declaration=True)


@task(name="sprites", output=lambda c: c.paths.sprites_out)
def sprites(ctx):
    """Build one SVG sprite for the root icons and one per icon subfolder."""
    folder = ctx.config.resolve(ctx.config.paths.sprites_folder)
    composite = CompositeTask(folder, root_pattern="*.svg", sub_pattern="**/*.svg")

    def build(unit: SubUnit) -> Optional[Path]:
        if not unit.inputs:
            return None
        base = folder if unit.folder is None else folder / unit.folder
        try:
            data = build_sprite(unit.inputs, base)
        except ET.ParseError as e:
            raise TransformError(ctx.task.name, str(e)) from e
        dest = ctx.output / sprite_name(unit)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)
        ctx.report_size(sprite_name(unit), sum(p.stat().st_size for p in unit.inputs), len(data))
        return dest

    def done(results) -> None:
        written = [dest for _, dest in results if dest is not None]
        ctx.wrote(len(written))

    composite.run(ctx, build, done)


@task(name="clean_sprites", output=lambda c: c.paths.sprites_out)
def clean_sprites(ctx):
    """Remove generated sprites so deleted icon folders lose their sprite."""
    if not ctx.output.is_dir():
        return
    for sprite in sorted(ctx.output.glob("*.svg")):
        sprite.unlink()
        ctx.wrote()
