"""JavaScript task: bundle or concatenate modules, append vendor scripts, minify."""

import tempfile
from pathlib import Path

from ..orchestrator import task
from .common import files, optional_step


BUNDLE_NAME = "bundle.min.js"


def _modules(ctx, workdir: Path) -> list:
    paths = ctx.config.paths
    modules = files(ctx, paths.js_modules)
    if ctx.config.bundle_strategy == "bundle":
        entry = ctx.config.resolve(paths.js_entry) if paths.js_entry else None
        entries = [entry] if entry is not None and entry.is_file() else modules
        if not entries:
            return []
        bundled = workdir / "bundle.js"
        ctx.run_tool("bundler", inputs=entries, output=bundled)
        return [bundled]
    if ctx.tool("transpile") is None:
        return modules
    out = []
    for i, src in enumerate(modules):
        dest = workdir / f"{i:04d}-{src.name}"
        ctx.run_tool("transpile", inputs=[src], output=dest)
        out.append(dest)
    return out


@task(
    name="scripts",
    inputs=lambda c: list(c.paths.js_modules) + list(c.paths.js_vendor),
    output=lambda c: c.paths.js_out,
)
def scripts(ctx):
    """Build bundle.min.js from the script modules and vendor files."""
    with tempfile.TemporaryDirectory(prefix="sitepipe-js-") as tmp:
        parts = _modules(ctx, Path(tmp)) + files(ctx, ctx.config.paths.js_vendor)
        if not parts:
            ctx.log.info("No scripts to build")
            return
        out = ctx.output / BUNDLE_NAME
        out.parent.mkdir(parents=True, exist_ok=True)
        with open(out, "wb") as f:
            for i, part in enumerate(parts):
                if i:
                    f.write(b"\n")
                f.write(part.read_bytes())
        source_map = out.with_name(out.name + ".map")
        if not ctx.config.dev_mode:
            source_map.unlink(missing_ok=True)
        optional_step(ctx, "minify", out, "js")
        ctx.wrote()
