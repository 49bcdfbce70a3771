"""Sass task: stylelint report, Sass compilation and PostCSS."""

from ..orchestrator import task
from ..orchestrator.cache import target_path
from .common import optional_step


SASS_REPORT = "sass-lint-report.txt"


def write_stylelint_report(ctx, sources) -> None:
    """Lint every source file into the report folder; never fails the build."""
    if ctx.tool("stylelint") is None or not sources:
        return
    proc = ctx.run_tool("stylelint", inputs=sources, check=False)
    report_dir = ctx.config.resolve(ctx.config.paths.lint_reports)
    report_dir.mkdir(parents=True, exist_ok=True)
    text = proc.stdout.decode("utf-8", "replace") + proc.stderr.decode("utf-8", "replace")
    (report_dir / SASS_REPORT).write_text(text, encoding="utf-8")
    if proc.returncode != 0:
        ctx.log.warning("stylelint reported problems, see %s", report_dir / SASS_REPORT)


@task(
    name="styles",
    inputs=lambda c: c.paths.sass.inputs,
    output=lambda c: c.paths.sass.out,
    exclude=lambda c: c.paths.sass.exclude,
)
def styles(ctx):
    """Compile Sass to CSS (source maps in development mode)."""
    pairs = ctx.inputs()
    write_stylelint_report(ctx, [src for src, _ in pairs])
    for src, base in pairs:
        # partials are only compiled through the files importing them
        if src.name.startswith("_"):
            continue
        dest = target_path(src, base, ctx.output, ".css")
        ctx.run_tool("sass", inputs=[src], output=dest)
        optional_step(ctx, "postcss", dest, f"css {dest.name}")
        ctx.wrote()
