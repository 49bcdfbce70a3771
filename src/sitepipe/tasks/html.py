from ..orchestrator import task
from ..orchestrator.cache import target_path
from .common import optional_step


@task(
    name="html",
    inputs=lambda c: c.paths.pug.inputs,
    output=lambda c: c.paths.pug.out,
    exclude=lambda c: c.paths.pug.exclude,
)
def html(ctx):
    """Render Pug templates to HTML and minify them."""
    for src, base in ctx.inputs():
        dest = target_path(src, base, ctx.output, ".html")
        ctx.run_tool("pug", inputs=[src], output=dest)
        optional_step(ctx, "htmlmin", dest, f"HTML {dest.name}")
        ctx.wrote()
