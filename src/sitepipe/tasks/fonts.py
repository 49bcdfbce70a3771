import shutil

from ..orchestrator import task


@task(
    name="fonts",
    inputs=lambda c: c.paths.fonts.inputs,
    output=lambda c: c.paths.fonts.out,
    exclude=lambda c: c.paths.fonts.exclude,
)
def fonts(ctx):
    """Copy new or changed font files."""
    for src, dest in ctx.newer():
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dest)
        ctx.wrote()
