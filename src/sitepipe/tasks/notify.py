from ..orchestrator import task


def _publish(ctx, event: str) -> None:
    if ctx.hub is None:
        ctx.log.debug("No live-reload server, skipping %s", event)
        return
    ctx.hub.publish(event)


@task(name="reload")
def reload(ctx):
    """Tell connected browsers to reload the page."""
    _publish(ctx, "reload")


@task(name="inject")
def inject(ctx):
    """Tell connected browsers to re-fetch their stylesheets in place."""
    _publish(ctx, "inject")
