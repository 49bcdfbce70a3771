from .server import LiveReloadServer, ReloadHub, create_app

__all__ = ["LiveReloadServer", "ReloadHub", "create_app"]
