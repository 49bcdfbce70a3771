"""Live-reload development server.

Serves the build root and pushes ``reload`` / ``inject`` events to connected
browsers over Server-Sent Events.
"""

from __future__ import annotations

import queue
import threading
from pathlib import Path

from flask import Flask, Response, abort, send_from_directory
from werkzeug.serving import make_server

from ..orchestrator.logging import get_logger


log = get_logger("sitepipe.server")

CLIENT_PATH = "/__sitepipe/client.js"
EVENTS_PATH = "/__sitepipe/events"

CLIENT_JS = """(function () {
  var source = new EventSource("%s");
  source.addEventListener("reload", function () { window.location.reload(); });
  source.addEventListener("inject", function () {
    var links = document.querySelectorAll('link[rel="stylesheet"]');
    Array.prototype.forEach.call(links, function (link) {
      var href = link.href.replace(/[?&]_sitepipe=\\d+/, "");
      link.href = href + (href.indexOf("?") === -1 ? "?" : "&") + "_sitepipe=" + Date.now();
    });
  });
})();
""" % EVENTS_PATH

EVENTS = ("reload", "inject")


class ReloadHub:
    """Fan-out of reload events to every connected client."""

    def __init__(self):
        self._lock = threading.Lock()
        self._clients: list[queue.Queue] = []

    def subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue()
        with self._lock:
            self._clients.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            if q in self._clients:
                self._clients.remove(q)

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    def publish(self, event: str) -> int:
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event}")
        with self._lock:
            clients = list(self._clients)
        for q in clients:
            q.put(event)
        log.info("Sent %s to %d client(s)", event, len(clients))
        return len(clients)


def inject_client(html: str) -> str:
    tag = f'<script src="{CLIENT_PATH}"></script>'
    idx = html.lower().rfind("</body>")
    if idx == -1:
        return html + tag
    return html[:idx] + tag + html[idx:]


def create_app(build_dir: Path, hub: ReloadHub, heartbeat: float = 15.0) -> Flask:
    app = Flask(__name__, static_folder=None)
    root = Path(build_dir).resolve()

    @app.route(CLIENT_PATH)
    def client_js():
        return Response(CLIENT_JS, mimetype="application/javascript")

    @app.route(EVENTS_PATH)
    def events():
        q = hub.subscribe()

        def stream():
            try:
                yield ": connected\n\n"
                while True:
                    try:
                        event = q.get(timeout=heartbeat)
                    except queue.Empty:
                        yield ": ping\n\n"
                        continue
                    yield f"event: {event}\ndata: {event}\n\n"
            finally:
                hub.unsubscribe(q)

        return Response(stream(), mimetype="text/event-stream", headers={"Cache-Control": "no-cache"})

    @app.route("/", defaults={"path": ""})
    @app.route("/<path:path>")
    def static_files(path: str):
        target = (root / path).resolve()
        if root not in target.parents and target != root:
            abort(404)
        if target.is_dir():
            target = target / "index.html"
            path = str(target.relative_to(root))
        if not target.is_file():
            abort(404)
        if target.suffix in (".html", ".htm"):
            html = target.read_text(encoding="utf-8", errors="replace")
            return Response(inject_client(html), mimetype="text/html")
        return send_from_directory(root, path)

    return app


class LiveReloadServer:
    """Run the Flask app on a background thread."""

    def __init__(self, build_dir: Path, hub: ReloadHub, host: str = "127.0.0.1", port: int = 3000):
        self.hub = hub
        self.app = create_app(build_dir, hub)
        self._server = make_server(host, port, self.app, threaded=True)
        self._thread = threading.Thread(target=self._server.serve_forever, name="livereload", daemon=True)

    @property
    def url(self) -> str:
        return f"http://{self._server.host}:{self._server.port}/"

    def start(self) -> "LiveReloadServer":
        self._thread.start()
        log.info("Serving %s", self.url)
        return self

    def stop(self) -> None:
        self._server.shutdown()
        self._thread.join()
