from __future__ import annotations

from pathlib import Path

import pytest

from sitepipe.backend.server import CLIENT_PATH, ReloadHub, create_app, inject_client
from sitepipe.orchestrator.core import Orchestrator, discover_tasks

from .fakes import make_config, write


@pytest.fixture()
def client(tmp_path: Path):
    write(tmp_path / "dist" / "index.html", "<html><body><h1>Hi</h1></body></html>")
    write(tmp_path / "dist" / "css" / "main.css", "body{}")
    app = create_app(tmp_path / "dist", ReloadHub())
    app.testing = True
    return app.test_client()


def test_serves_index_with_client_script(client) -> None:
    resp = client.get("/")
    body = resp.get_data(as_text=True)

    assert resp.status_code == 200
    assert f'<script src="{CLIENT_PATH}"></script></body>' in body


def test_serves_static_files(client) -> None:
    resp = client.get("/css/main.css")
    assert resp.status_code == 200
    assert resp.get_data(as_text=True) == "body{}"


def test_missing_and_escaping_paths_are_404(client) -> None:
    assert client.get("/nope.html").status_code == 404
    assert client.get("/../secret.txt").status_code == 404


def test_client_script(client) -> None:
    resp = client.get(CLIENT_PATH)
    assert resp.status_code == 200
    assert "EventSource" in resp.get_data(as_text=True)


def test_inject_client_without_body() -> None:
    assert inject_client("<p>x</p>").endswith(f'<script src="{CLIENT_PATH}"></script>')


def test_hub_fans_out_to_subscribers() -> None:
    hub = ReloadHub()
    a, b = hub.subscribe(), hub.subscribe()

    assert hub.publish("reload") == 2
    assert a.get_nowait() == "reload"
    assert b.get_nowait() == "reload"

    hub.unsubscribe(a)
    assert hub.client_count == 1
    with pytest.raises(ValueError):
        hub.publish("explode")


def test_notifier_tasks_publish_to_hub(tmp_path: Path) -> None:
    hub = ReloadHub()
    q = hub.subscribe()
    orch = Orchestrator(make_config(tmp_path), discover_tasks().values(), hub=hub)

    orch.run_series(["inject", "reload"])

    assert [q.get_nowait(), q.get_nowait()] == ["inject", "reload"]


def test_notifier_without_server_is_a_noop(tmp_path: Path) -> None:
    orch = Orchestrator(make_config(tmp_path), discover_tasks().values())
    assert orch.run_task("reload").ok
