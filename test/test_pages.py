"""Static page routes and WebSocket upgrade on the same port."""

import pytest
from fastapi.testclient import TestClient

from robot_bridge.pages import PAGES, register_pages
from robot_bridge.ws_server import WebSocketServer


@pytest.fixture
def frontend(tmp_path):
    for filename in PAGES.values():
        (tmp_path / filename).write_text(f"<html>{filename}</html>")
    (tmp_path / "style.css").write_text("body {}")
    return tmp_path


@pytest.mark.parametrize("route, filename", list(PAGES.items()))
def test_page_routes_serve_their_file(frontend, route, filename):
    server = WebSocketServer()
    register_pages(server.app, str(frontend))
    client = TestClient(server.app)

    response = client.get(route)

    assert response.status_code == 200
    assert response.text == f"<html>{filename}</html>"


def test_assets_and_websocket_share_the_app(frontend):
    server = WebSocketServer()
    register_pages(server.app, str(frontend))
    client = TestClient(server.app)

    assert client.get("/style.css").text == "body {}"
    assert client.get("/health").json()["status"] == "ok"
    with client.websocket_connect("/") as ws:
        ws.send_text('{"velocidade": 0, "angulo": 0}')


def test_missing_frontend_directory_disables_pages(tmp_path):
    server = WebSocketServer()

    assert not register_pages(server.app, str(tmp_path / "missing"))
    assert TestClient(server.app).get("/menu").status_code == 404
