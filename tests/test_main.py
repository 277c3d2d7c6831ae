import pytest
import requests
from fastapi.testclient import TestClient
from src.core.config import settings
from src.main import app, onedrive
from src.clients.onedrive_client import OneDriveClient


@pytest.fixture
def api(session):
    app.dependency_overrides[onedrive] = lambda: OneDriveClient("test-token", session=session)
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_list_drives(api, session, make_response):
    session.responses.append(make_response(payload={"value": [{"id": "me"}]}))
    resp = api.get("/drives")
    assert resp.status_code == 200
    assert resp.json() == {"value": [{"id": "me"}]}


def test_item_with_children(api, session, make_response):
    session.responses.append(make_response(payload={"id": "ABC123", "children": []}))
    resp = api.get("/drive/items/ABC123", params={"children": "true"})
    assert resp.status_code == 200
    assert "expand=children" in session.last.url


def test_search(api, session, make_response):
    session.responses.append(make_response(payload={"value": []}))
    resp = api.get("/drive/search", params={"q": " budget "})
    assert resp.status_code == 200
    assert session.last.url.endswith("/drives/me/root/view.search?q=budget")


def test_blank_search_is_bad_request(api, session):
    resp = api.get("/drive/search", params={"q": "  "})
    assert resp.status_code == 400
    assert resp.json()["error"] == "InvalidArgumentError"
    assert session.sent == []


def test_upstream_status_passed_through(api, session, make_response):
    session.responses.append(make_response(404, payload={"error": {"code": "itemNotFound"}}))
    resp = api.get("/drive/items/missing/children")
    assert resp.status_code == 404
    assert resp.json()["error"] == "ApiError"


def test_transport_failure_is_bad_gateway(api, session):
    session.responses.append(requests.ConnectionError("down"))
    resp = api.get("/drive/root")
    assert resp.status_code == 502


def test_download_content(api, session, make_response):
    session.responses.extend([
        make_response(payload={"id": "ABC123", "@content.downloadUrl": "https://dl.example/abc"}),
        make_response(stream=b"line one\nline two\n"),
    ])
    resp = api.get("/drive/items/ABC123/content")
    assert resp.status_code == 200
    assert resp.content == b"line one\nline two\n"


def test_missing_token_is_server_error(monkeypatch):
    monkeypatch.setattr(settings, "ONEDRIVE_ACCESS_TOKEN", None)
    resp = TestClient(app).get("/drives")
    assert resp.status_code == 500
    assert resp.json()["error"] == "ConfigurationError"


def test_content_streams_in_chunks(api, session, make_response):
    session.responses.extend([
        make_response(payload={"id": "ABC123", "@content.downloadUrl": "https://dl.example/abc"}),
        make_response(stream=b"abcdefghij"),
    ])
    with api.stream("GET", "/drive/items/ABC123/content") as resp:
        assert resp.status_code == 200
        assert b"".join(resp.iter_bytes()) == b"abcdefghij"
    assert session.sent[1][1]["stream"] is True


def test_content_of_folder_is_bad_request(api, session, make_response):
    session.responses.append(make_response(payload={"id": "F1", "folder": {}}))
    resp = api.get("/drive/items/F1/content")
    assert resp.status_code == 400
    assert len(session.sent) == 1
