"""Tests for the public dataset API endpoints, request ids and the shared token."""

import threading

import pytest
from fastapi.testclient import TestClient

from dsapi.api.main import create_app
from dsapi.config import Config
from dsapi.dataset.service import DatasetService
from tests.fakes import TEST_ACCOUNT, TEST_ORG

TOKEN = "t0k3n"


@pytest.fixture
def token_client(dataset_service: DatasetService) -> TestClient:
    """Client for an app that requires the X-Auth-Token header."""
    app = create_app(
        services={TEST_ACCOUNT: dataset_service},
        config=Config(org=TEST_ORG, token=TOKEN),
        shutdown=threading.Event(),
    )
    return TestClient(app, raise_server_exceptions=False)


def test_ping(client: TestClient) -> None:
    """GET /v1/ds/ping answers pong."""
    response = client.get("/v1/ds/ping")

    assert response.status_code == 200
    assert response.text == "pong"


def test_version(client: TestClient) -> None:
    """GET /v1/ds/version returns the configured build information."""
    response = client.get("/v1/ds/version")

    assert response.status_code == 200
    assert response.json() == {
        "version": "1.2.3",
        "prerelease": "-rc1",
        "build_stamp": "",
        "git_hash": "abc123",
    }


def test_metrics(client: TestClient) -> None:
    """GET /v1/ds/metrics exposes Prometheus metrics."""
    client.get("/v1/ds/ping")

    response = client.get("/v1/ds/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "dsapi_http_requests_total" in response.text


def test_request_id_generated(client: TestClient) -> None:
    """Responses carry a generated UUID request id."""
    request_id = client.get("/v1/ds/ping").headers["X-Request-Id"]

    assert len(request_id) == 36
    assert request_id.count("-") == 4


def test_request_id_echoed(client: TestClient) -> None:
    """A caller-provided X-Request-Id is echoed back."""
    response = client.get("/v1/ds/ping", headers={"X-Request-Id": "req-12345"})

    assert response.headers["X-Request-Id"] == "req-12345"


def test_unknown_route_uses_error_envelope(client: TestClient) -> None:
    """Routing 404s use the standard error envelope."""
    response = client.get("/v1/ds/nowhere/at/all/x/y/z", headers={"X-Request-Id": "req-404"})

    assert response.status_code == 404
    body = response.json()
    assert body["code"] == "NOT_FOUND"
    assert body["request_id"] == "req-404"
    assert set(body) == {"code", "message", "details", "request_id"}


def test_method_not_allowed(client: TestClient) -> None:
    response = client.post("/v1/ds/ping")

    assert response.status_code == 405
    assert response.json()["code"] == "METHOD_NOT_ALLOWED"


def test_token_required(token_client: TestClient) -> None:
    """Protected endpoints reject requests without the shared token."""
    response = token_client.get(f"/v1/ds/{TEST_ACCOUNT}/datasets/research")

    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "FORBIDDEN"
    assert body["message"] == "forbidden"
    assert body["request_id"] == response.headers["X-Request-Id"]


def test_wrong_token_rejected(token_client: TestClient) -> None:
    response = token_client.get(
        f"/v1/ds/{TEST_ACCOUNT}/datasets/research", headers={"X-Auth-Token": "nope"}
    )

    assert response.status_code == 403


def test_valid_token_accepted(token_client: TestClient) -> None:
    """With the right token the request reaches the route (listing is not implemented)."""
    response = token_client.get(
        f"/v1/ds/{TEST_ACCOUNT}/datasets/research", headers={"X-Auth-Token": TOKEN}
    )

    assert response.status_code == 501


@pytest.mark.parametrize("path", ["/v1/ds/ping", "/v1/ds/version", "/v1/ds/metrics"])
def test_public_paths_need_no_token(token_client: TestClient, path: str) -> None:
    assert token_client.get(path).status_code == 200
