"""
Unit tests for the similarity endpoints.

POST /similarity and the /ws WebSocket run the real controller against the
model doubles wired up in the unit conftest.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tests.factories import create_data_url, words

if TYPE_CHECKING:
    from fastapi.testclient import TestClient
    from starlette.testclient import WebSocketTestSession

    from tests.factories import FakeLoader


def receive_until_final(websocket: WebSocketTestSession) -> list[dict]:
    """Receive events until a complete or error event arrives."""
    events = []
    while True:
        event = websocket.receive_json()
        events.append(event)
        if event["status"] in ("complete", "error"):
            return events


@pytest.mark.unit
class TestSimilarityPost:
    """Tests for POST /similarity."""

    def test_returns_score(self, client: TestClient) -> None:
        response = client.post("/similarity", json={"text": "a cat", "url": create_data_url()})
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "complete"
        assert -1.0 <= data["output"] <= 1.0
        assert data["chunks"] == 1
        assert data["dimension"] == 8

    def test_long_text_is_chunked(self, client: TestClient) -> None:
        response = client.post("/similarity", json={"text": words(200), "url": create_data_url()})

        assert response.json()["chunks"] == 3

    def test_bad_image_returns_400(self, client: TestClient) -> None:
        response = client.post("/similarity", json={"text": "a cat", "url": "ftp://example.com/cat.png"})
        data = response.json()

        assert response.status_code == 400
        assert data["error"] == "image_fetch_error"
        assert data["details"] == {"scheme": "ftp"}

    def test_undecodable_data_url_returns_400(self, client: TestClient) -> None:
        response = client.post(
            "/similarity",
            json={"text": "a cat", "url": "data:image/png;base64,aGVsbG8="},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "image_fetch_error"

    def test_model_load_failure_returns_503(self, client: TestClient, fake_loader: FakeLoader) -> None:
        fake_loader.failures = 1

        response = client.post("/similarity", json={"text": "a cat", "url": create_data_url()})

        assert response.status_code == 503
        assert response.json()["error"] == "model_load_error"

    def test_blank_text_returns_422(self, client: TestClient) -> None:
        response = client.post("/similarity", json={"text": "   ", "url": create_data_url()})

        assert response.status_code == 422

    def test_unknown_field_returns_422(self, client: TestClient) -> None:
        response = client.post(
            "/similarity",
            json={"text": "a cat", "url": create_data_url(), "model": "other"},
        )

        assert response.status_code == 422


@pytest.mark.unit
class TestSimilaritySocket:
    """Tests for the /ws message protocol."""

    def test_first_request_event_sequence(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as websocket:
            websocket.send_json({"text": "a cat", "url": create_data_url()})
            events = receive_until_final(websocket)

        statuses = [e["status"] for e in events]
        assert statuses[0] == "initiate"
        assert statuses[-2:] == ["ready", "complete"]
        assert set(statuses[1:-2]) == {"progress"}

    def test_unknown_length_progress_is_not_relayed(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as websocket:
            websocket.send_json({"text": "a cat", "url": create_data_url()})
            events = receive_until_final(websocket)

        progress = [e["progress"] for e in events if e["status"] == "progress"]
        assert [p["file"] for p in progress] == ["model.safetensors"] * 3
        assert [p["loaded"] for p in progress] == [0, 512, 1024]
        assert progress[-1]["progress"] == 100.0
        assert all(p["name"] == "test-org/tiny-clip" for p in progress)

    def test_second_request_skips_loading(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as websocket:
            websocket.send_json({"text": "a cat", "url": create_data_url()})
            receive_until_final(websocket)
            websocket.send_json({"text": "a dog", "url": create_data_url()})
            events = receive_until_final(websocket)

        assert [e["status"] for e in events] == ["initiate", "complete"]

    def test_pipeline_error_is_an_error_event(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as websocket:
            websocket.send_json({"text": "a cat", "url": "ftp://example.com/cat.png"})
            events = receive_until_final(websocket)

        assert events[-1]["status"] == "error"
        assert events[-1]["code"] == "image_fetch_error"
        assert "complete" not in [e["status"] for e in events]

    def test_invalid_json_keeps_socket_open(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as websocket:
            websocket.send_text("{not json")
            error = websocket.receive_json()
            websocket.send_json({"text": "a cat", "url": create_data_url()})
            events = receive_until_final(websocket)

        assert error["status"] == "error"
        assert error["code"] == "invalid_request"
        assert "not valid JSON" in error["error"]
        assert events[-1]["status"] == "complete"

    def test_missing_field_is_rejected(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as websocket:
            websocket.send_json({"text": "a cat"})
            error = websocket.receive_json()

        assert error["status"] == "error"
        assert error["code"] == "invalid_request"
        assert "url" in error["error"]
