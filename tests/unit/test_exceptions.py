"""
Unit tests for the error taxonomy and its HTTP rendering.
"""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from similarity_service.core.exceptions import (
    DegenerateVectorError,
    EmptyInputError,
    EncodeError,
    ImageFetchError,
    ModelLoadError,
    ServiceError,
    register_exception_handlers,
)


@pytest.mark.unit
class TestErrorCodes:
    """Each error kind maps to a stable code and HTTP status."""

    @pytest.mark.parametrize(
        ("error_cls", "code", "status_code"),
        [
            (ModelLoadError, "model_load_error", 503),
            (ImageFetchError, "image_fetch_error", 400),
            (EncodeError, "encode_error", 500),
            (EmptyInputError, "empty_input", 400),
            (DegenerateVectorError, "degenerate_vector", 422),
        ],
    )
    def test_code_and_status(self, error_cls: type[ServiceError], code: str, status_code: int) -> None:
        error = error_cls("something failed", details={"k": "v"})

        assert error.error == code
        assert error.status_code == status_code
        assert error.message == "something failed"
        assert error.details == {"k": "v"}
        assert str(error) == "something failed"

    def test_details_default_to_empty(self) -> None:
        assert EncodeError("x").details == {}


@pytest.mark.unit
class TestExceptionHandlers:
    """Tests for the registered exception handlers."""

    @pytest.fixture
    def client(self) -> TestClient:
        app = FastAPI()
        register_exception_handlers(app)

        @app.get("/service-error")
        async def raise_service_error() -> None:
            raise DegenerateVectorError("zero norm", details={"dimension": 512})

        @app.get("/crash")
        async def crash() -> None:
            raise RuntimeError("internal detail")

        return TestClient(app, raise_server_exceptions=False)

    def test_service_error_rendered(self, client: TestClient) -> None:
        response = client.get("/service-error")

        assert response.status_code == 422
        assert response.json() == {
            "error": "degenerate_vector",
            "message": "zero norm",
            "details": {"dimension": 512},
        }

    def test_unhandled_error_is_sanitized(self, client: TestClient) -> None:
        response = client.get("/crash")

        assert response.status_code == 500
        assert response.json()["error"] == "internal_error"
        assert "internal detail" not in response.text
