"""Unit tests for RequestLoggingMiddleware."""

from unittest.mock import patch

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from tempokey.infrastructure.observability.middleware import (
    CORRELATION_HEADER,
    RequestLoggingMiddleware,
)


class TestRequestLoggingMiddleware:
    """Test suite for RequestLoggingMiddleware."""

    @pytest.fixture
    def app(self) -> FastAPI:
        app = FastAPI()
        app.add_middleware(RequestLoggingMiddleware)

        @app.get("/ok")
        async def ok_endpoint():
            return {"message": "ok"}

        @app.get("/missing")
        async def missing_endpoint():
            raise HTTPException(status_code=404)

        @app.get("/error")
        async def error_endpoint():
            raise ValueError("Test error")

        return app

    @pytest.fixture
    def client(self, app: FastAPI) -> TestClient:
        return TestClient(app, raise_server_exceptions=False)

    def test_successful_request_logs_completion(self, client: TestClient):
        """Successful requests log one line with method, path, status and duration."""
        with patch("tempokey.infrastructure.observability.middleware.logger") as mock_logger:
            response = client.get("/ok")

        assert response.status_code == 200
        assert mock_logger.info.call_count == 1
        message = mock_logger.info.call_args[0][0]
        assert message.startswith("✓ GET /ok → 200")
        assert "ms" in message

    def test_error_status_marked(self, client: TestClient):
        with patch("tempokey.infrastructure.observability.middleware.logger") as mock_logger:
            client.get("/missing")

        assert mock_logger.info.call_args[0][0].startswith("✗ GET /missing → 404")

    def test_correlation_id_echoed(self, client: TestClient):
        response = client.get("/ok", headers={CORRELATION_HEADER: "corr-42"})

        assert response.headers[CORRELATION_HEADER] == "corr-42"

    def test_correlation_id_generated(self, client: TestClient):
        response = client.get("/ok")

        assert len(response.headers[CORRELATION_HEADER]) == 36

    def test_exception_logged(self, client: TestClient):
        with patch("tempokey.infrastructure.observability.middleware.logger") as mock_logger:
            response = client.get("/error")

        assert response.status_code == 500
        mock_logger.exception.assert_called_once()
        assert mock_logger.exception.call_args.kwargs["extra"]["error_type"] == "ValueError"
