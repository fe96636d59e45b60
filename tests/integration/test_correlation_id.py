import logging
import uuid

import pytest

pytestmark = pytest.mark.integration


class TestCorrelationIdMiddleware:
    def test_returns_provided_request_id(self, client):
        custom_id = "my-custom-request-id-123"
        response = client.get("/health", HTTP_X_REQUEST_ID=custom_id)
        assert response["X-Request-ID"] == custom_id

    def test_generates_uuid_when_no_request_id(self, client):
        response = client.get("/health")
        request_id = response["X-Request-ID"]
        parsed = uuid.UUID(request_id, version=4)
        assert str(parsed) == request_id

    def test_correlation_id_in_logs(self, client, caplog):
        custom_id = "log-test-correlation-456"
        with caplog.at_level(logging.INFO):
            client.get("/health", HTTP_X_REQUEST_ID=custom_id)
        found = any(custom_id in record.getMessage() for record in caplog.records)
        assert found, (
            f"correlation_id '{custom_id}' not found in log records: "
            f"{[r.getMessage() for r in caplog.records]}"
        )

    def test_accepts_correlation_id_header(self, client):
        response = client.get("/health", HTTP_X_CORRELATION_ID="upstream-trace-7")
        assert response["X-Request-ID"] == "upstream-trace-7"

    def test_request_id_wins_over_correlation_id(self, client):
        response = client.get(
            "/health", HTTP_X_REQUEST_ID="req-1", HTTP_X_CORRELATION_ID="corr-1"
        )
        assert response["X-Request-ID"] == "req-1"

    def test_oversized_id_is_replaced(self, client):
        response = client.get("/health", HTTP_X_REQUEST_ID="x" * 500)
        request_id = response["X-Request-ID"]
        assert str(uuid.UUID(request_id, version=4)) == request_id

    def test_query_string_is_not_logged(self, client, caplog):
        with caplog.at_level(logging.INFO):
            client.get(
                "/api/v1/payments/bkash/callback/",
                {"paymentID": "TR0011secret", "status": "cancel"},
            )
        request_lines = [
            record.getMessage()
            for record in caplog.records
            if "request_started" in record.getMessage()
            or "request_finished" in record.getMessage()
        ]
        assert request_lines
        assert not any("TR0011secret" in line for line in request_lines)
