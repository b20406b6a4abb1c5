"""
Unit tests for the shared logging and error helpers.
"""

import pytest
import structlog
from fastapi.testclient import TestClient

from shared.base_service import BaseService
from shared.errors import RateLimitError, StoreError, ThrottleException
from shared.logging import (
    add_correlation_context,
    clear_context,
    configure_logging,
    set_client_context,
    set_request_id,
)


@pytest.fixture(autouse=True)
def reset_context():
    clear_context()
    yield
    clear_context()


class TestLogging:
    """Test cases for the structlog configuration."""

    def test_single_timestamp_processor(self):
        """Events are stamped once, by structlog's TimeStamper."""
        configure_logging("throttle-test")

        processors = structlog.get_config()["processors"]
        stampers = [p for p in processors if isinstance(p, structlog.processors.TimeStamper)]

        assert len(stampers) == 1

    def test_correlation_context_added(self):
        """Request id and client key ride along on every event."""
        set_request_id("req-1")
        set_client_context("10.0.0.1")

        event = add_correlation_context(None, "info", {"event": "decision"})

        assert event["request_id"] == "req-1"
        assert event["client_key"] == "10.0.0.1"

    def test_explicit_client_key_wins(self):
        """A client_key bound on the event is not overwritten."""
        set_client_context("10.0.0.1")

        event = add_correlation_context(None, "info", {"event": "decision", "client_key": "other"})

        assert event["client_key"] == "other"

    def test_empty_context_adds_nothing(self):
        event = add_correlation_context(None, "info", {"event": "decision"})
        assert event == {"event": "decision"}


class TestErrors:
    """Test cases for the exception family and its HTTP mapping."""

    def test_store_error_uses_base_status(self):
        """StoreError never reaches a handler, so it keeps the default status."""
        assert StoreError().status_code == ThrottleException.status_code == 400
        assert RateLimitError().status_code == 429

    def test_handler_maps_status(self):
        """The service exception handler answers with each exception's status."""
        service = BaseService("throttle-test", 7777)

        @service.app.get("/store")
        async def store_route():
            raise StoreError("down")

        @service.app.get("/limited")
        async def limited_route():
            raise RateLimitError()

        with TestClient(service.app) as client:
            store_response = client.get("/store")
            limited_response = client.get("/limited")

        assert store_response.status_code == 400
        assert store_response.json()["code"] == "STORE_ERROR"
        assert limited_response.status_code == 429
        assert limited_response.json()["code"] == "RATE_LIMIT_ERROR"
