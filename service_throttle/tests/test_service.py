"""
Unit tests for the throttling service application.
"""

import pytest
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient

from service_throttle.app.main import ThrottleService
from service_throttle.app.middleware.keys import peer_ip_key, remote_ip_key
from shared.errors import StoreError


@pytest.fixture
def service(cache, clock, monkeypatch):
    """ThrottleService over the in-memory cache with a small default bucket."""
    monkeypatch.setenv("THROTTLE_DEFAULT_CAPACITY", "2")
    monkeypatch.setenv("THROTTLE_DEFAULT_LEAK_RATE_PER_MIN", "60")
    return ThrottleService(cache=cache, clock=clock)


@pytest.fixture
def client(service):
    with TestClient(service.app) as test_client:
        yield test_client


class TestThrottleService:
    """Test cases for ThrottleService."""

    def test_root(self, client):
        """Root lists the registered buckets."""
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["buckets"] == ["/api", "/api/v1/status"]

    def test_api_throttled(self, client):
        """The demo endpoint allows the configured capacity, then 429s."""
        assert client.get("/api").status_code == 200
        assert client.get("/api").status_code == 200

        response = client.get("/api")

        assert response.status_code == 429
        assert response.text == "Rate Limit Exceeded"

    def test_api_recovers_after_leak(self, client, clock):
        """One drop leaks per second at 60/min."""
        client.get("/api")
        client.get("/api")
        assert client.get("/api").status_code == 429

        clock.advance(seconds=1)

        assert client.get("/api").status_code == 200

    def test_api_reports_client(self, client):
        """Forwarded client address is used as the key by default."""
        response = client.get("/api", headers={"X-Forwarded-For": "198.51.100.4"})

        assert response.json()["client"] == "198.51.100.4"

    def test_api_state_written_to_cache(self, client, cache):
        """Accepted requests persist state under the /api bucket."""
        client.get("/api", headers={"X-Forwarded-For": "198.51.100.4"})

        assert "leaky::/api::198.51.100.4" in cache.values

    def test_status_endpoint(self, client):
        """Dependency-throttled route reports the remaining budget."""
        response = client.get("/api/v1/status")

        assert response.status_code == 200
        assert response.json() == {"bucket": "/api/v1/status", "limit": 2, "remaining": 1}

    def test_status_endpoint_throttled(self, client):
        """Exceeding the dependency bucket yields a JSON 429."""
        client.get("/api/v1/status")
        client.get("/api/v1/status")

        response = client.get("/api/v1/status")

        assert response.status_code == 429
        body = response.json()
        assert body["code"] == "RATE_LIMIT_ERROR"
        assert body["details"]["bucket"] == "/api/v1/status"
        assert body["details"]["retry_after_seconds"] == 1

    def test_request_id_header(self, client):
        """Every response carries a request ID, echoing the caller's."""
        response = client.get("/", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_health_without_redis(self, client):
        """With an injected cache there are no dependencies to report."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["dependencies"] == {}

    def test_metrics_endpoint(self, client):
        """Decisions are exported in Prometheus format."""
        client.get("/api")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert 'throttle_decisions_total{bucket="/api",decision="allow"} 1.0' in response.text

    def test_key_func_follows_config(self, cache, clock, monkeypatch):
        """Forwarded headers are ignored when not trusted."""
        assert ThrottleService(cache=cache, clock=clock).key_func is remote_ip_key

        monkeypatch.setenv("THROTTLE_TRUST_FORWARDED_HEADERS", "false")
        assert ThrottleService(cache=cache, clock=clock).key_func is peer_ip_key


class TestThrottleServiceRedis:
    """Test cases for the Redis-backed service wiring."""

    @pytest.fixture
    def service(self, monkeypatch):
        monkeypatch.setenv("THROTTLE_DEFAULT_CAPACITY", "1")
        monkeypatch.setenv("THROTTLE_DEFAULT_LEAK_RATE_PER_MIN", "0")
        return ThrottleService()

    def test_uses_redis_cache_by_default(self, service):
        """Without an injected cache the service talks to Redis."""
        assert service.redis_cache is not None
        assert service.manager.store.cache is service.redis_cache
        assert service.manager.store.ttl_seconds == 3600

    def test_startup_failure_fails_open(self, service):
        """Redis down at startup and at request time still serves traffic."""
        with patch.object(service.redis_cache, "start", new_callable=AsyncMock) as mock_start, \
                patch.object(service.redis_cache, "get", new_callable=AsyncMock) as mock_get, \
                patch.object(service.redis_cache, "set", new_callable=AsyncMock) as mock_set, \
                patch.object(service.redis_cache, "stop", new_callable=AsyncMock):
            mock_start.side_effect = StoreError("Connection refused")
            mock_get.side_effect = ConnectionError("Connection refused")
            mock_set.side_effect = ConnectionError("Connection refused")

            with TestClient(service.app) as client:
                for _ in range(3):
                    assert client.get("/api").status_code == 200

    def test_health_reports_redis(self, service):
        """Redis health shows up as a degraded dependency."""
        with patch.object(service.redis_cache, "health_check", new_callable=AsyncMock) as mock_health:
            mock_health.return_value = False
            client = TestClient(service.app)

            response = client.get("/health")

        assert response.json()["status"] == "degraded"
        assert response.json()["dependencies"] == {"redis": "error"}
