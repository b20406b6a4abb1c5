"""
Throttling service: an example API protected by leaky buckets.

Start a Redis instance, e.g. ``docker run -itd -p 6379:6379 redis:alpine``,
run ``python -m service_throttle.app.main`` and repeat
``curl http://localhost:7777/api`` to watch requests get throttled.
"""

from typing import Dict, Optional

from fastapi import Depends, Request
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.errors import StoreError
from .bucket import Admission, Cache, RedisCache, ThrottleManager
from .bucket.state import Clock, utc_now
from .middleware.keys import peer_ip_key, remote_ip_key
from .middleware.throttle import throttle_dependency


class ThrottleService(BaseService):
    """Throttling service implementation."""

    def __init__(self, cache: Optional[Cache] = None, clock: Clock = utc_now):
        super().__init__("throttle", 7777)

        self.redis_cache: Optional[RedisCache] = None
        if cache is None:
            self.redis_cache = RedisCache(
                self.config.redis_url,
                socket_timeout=self.config.store_timeout_seconds
            )
            cache = self.redis_cache

        self.manager = ThrottleManager(
            cache,
            namespace=self.config.key_namespace,
            ttl_seconds=self.config.state_ttl_seconds,
            timeout_seconds=self.config.store_timeout_seconds,
            clock=clock,
            metrics=self.metrics,
        )
        self.key_func = remote_ip_key if self.config.trust_forwarded_headers else peer_ip_key

        self._setup_throttle_routes()

    async def startup(self):
        if self.redis_cache is None:
            return
        try:
            await self.redis_cache.start()
        except StoreError as e:
            # Buckets fail open, so the API stays up while Redis is down
            self.logger.warning("Redis unavailable at startup, throttling will fail open", error=e.message)

    async def shutdown(self):
        if self.redis_cache is not None:
            await self.redis_cache.stop()

    def _setup_throttle_routes(self):
        """Set up throttled routes."""

        async def api_endpoint(request: Request):
            """Demo endpoint wrapped by a leaky bucket."""
            client = self.key_func(request)
            self.logger.info("API called", client=client)
            return JSONResponse({"service": self.service_name, "client": client})

        self.api = self.manager.throttling_handler(
            api_endpoint,
            self.config.default_capacity,
            self.config.default_leak_rate_per_min,
            self.key_func,
            "/api",
        )
        self.app.add_route("/api", self.api)

        status_bucket = self.manager.new_bucket(
            self.config.default_capacity,
            self.config.default_leak_rate_per_min,
            "/api/v1/status",
        )

        @self.app.get("/api/v1/status")
        async def throttle_status(
            admission: Admission = Depends(throttle_dependency(status_bucket, self.key_func))
        ):
            """Report the caller's remaining budget on this endpoint."""
            return {
                "bucket": status_bucket.name,
                "limit": admission.limit,
                "remaining": int(admission.remaining),
            }

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": self.service_name,
                "message": "Leaky bucket rate limiting",
                "version": "1.0.0",
                "buckets": [self.api.bucket.name, status_bucket.name],
            }

    async def _check_dependencies(self) -> Dict[str, str]:
        if self.redis_cache is None:
            return {}
        healthy = await self.redis_cache.health_check()
        return {"redis": "ok" if healthy else "error"}


def create_app():
    """Create throttling service application."""
    service = ThrottleService()
    return service.app


if __name__ == "__main__":
    service = ThrottleService()
    service.run()
