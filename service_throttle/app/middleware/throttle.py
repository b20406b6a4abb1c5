"""
Request interceptors backed by a leaky bucket.
"""

import inspect
from typing import Awaitable, Callable, Iterable, Union

from fastapi import Request
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import PlainTextResponse, Response
from starlette.types import Receive, Scope, Send

from shared.errors import RateLimitError
from shared.logging import get_logger, set_client_context
from ..bucket.leaky_bucket import Admission, LeakyBucket

Handler = Callable[[Request], Union[Response, Awaitable[Response]]]
KeyFunc = Callable[[Request], str]

RATE_LIMIT_MESSAGE = "Rate Limit Exceeded"
DEFAULT_EXCLUDED_PATHS = ("/health", "/metrics")


def set_rate_limit_headers(response: Response, admission: Admission) -> None:
    """Propagate rate limiting metadata via standard headers."""
    response.headers["X-RateLimit-Limit"] = str(admission.limit)
    response.headers["X-RateLimit-Remaining"] = str(int(admission.remaining))
    if not admission.allowed and admission.retry_after_seconds is not None:
        response.headers["Retry-After"] = str(admission.retry_after_seconds)


def rate_limited_response(admission: Admission) -> Response:
    response = PlainTextResponse(RATE_LIMIT_MESSAGE, status_code=429)
    set_rate_limit_headers(response, admission)
    return response


async def _call_handler(handler: Handler, request: Request) -> Response:
    if inspect.iscoroutinefunction(handler):
        return await handler(request)
    result = await run_in_threadpool(handler, request)
    if inspect.isawaitable(result):
        result = await result
    return result


class ThrottledEndpoint:
    """Wraps one handler; each request spends one drop from its client's bucket.

    Instances are ASGI applications, so they can be mounted directly with
    ``app.add_route(path, endpoint)``. ``dispatch`` is the same check for
    callers that already hold a ``Request``.
    """

    def __init__(self, handler: Handler, bucket: LeakyBucket, key_func: KeyFunc):
        self.handler = handler
        self.bucket = bucket
        self.key_func = key_func
        self.logger = get_logger("throttle.middleware")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive, send)
        response = await self.dispatch(request)
        await response(scope, receive, send)

    async def dispatch(self, request: Request) -> Response:
        """Forward to the handler, or answer 429 when the bucket is full."""
        client_key = self.key_func(request)
        set_client_context(client_key)

        admission = await self.bucket.admit(1, client_key)
        if not admission.allowed:
            return rate_limited_response(admission)

        response = await _call_handler(self.handler, request)
        set_rate_limit_headers(response, admission)
        return response

    async def add(self, count: int, client_key: str) -> bool:
        """Manual admission against the wrapped bucket."""
        return await self.bucket.add(count, client_key)


class LeakyBucketMiddleware(BaseHTTPMiddleware):
    """Application-wide leaky bucket, one drop per request."""

    def __init__(
        self,
        app,
        bucket: LeakyBucket,
        key_func: KeyFunc,
        exclude_paths: Iterable[str] = DEFAULT_EXCLUDED_PATHS,
    ):
        super().__init__(app)
        self.bucket = bucket
        self.key_func = key_func
        self.exclude_paths = frozenset(exclude_paths)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        client_key = self.key_func(request)
        set_client_context(client_key)

        admission = await self.bucket.admit(1, client_key)
        if not admission.allowed:
            return rate_limited_response(admission)

        response = await call_next(request)
        set_rate_limit_headers(response, admission)
        return response


def throttle_dependency(bucket: LeakyBucket, key_func: KeyFunc, count: int = 1):
    """FastAPI dependency that raises ``RateLimitError`` once the bucket is full.

    The admission is stored on ``request.state.admission`` so routes can
    report remaining capacity.
    """

    async def enforce_rate_limit(request: Request) -> Admission:
        client_key = key_func(request)
        set_client_context(client_key)

        admission = await bucket.admit(count, client_key)
        request.state.admission = admission
        if not admission.allowed:
            raise RateLimitError(
                details={
                    "bucket": bucket.name,
                    "limit": admission.limit,
                    "remaining": int(admission.remaining),
                    "retry_after_seconds": admission.retry_after_seconds,
                }
            )
        return admission

    return enforce_rate_limit
