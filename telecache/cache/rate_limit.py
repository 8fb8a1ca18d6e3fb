"""Fixed-window rate limiting with counters kept in a CacheEngine."""

import logging
import math
from collections.abc import Iterable

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from telecache.cache.engine import CacheEngine, validate_seconds
from telecache.cache.errors import InvalidArgumentError
from telecache.cache.keys import build_key, hash_payload
from telecache.cache.middleware import PrincipalResolver, resolve_principal
from telecache.models.cache import RateLimitResult

logger = logging.getLogger(__name__)

DEFAULT_SKIP_PATHS: tuple[str, ...] = ("/api/health", "/health", "/metrics")


class _WindowCounter:
    __slots__ = ("count", "reset_at")

    def __init__(self, reset_at: float) -> None:
        self.count = 0
        self.reset_at = reset_at


class RateLimiter:
    """Count requests per key in fixed windows.

    Each key's counter lives in *cache* with a TTL equal to the window, so
    idle counters expire and are swept like any other entry.

    Args:
        cache: Engine holding the counters. Not owned.
        limit: Requests allowed per window.
        window_seconds: Window length.
        name: Namespace separating limiters that share one engine.
    """

    def __init__(
        self,
        cache: CacheEngine,
        limit: int = 100,
        window_seconds: float = 60,
        name: str = "general",
    ) -> None:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise InvalidArgumentError(f"limit must be a positive integer, got {limit!r}")
        validate_seconds(window_seconds, "window_seconds")
        if window_seconds == 0:
            raise InvalidArgumentError("window_seconds must be greater than 0")
        self.cache = cache
        self.limit = limit
        self.window_seconds = window_seconds
        self.name = name

    def _cache_key(self, key: str) -> str:
        return build_key("ratelimit", self.name, key)

    def hit(self, key: str) -> RateLimitResult:
        """Record one request for *key* and report whether it is over the limit."""
        cache_key = self._cache_key(key)
        now = self.cache.now()
        counter = self.cache.get(cache_key)
        if not isinstance(counter, _WindowCounter) or counter.reset_at <= now:
            counter = _WindowCounter(now + self.window_seconds)
            self.cache.set(cache_key, counter, self.window_seconds)

        counter.count += 1
        limited = counter.count > self.limit
        return RateLimitResult(
            total_hits=counter.count,
            limit=self.limit,
            remaining=max(0, self.limit - counter.count),
            reset_at=counter.reset_at,
            limited=limited,
            retry_after=max(1, math.ceil(counter.reset_at - now)) if limited else 0,
        )

    def reset(self, key: str) -> bool:
        """Forget the counter for *key*. Returns True if one existed."""
        return self.cache.delete(self._cache_key(key))


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests over the limit with 429 and ``Retry-After``.

    Args:
        app: The wrapped ASGI app.
        limiter: The limiter to charge.
        path_prefix: Only paths with this prefix are limited (``"*"`` = all).
        include_user: Add the authenticated principal to the client key.
        skip_paths: Exact paths never limited.
        principal_resolver: Extracts the caller from the request.
        message: Error text returned with a 429.
    """

    def __init__(
        self,
        app: ASGIApp,
        limiter: RateLimiter,
        path_prefix: str = "*",
        include_user: bool = False,
        skip_paths: Iterable[str] = DEFAULT_SKIP_PATHS,
        principal_resolver: PrincipalResolver = resolve_principal,
        message: str = "Too many requests, please try again later.",
    ) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.path_prefix = path_prefix
        self.include_user = include_user
        self.skip_paths = frozenset(skip_paths)
        self.principal_resolver = principal_resolver
        self.message = message

    def client_key(self, request: Request) -> str:
        """IP address, plus principal and API-key components when present."""
        key = request.client.host if request.client else "unknown"
        if self.include_user:
            principal = self.principal_resolver(request)
            if principal is not None:
                key = f"{key}:user:{principal.id}"
        api_key = request.headers.get("x-api-key")
        if api_key:
            key = f"{key}:apikey:{hash_payload(api_key)}"
        return key

    def _applies_to(self, path: str) -> bool:
        if path in self.skip_paths:
            return False
        return self.path_prefix == "*" or path.startswith(self.path_prefix)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self._applies_to(request.url.path):
            return await call_next(request)

        client_key = self.client_key(request)
        try:
            result = self.limiter.hit(client_key)
        except Exception:  # noqa: BLE001
            logger.exception("Rate limit bookkeeping failed for %s", client_key)
            return await call_next(request)

        if result.limited:
            logger.warning(
                "Rate limit exceeded: %s %s (key=%s, hits=%d)",
                request.method,
                request.url.path,
                client_key,
                result.total_hits,
            )
            return JSONResponse(
                {"error": self.message},
                status_code=429,
                headers={
                    "Retry-After": str(result.retry_after),
                    "X-RateLimit-Limit": str(result.limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        return response
