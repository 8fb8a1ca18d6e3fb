"""HTTP response caching and write invalidation as Starlette middleware.

``ResponseCacheMiddleware`` serves repeated GETs from a CacheEngine and
captures successful responses on a miss. ``CacheInvalidationMiddleware``
drops cached reads of a resource after a successful write to it.

The cache is an optimization only: any failure inside the cache layer is
logged and the request proceeds as an ordinary miss.
"""

import logging
from collections.abc import Callable, Iterable
from typing import NamedTuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from telecache.cache.engine import CacheEngine
from telecache.cache.keys import DEFAULT_PREFIX, build_request_key, resource_pattern
from telecache.models.cache import CachedResponse

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDED_PREFIXES: tuple[str, ...] = (
    "/api/auth",
    "/api/health",
    "/health",
    "/metrics",
    "/api/notifications/realtime",
)
STREAMING_MEDIA_TYPES: tuple[str, ...] = ("text/event-stream",)
WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
ADMIN_ROLE = "admin"

_NO_CACHE_DIRECTIVES = ("no-cache", "no-store")


class Principal(NamedTuple):
    """The authenticated caller as seen by the cache layer."""

    id: str
    role: str | None = None
    scopes: tuple[str, ...] = ()

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE or ADMIN_ROLE in self.scopes


PrincipalResolver = Callable[[Request], Principal | None]


def _user_attr(user: object, *names: str) -> object:
    """First non-empty attribute of *user* among *names*.

    Starlette's ``BaseUser`` raises ``NotImplementedError`` for properties a
    subclass does not provide, so those count as missing.
    """
    for name in names:
        try:
            value = getattr(user, name, None)
        except NotImplementedError:
            continue
        if value not in (None, ""):
            return value
    return None


def resolve_principal(request: Request) -> Principal | None:
    """Read the caller from ``scope["user"]`` / ``scope["auth"]``.

    Works with Starlette's ``AuthenticationMiddleware`` as well as any user
    object exposing ``id`` and ``role``. Returns None for anonymous callers.
    """
    user = request.scope.get("user")
    if user is None:
        return None
    try:
        if not getattr(user, "is_authenticated", True):
            return None
    except NotImplementedError:
        return None

    identity = _user_attr(user, "id", "identity", "display_name", "username")
    if identity is None:
        return None
    role = _user_attr(user, "role")
    scopes = getattr(request.scope.get("auth"), "scopes", None) or ()
    return Principal(
        id=str(identity),
        role=str(role) if role is not None else None,
        scopes=tuple(scopes),
    )


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def is_streaming(response: Response) -> bool:
    """True for responses that stay open and push events to the client."""
    content_type = response.headers.get("content-type", "").lower()
    return content_type.startswith(STREAMING_MEDIA_TYPES)


def is_cacheable(
    request: Request,
    principal: Principal | None,
    excluded_prefixes: Iterable[str] = DEFAULT_EXCLUDED_PREFIXES,
) -> bool:
    """Decide whether *request* may be served from or stored in the cache.

    Only GETs qualify. Administrators, ``Cache-Control: no-cache``/``no-store``
    requests, and excluded path prefixes are never cached.
    """
    if request.method != "GET":
        return False
    if principal is not None and principal.is_admin:
        return False
    cache_control = request.headers.get("cache-control", "").lower()
    if any(directive in cache_control for directive in _NO_CACHE_DIRECTIVES):
        return False
    path = request.url.path
    return not any(path.startswith(prefix) for prefix in excluded_prefixes)


def invalidate_patterns(cache: CacheEngine, patterns: str | Iterable[str]) -> int:
    """Remove every entry of *cache* matching any of *patterns*.

    Returns:
        Total number of entries removed.
    """
    if isinstance(patterns, str):
        patterns = [patterns]
    patterns = list(patterns)
    removed = sum(cache.delete_matching(p) for p in patterns)
    if removed:
        logger.info("Invalidated %d cached entries in '%s' for %s", removed, cache.name, patterns)
    return removed


async def _read_body(response: Response) -> bytes:
    body_iterator = getattr(response, "body_iterator", None)
    if body_iterator is None:
        return bytes(response.body)
    chunks: list[bytes] = []
    async for chunk in body_iterator:
        chunks.append(chunk if isinstance(chunk, bytes) else chunk.encode("utf-8"))
    return b"".join(chunks)


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """Serve cacheable GETs from *cache* and capture 2xx responses on a miss.

    Hits are answered with the stored status and body plus ``X-Cache: HIT``;
    the wrapped app is not called. Misses run the app and, for 2xx responses,
    store ``{status, body}`` for ``ttl_seconds`` and add ``X-Cache: MISS``.
    Event streams are passed through as they are produced and never stored.

    Args:
        app: The wrapped ASGI app.
        cache: Engine holding captured responses. Not owned.
        ttl_seconds: Lifetime of a captured response.
        excluded_prefixes: Path prefixes that are never cached.
        principal_resolver: Extracts the caller from the request.
        key_prefix: Namespace of response keys.
    """

    def __init__(
        self,
        app: ASGIApp,
        cache: CacheEngine,
        ttl_seconds: float = 60,
        excluded_prefixes: Iterable[str] = DEFAULT_EXCLUDED_PREFIXES,
        principal_resolver: PrincipalResolver = resolve_principal,
        key_prefix: str = DEFAULT_PREFIX,
    ) -> None:
        super().__init__(app)
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.excluded_prefixes = tuple(excluded_prefixes)
        self.principal_resolver = principal_resolver
        self.key_prefix = key_prefix

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        principal = self.principal_resolver(request)
        if not is_cacheable(request, principal, self.excluded_prefixes):
            return await call_next(request)

        key = build_request_key(
            request.method,
            request.url.path,
            principal.id if principal else None,
            request.query_params,
            prefix=self.key_prefix,
        )

        cached = self._lookup(key)
        if cached is not None:
            logger.debug("Response cache hit: %s", key)
            return Response(
                content=cached.body,
                status_code=cached.status_code,
                media_type=cached.media_type,
                headers={"X-Cache": "HIT", "X-Cache-Source": "memory"},
            )

        response = await call_next(request)
        if not is_success(response.status_code) or is_streaming(response):
            return response

        body = await _read_body(response)
        self._store(
            key,
            CachedResponse(
                status_code=response.status_code,
                body=body,
                media_type=response.headers.get("content-type"),
            ),
        )

        captured = Response(content=body, status_code=response.status_code)
        captured.raw_headers = list(response.raw_headers)
        captured.headers["content-length"] = str(len(body))
        captured.headers["X-Cache"] = "MISS"
        return captured

    def _lookup(self, key: str) -> CachedResponse | None:
        try:
            cached = self.cache.get(key)
        except Exception:  # noqa: BLE001
            logger.exception("Response cache lookup failed for %s", key)
            return None
        return cached if isinstance(cached, CachedResponse) else None

    def _store(self, key: str, cached: CachedResponse) -> None:
        try:
            self.cache.set(key, cached, self.ttl_seconds)
        except Exception:  # noqa: BLE001
            logger.exception("Response cache store failed for %s", key)


class CacheInvalidationMiddleware(BaseHTTPMiddleware):
    """After a successful write, drop cached reads of the affected resource.

    Removes keys matching the static *patterns* plus the pattern derived from
    the request path (``/api/customers/42`` -> ``cache:GET:/api/customers*``).

    Args:
        app: The wrapped ASGI app.
        cache: Engine holding captured responses. Not owned.
        patterns: Extra wildcard patterns invalidated on every write.
        key_prefix: Namespace of response keys.
    """

    def __init__(
        self,
        app: ASGIApp,
        cache: CacheEngine,
        patterns: Iterable[str] = (),
        key_prefix: str = DEFAULT_PREFIX,
    ) -> None:
        super().__init__(app)
        self.cache = cache
        self.patterns = tuple(patterns)
        self.key_prefix = key_prefix

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        if request.method in WRITE_METHODS and is_success(response.status_code):
            patterns = list(self.patterns)
            derived = resource_pattern(request.url.path, prefix=self.key_prefix)
            if derived is not None:
                patterns.append(derived)
            try:
                invalidate_patterns(self.cache, patterns)
            except Exception:  # noqa: BLE001
                logger.exception("Cache invalidation failed for %s %s", request.method, request.url.path)
        return response
