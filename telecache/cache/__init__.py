from telecache.cache.engine import CacheEngine, CacheEntry
from telecache.cache.errors import CacheError, InvalidArgumentError
from telecache.cache.keys import (
    build_key,
    build_payload_key,
    build_request_key,
    canonicalize,
    hash_payload,
    resource_pattern,
)
from telecache.cache.memo import Memoizer
from telecache.cache.middleware import (
    CacheInvalidationMiddleware,
    ResponseCacheMiddleware,
    invalidate_patterns,
)
from telecache.cache.rate_limit import RateLimiter, RateLimitMiddleware
from telecache.cache.registry import CacheRegistry

__all__ = [
    "CacheEngine",
    "CacheEntry",
    "CacheError",
    "CacheInvalidationMiddleware",
    "CacheRegistry",
    "InvalidArgumentError",
    "Memoizer",
    "RateLimitMiddleware",
    "RateLimiter",
    "ResponseCacheMiddleware",
    "build_key",
    "build_payload_key",
    "build_request_key",
    "canonicalize",
    "hash_payload",
    "invalidate_patterns",
    "resource_pattern",
]
