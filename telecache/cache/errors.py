"""Cache error hierarchy."""


class CacheError(Exception):
    """Base class for all cache errors."""


class InvalidArgumentError(CacheError, ValueError):
    """Malformed key, negative TTL, or bad cache configuration."""
