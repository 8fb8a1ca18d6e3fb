from pydantic import BaseModel, ConfigDict


class CacheStats(BaseModel):
    """Counters for one cache instance plus derived size and hit rate."""

    model_config = ConfigDict(frozen=True)

    name: str = "default"
    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0
    hit_rate: float = 0.0


class CachedResponse(BaseModel):
    """An HTTP response captured by the response-cache middleware."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    body: bytes
    media_type: str | None = None


class RateLimitResult(BaseModel):
    total_hits: int
    limit: int
    remaining: int
    reset_at: float  # clock value at which the current window ends
    limited: bool
    retry_after: int = 0
