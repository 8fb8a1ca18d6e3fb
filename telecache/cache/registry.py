"""The set of named cache engines shared by one process."""

import logging
from collections.abc import Iterator

from telecache.cache.engine import CacheEngine
from telecache.config import Settings
from telecache.models.cache import CacheStats

logger = logging.getLogger(__name__)

RESPONSES = "responses"
RECOMMENDATIONS = "recommendations"
REFERENCE = "reference"
RATE_LIMITS = "rate_limits"


class CacheRegistry:
    """Named, independent CacheEngine instances built once at startup.

    Consumers receive the registry (or a single engine from it) explicitly
    instead of importing a module-level cache.
    """

    def __init__(self, engines: dict[str, CacheEngine] | None = None) -> None:
        self._engines: dict[str, CacheEngine] = dict(engines or {})

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheRegistry":
        """Build the standard engines with per-call-site TTL defaults."""
        size = settings.cache_max_size
        interval = settings.cache_sweep_interval_seconds
        return cls(
            {
                RESPONSES: CacheEngine(
                    size, settings.response_cache_ttl_seconds, interval, name=RESPONSES
                ),
                RECOMMENDATIONS: CacheEngine(
                    size, settings.recommendation_cache_ttl_seconds, interval, name=RECOMMENDATIONS
                ),
                REFERENCE: CacheEngine(
                    size, settings.reference_cache_ttl_seconds, interval, name=REFERENCE
                ),
                RATE_LIMITS: CacheEngine(size, 0, interval, name=RATE_LIMITS),
            }
        )

    def add(self, engine: CacheEngine) -> CacheEngine:
        """Register *engine* under its name. Raises ValueError on a duplicate."""
        if engine.name in self._engines:
            raise ValueError(f"Cache '{engine.name}' is already registered")
        self._engines[engine.name] = engine
        return engine

    def get(self, name: str) -> CacheEngine:
        """Return the engine called *name*. Raises KeyError if unknown."""
        try:
            return self._engines[name]
        except KeyError:
            raise KeyError(f"Unknown cache '{name}'. Known caches: {', '.join(self.names())}") from None

    def names(self) -> list[str]:
        return sorted(self._engines)

    def __iter__(self) -> Iterator[CacheEngine]:
        return iter(self._engines.values())

    def __contains__(self, name: object) -> bool:
        return name in self._engines

    def stats(self) -> dict[str, CacheStats]:
        return {name: self._engines[name].get_stats() for name in self.names()}

    def clear_all(self) -> None:
        for engine in self._engines.values():
            engine.clear()

    def start(self) -> None:
        """Start the background sweeper of every engine (needs a running loop)."""
        for engine in self._engines.values():
            engine.start_sweeper()
        logger.info("Cache sweepers started for %s", ", ".join(self.names()))

    async def stop(self) -> None:
        for engine in self._engines.values():
            await engine.stop_sweeper()
        logger.info("Cache sweepers stopped")
