"""Get-or-compute memoization on top of a CacheEngine."""

import asyncio
import functools
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from telecache.cache.engine import CacheEngine, validate_seconds
from telecache.cache.keys import build_payload_key

logger = logging.getLogger(__name__)

_MISSING = object()

Compute = Callable[[], Any | Awaitable[Any]]


class Memoizer:
    """Reuse results of slow computations (DB aggregations, AI calls) within a TTL.

    Failures are never stored: an exception from the computation propagates
    to the caller and the next call computes again.

    Args:
        cache: The engine holding memoized results. Not owned.
        single_flight: When True, concurrent misses on the same key share a
            single in-flight computation instead of each running their own.
            Cancelling one waiting caller leaves the shared computation running.
    """

    def __init__(self, cache: CacheEngine, single_flight: bool = False) -> None:
        self.cache = cache
        self.single_flight = single_flight
        self._inflight: dict[str, asyncio.Task] = {}

    async def get_or_compute(
        self,
        prefix: str,
        descriptor: object,
        ttl_seconds: float | None,
        compute: Compute,
    ) -> Any:
        """Return the cached result for *descriptor*, computing it on a miss.

        Args:
            prefix: Key namespace, e.g. ``"recommendations"``.
            descriptor: Anything describing the logical input; hashed into the key.
            ttl_seconds: Lifetime of a stored result (None = cache default).
            compute: Zero-argument callable, sync or async.

        Returns:
            The cached or freshly computed result.
        """
        if ttl_seconds is not None:
            validate_seconds(ttl_seconds, "ttl_seconds")
        key = build_payload_key(prefix, descriptor)

        cached = self.cache.get(key, _MISSING)
        if cached is not _MISSING:
            return cached

        if not self.single_flight:
            return await self._compute_and_store(key, ttl_seconds, compute)

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._compute_and_store(key, ttl_seconds, compute))
            self._inflight[key] = task
            task.add_done_callback(functools.partial(self._finish_flight, key))
        else:
            logger.debug("Joining in-flight computation for %s", key)
        # Cancelling one caller must not cancel the computation the others share.
        return await asyncio.shield(task)

    def _finish_flight(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Retrieve so a failure nobody awaited is not reported at GC.
            task.exception()

    async def _compute_and_store(
        self, key: str, ttl_seconds: float | None, compute: Compute
    ) -> Any:
        result = compute()
        if inspect.isawaitable(result):
            result = await result
        self.cache.set(key, result, ttl_seconds)
        return result

    def invalidate(self, prefix: str, descriptor: object) -> bool:
        """Drop the memoized result for *descriptor*. Returns True if one existed."""
        return self.cache.delete(build_payload_key(prefix, descriptor))

    def memoize(
        self,
        prefix: str,
        ttl_seconds: float | None = None,
        key_func: Callable[..., object] | None = None,
    ) -> Callable:
        """Decorator memoizing an async function by its call arguments.

        Args:
            prefix: Key namespace.
            ttl_seconds: Lifetime of stored results.
            key_func: Builds the descriptor from the call arguments. Defaults
                to all positional and keyword arguments, so pass one for
                methods whose ``self`` should not be part of the key.
        """

        def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
            @functools.wraps(func)
            async def wrapper(*args: Any, **kwargs: Any) -> Any:
                if key_func is not None:
                    descriptor = key_func(*args, **kwargs)
                else:
                    descriptor = {"args": list(args), "kwargs": kwargs}
                return await self.get_or_compute(
                    prefix, descriptor, ttl_seconds, lambda: func(*args, **kwargs)
                )

            return wrapper

        return decorator
