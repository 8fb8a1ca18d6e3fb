"""MCP tools for inspecting and flushing the process caches."""

import logging

from fastmcp import FastMCP

from telecache.cache.middleware import invalidate_patterns
from telecache.cache.registry import CacheRegistry
from telecache.models.cache import CacheStats
from telecache.tools.error_messages import safe_tool_wrapper

logger = logging.getLogger(__name__)


def format_stats(stats: CacheStats) -> str:
    return (
        f"  {stats.name}: {stats.size}/{stats.max_size} entries, "
        f"{stats.hits} hits, {stats.misses} misses, {stats.sets} sets, "
        f"{stats.evictions} evictions, {stats.hit_rate * 100:.0f}% hit rate"
    )


def register_cache_tools(mcp: FastMCP, caches: CacheRegistry) -> None:
    """Register cache administration tools on the MCP server."""

    @mcp.tool
    async def cache_stats(name: str = "") -> str:
        """Show hit, miss, set and eviction counts for the caches.

        Args:
            name: Cache to inspect (responses, recommendations, reference,
                rate_limits). Empty for all caches.

        Returns:
            One line of statistics per cache.
        """

        async def _stats() -> str:
            names = [caches.get(name).name] if name else caches.names()
            lines = ["Cache statistics:"]
            lines.extend(format_stats(caches.get(n).get_stats()) for n in names)
            return "\n".join(lines)

        return await safe_tool_wrapper(_stats)

    @mcp.tool
    async def clear_cache(name: str = "") -> str:
        """Flush a cache and reset its statistics.

        Args:
            name: Cache to flush. Empty flushes every cache.

        Returns:
            Confirmation message.
        """

        async def _clear() -> str:
            if name:
                caches.get(name).clear()
                return f"Cleared cache '{name}' (statistics reset)."
            caches.clear_all()
            return f"Cleared all caches: {', '.join(caches.names())} (statistics reset)."

        return await safe_tool_wrapper(_clear)

    @mcp.tool
    async def invalidate_cache(name: str, pattern: str) -> str:
        """Remove the entries of one cache whose keys match a wildcard pattern.

        Args:
            name: Cache to invalidate in.
            pattern: Key pattern, e.g. ``cache:GET:/api/customers*``.

        Returns:
            Number of entries removed.
        """

        async def _invalidate() -> str:
            removed = invalidate_patterns(caches.get(name), pattern)
            return f"Removed {removed} entries from '{name}' matching {pattern}."

        return await safe_tool_wrapper(_invalidate)
