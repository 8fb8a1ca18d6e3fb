import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastmcp import FastMCP
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from telecache.cache.memo import Memoizer
from telecache.cache.middleware import (
    DEFAULT_EXCLUDED_PREFIXES,
    CacheInvalidationMiddleware,
    ResponseCacheMiddleware,
)
from telecache.cache.rate_limit import RateLimiter, RateLimitMiddleware
from telecache.cache.registry import RATE_LIMITS, RECOMMENDATIONS, RESPONSES, CacheRegistry
from telecache.config import Settings

logger = logging.getLogger(__name__)

SERVER_NAME = "telecache"
# FastMCP streamable-http endpoint; its GET side is a server-sent event stream.
MCP_PATH = "/mcp"


def create_lifespan(
    caches: CacheRegistry,
) -> Callable[[FastMCP], AbstractAsyncContextManager[dict]]:
    """Build the server lifespan that runs the cache sweepers."""

    @asynccontextmanager
    async def app_lifespan(server: FastMCP) -> AsyncIterator[dict]:
        caches.start()
        try:
            yield {"caches": caches}
        finally:
            await caches.stop()

    return app_lifespan


async def health_check(request: Request | None) -> JSONResponse:
    """Liveness probe. Never cached or rate limited."""
    return JSONResponse({"status": "ok"})


def cache_metrics_endpoint(caches: CacheRegistry) -> Callable:
    """Build the ``/metrics/cache`` handler reporting statistics of every cache."""

    async def cache_metrics(request: Request | None) -> JSONResponse:
        return JSONResponse(
            {name: stats.model_dump() for name, stats in caches.stats().items()}
        )

    return cache_metrics


def http_middleware(caches: CacheRegistry, settings: Settings) -> list[Middleware]:
    """ASGI middleware for the HTTP transport, outermost first."""
    limiter = RateLimiter(
        caches.get(RATE_LIMITS),
        limit=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    responses = caches.get(RESPONSES)
    return [
        Middleware(RateLimitMiddleware, limiter=limiter),
        Middleware(CacheInvalidationMiddleware, cache=responses),
        Middleware(
            ResponseCacheMiddleware,
            cache=responses,
            ttl_seconds=settings.response_cache_ttl_seconds,
            excluded_prefixes=(*DEFAULT_EXCLUDED_PREFIXES, MCP_PATH),
        ),
    ]


def setup_logging(log_level: str, data_dir: Path) -> None:
    """Configure logging with file rotation and console output.

    Args:
        log_level: Logging level string (DEBUG, INFO, WARNING, ERROR).
        data_dir: Base data directory: logs go to data_dir/logs/server.log.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Console handler: exact type check avoids matching subclasses (FileHandler, etc.)
    if not any(type(h) is logging.StreamHandler for h in root_logger.handlers):
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(formatter)
        root_logger.addHandler(console)

    log_dir = data_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    if not any(isinstance(h, RotatingFileHandler) for h in root_logger.handlers):
        file_handler = RotatingFileHandler(
            log_dir / "server.log",
            maxBytes=5 * 1024 * 1024,  # 5 MB
            backupCount=3,
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def initialize(settings: Settings | None = None) -> tuple[FastMCP, CacheRegistry]:
    """Set up logging, build the caches and services, and register tools.

    Returns:
        The MCP server and the cache registry it was wired with.
    """
    from telecache.config import get_settings

    settings = settings or get_settings()

    settings.data_dir.mkdir(parents=True, exist_ok=True)
    setup_logging(settings.log_level, settings.data_dir)

    caches = CacheRegistry.from_settings(settings)
    memoizer = Memoizer(caches.get(RECOMMENDATIONS), single_flight=settings.memo_single_flight)

    gemini = None
    if settings.ai_enabled:
        from telecache.clients.gemini import GeminiClient

        gemini = GeminiClient(
            settings.gemini_api_key,  # type: ignore[arg-type]
            model=settings.gemini_model,
            temperature=settings.gemini_temperature,
            max_tokens=settings.gemini_max_tokens,
            memoizer=memoizer,
            ttl_seconds=settings.recommendation_cache_ttl_seconds,
        )
    else:
        logger.warning("GEMINI_API_KEY is not set; recommendations are rule-based only")

    auth = None
    if settings.mcp_auth_token:
        from telecache.auth import BearerTokenVerifier

        auth = BearerTokenVerifier(settings.mcp_auth_token)

    mcp = FastMCP(SERVER_NAME, lifespan=create_lifespan(caches), auth=auth)
    mcp.custom_route("/health", methods=["GET"])(health_check)
    mcp.custom_route("/metrics/cache", methods=["GET"])(cache_metrics_endpoint(caches))

    from telecache.services.recommendations import RecommendationService
    from telecache.tools.cache_admin import register_cache_tools
    from telecache.tools.recommendations import register_recommendation_tools

    service = RecommendationService(
        memoizer,
        gemini,
        usage_ttl_seconds=settings.usage_pattern_cache_ttl_seconds,
        recommendation_ttl_seconds=settings.recommendation_cache_ttl_seconds,
        optimization_ttl_seconds=settings.cost_optimization_cache_ttl_seconds,
    )
    register_cache_tools(mcp, caches)
    register_recommendation_tools(mcp, service)

    logger.info("telecache server initialized with caches: %s", ", ".join(caches.names()))
    return mcp, caches
