from telecache.config import get_settings
from telecache.server import http_middleware, initialize

if __name__ == "__main__":  # pragma: no cover
    settings = get_settings()
    app, caches = initialize(settings)

    if settings.mcp_transport == "streamable-http":
        app.run(
            transport="streamable-http",
            host=settings.mcp_host,
            port=settings.mcp_port,
            middleware=http_middleware(caches, settings),
        )
    else:
        app.run()
