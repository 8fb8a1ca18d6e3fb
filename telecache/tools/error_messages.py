"""User-friendly error messages and safe tool wrapper."""

import logging

from telecache.cache.errors import InvalidArgumentError
from telecache.clients.resilience import (
    AuthError,
    CircuitOpenError,
    PermanentAPIError,
    SchemaChangeError,
    TransientAPIError,
)

logger = logging.getLogger(__name__)


def get_user_message(error: Exception, context: dict | None = None) -> str:
    """Map an exception to a user-friendly message.

    Args:
        error: The exception to translate.
        context: Optional dict with extra info (e.g. {"service": "AI recommendations"}).

    Returns:
        A human-readable error message.
    """
    service = (context or {}).get("service", "the AI service")

    if isinstance(error, InvalidArgumentError):
        return f"Invalid cache request: {error}"
    if isinstance(error, KeyError):
        return str(error.args[0]) if error.args else "Unknown cache."
    if isinstance(error, AuthError):
        return (
            f"The API key for {service} was rejected. "
            "Check GEMINI_API_KEY and restart the server."
        )
    if isinstance(error, SchemaChangeError):
        return (
            f"{service} returned a response in an unexpected format. "
            "Please try again later."
        )
    if isinstance(error, CircuitOpenError):
        return (
            f"{service} is temporarily unavailable. "
            "Please try again in a few minutes."
        )
    if isinstance(error, TransientAPIError):
        return f"There was a temporary issue reaching {service}. Please try again shortly."
    if isinstance(error, PermanentAPIError):
        return f"Could not complete the request to {service}. {error}"
    if isinstance(error, ValueError):
        return f"Invalid input: {error}"
    return "Something went wrong. Please try again or contact support."


async def safe_tool_wrapper(
    func,  # type: ignore[no-untyped-def]
    *args: object,
    context: dict | None = None,
    **kwargs: object,
) -> str:
    """Call an async function, catching errors and returning friendly messages.

    Args:
        func: Async callable to invoke.
        *args: Positional arguments for *func*.
        context: Optional context dict for error messages.
        **kwargs: Keyword arguments for *func*.

    Returns:
        The function's return value on success, or a user-friendly error string.
    """
    try:
        return await func(*args, **kwargs)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Tool error in %s", func.__name__)
        return get_user_message(exc, context)
