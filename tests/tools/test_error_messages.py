"""Tests for telecache.tools.error_messages: get_user_message + safe_tool_wrapper."""

from telecache.cache.errors import InvalidArgumentError
from telecache.clients.resilience import (
    AuthError,
    CircuitOpenError,
    PermanentAPIError,
    SchemaChangeError,
    TransientAPIError,
)
from telecache.tools.error_messages import get_user_message, safe_tool_wrapper


class TestGetUserMessage:
    def test_invalid_argument(self):
        msg = get_user_message(InvalidArgumentError("ttl_seconds must be a non-negative number"))
        assert msg.startswith("Invalid cache request")
        assert "ttl_seconds" in msg

    def test_unknown_cache(self):
        msg = get_user_message(KeyError("Unknown cache 'x'. Known caches: responses"))
        assert msg == "Unknown cache 'x'. Known caches: responses"

    def test_auth_error(self):
        msg = get_user_message(AuthError("401"))
        assert "GEMINI_API_KEY" in msg

    def test_schema_change_error(self):
        msg = get_user_message(SchemaChangeError("missing candidates"))
        assert "unexpected format" in msg

    def test_circuit_open_error(self):
        msg = get_user_message(CircuitOpenError("gemini"))
        assert "temporarily unavailable" in msg

    def test_circuit_open_with_context(self):
        msg = get_user_message(CircuitOpenError("gemini"), context={"service": "Plan advisor"})
        assert msg.startswith("Plan advisor")

    def test_transient_error(self):
        msg = get_user_message(TransientAPIError("503"))
        assert "temporary" in msg.lower()

    def test_permanent_error(self):
        msg = get_user_message(PermanentAPIError("Client error (HTTP 404)"))
        assert "HTTP 404" in msg

    def test_value_error(self):
        assert get_user_message(ValueError("period_days must be at least 1")).startswith(
            "Invalid input"
        )

    def test_unknown_error(self):
        msg = get_user_message(RuntimeError("unexpected"))
        assert "something went wrong" in msg.lower()

    def test_no_context_uses_default(self):
        msg = get_user_message(CircuitOpenError("test"))
        assert "the AI service" in msg


class TestSafeToolWrapper:
    async def test_success_passes_through(self):
        async def ok(value: str) -> str:
            return value

        assert await safe_tool_wrapper(ok, "fine") == "fine"

    async def test_error_becomes_message(self):
        async def fail() -> str:
            raise TransientAPIError("503")

        msg = await safe_tool_wrapper(fail, context={"service": "Gemini"})
        assert "Gemini" in msg

    async def test_kwargs_forwarded(self):
        async def echo(*, name: str) -> str:
            return name

        assert await safe_tool_wrapper(echo, name="responses") == "responses"
