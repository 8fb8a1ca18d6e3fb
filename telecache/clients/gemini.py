"""Gemini ``generateContent`` client with prompt-hash memoization."""

import json
import logging
import re

import httpx
from pydantic import BaseModel

from telecache.cache.memo import Memoizer
from telecache.clients.resilience import (
    CircuitBreaker,
    TransientAPIError,
    classify_response,
    gemini_breaker,
    resilient_request,
    validate_gemini_schema,
)

logger = logging.getLogger(__name__)

BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
AI_CACHE_PREFIX = "ai"

_JSON_BLOCK = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```|(\{[\s\S]*\})")
_FIRST_OBJECT = re.compile(r"\{[\s\S]*?\}")


class GeminiResponse(BaseModel):
    """Text and metadata of one generated candidate."""

    text: str
    model: str
    finish_reason: str | None = None
    prompt_feedback: dict | None = None


def _parse_candidate(data: dict, model: str) -> GeminiResponse:
    candidate = data["candidates"][0]
    parts = candidate.get("content", {}).get("parts", [])
    return GeminiResponse(
        text="".join(part.get("text", "") for part in parts if isinstance(part, dict)),
        model=model,
        finish_reason=candidate.get("finishReason"),
        prompt_feedback=data.get("promptFeedback"),
    )


def parse_gemini_response(text: str, fmt: str = "json") -> object:
    """Extract structured data from generated text.

    Args:
        text: Raw model output.
        fmt: ``"json"`` (fenced or bare JSON object), ``"list"`` (``-``/``*``
            bullet lines) or anything else for the raw text.

    Returns:
        Parsed JSON, a list of bullet items, or the text. JSON that cannot
        be extracted yields a dict with ``parse_failed=True``.
    """
    if fmt == "list":
        return [
            line.strip()[1:].strip()
            for line in text.splitlines()
            if line.strip().startswith(("-", "*"))
        ]
    if fmt != "json":
        return text

    match = _JSON_BLOCK.search(text)
    if match:
        content = (match.group(1) or match.group(2) or "").strip()
        if content.startswith("{") and content.endswith("}"):
            try:
                return json.loads(content)
            except ValueError:
                logger.debug("Fenced JSON block did not parse")

    fallback = _FIRST_OBJECT.search(text)
    if fallback:
        try:
            return json.loads(fallback.group(0))
        except ValueError:
            logger.debug("Fallback JSON parsing failed")

    try:
        return json.loads(text)
    except ValueError:
        return {
            "text": text[:500],
            "parse_failed": True,
            "message": "Could not extract valid JSON from response",
        }


class GeminiClient:
    """Async client for the Gemini REST API.

    When a memoizer is supplied, identical prompts with identical generation
    options are answered from the cache for ``ttl_seconds``.

    Args:
        api_key: Gemini API key.
        model: Model name, e.g. ``gemini-pro``.
        temperature: Default sampling temperature.
        max_tokens: Default ``maxOutputTokens``.
        memoizer: Optional memoizer for generated responses.
        ttl_seconds: Lifetime of memoized responses.
        breaker: Circuit breaker guarding the endpoint.
        timeout: HTTP timeout in seconds.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-pro",
        temperature: float = 0.7,
        max_tokens: int = 2048,
        memoizer: Memoizer | None = None,
        ttl_seconds: float = 3600,
        breaker: CircuitBreaker = gemini_breaker,
        timeout: float = 30.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.memoizer = memoizer
        self.ttl_seconds = ttl_seconds
        self.breaker = breaker
        self.timeout = timeout

    def generation_config(self, **options: object) -> dict:
        """Merge call options over the client defaults."""
        config: dict = {
            "temperature": self.temperature,
            "topP": 0.8,
            "topK": 40,
            "maxOutputTokens": self.max_tokens,
        }
        config.update(options)
        return config

    async def generate(self, prompt: str, **options: object) -> GeminiResponse:
        """Generate a completion for *prompt*.

        Args:
            prompt: User prompt text.
            **options: ``generationConfig`` overrides (``temperature``, ``topP``...).

        Returns:
            The first candidate.

        Raises:
            ValueError: If *prompt* is blank.
            APIError: On HTTP, schema, or circuit-breaker failures.
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt must not be empty")
        config = self.generation_config(**options)

        if self.memoizer is None:
            return await self._generate(prompt, config)

        descriptor = {"model": self.model, "prompt": prompt, "config": config}
        return await self.memoizer.get_or_compute(
            AI_CACHE_PREFIX,
            descriptor,
            self.ttl_seconds,
            lambda: self._generate(prompt, config),
        )

    async def _generate(self, prompt: str, config: dict) -> GeminiResponse:
        try:
            return await self.breaker.call_async(self._post(prompt, config))
        except Exception:
            logger.warning("Gemini generation failed for prompt: %.100s", prompt)
            raise

    @resilient_request
    async def _post(self, prompt: str, config: dict) -> GeminiResponse:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": config,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{BASE_URL}/models/{self.model}:generateContent",
                    headers={"x-goog-api-key": self.api_key},
                    json=payload,
                )
        except httpx.TransportError as exc:
            raise TransientAPIError(f"Gemini request failed: {exc}") from exc

        classify_response(response)
        data = response.json()
        validate_gemini_schema(data)
        return _parse_candidate(data, self.model)
