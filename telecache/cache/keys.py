"""Deterministic cache-key construction.

Keys come in two shapes:

- **Request keys** for HTTP responses:
  ``cache:GET:/api/customers?page=2:42`` (prefix, method, path with sorted
  query, principal). Non-GET methods get an extra body-hash segment.
- **Payload keys** for memoized computations: ``recommendations:<md5>`` where
  the hash covers a canonical JSON rendering of the input descriptor, so
  field order and incidental whitespace never change the key.

Nothing here is salted or time-dependent; the same inputs produce the same
key in every process.
"""

import hashlib
import json
import re
from collections.abc import Iterable, Mapping
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from fnmatch import fnmatchcase
from pathlib import PurePath
from urllib.parse import parse_qsl, urlencode
from uuid import UUID

from pydantic import BaseModel

from telecache.cache.errors import InvalidArgumentError

DEFAULT_PREFIX = "cache"
ANONYMOUS = "anonymous"

_GLOB_CHARS = re.compile(r"([*?\[])")


# ── Canonicalization ─────────────────────────────────────────────────────────


def _stable_text(value: object) -> str:
    """JSON fallback for values whose text form is the same in every process."""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (Decimal, UUID, PurePath)):
        return str(value)
    raise InvalidArgumentError(
        f"Cannot build a stable cache key from {type(value).__name__}; "
        "pass JSON-compatible values or a pydantic model"
    )


def _normalize(value: object) -> object:
    """Reduce *value* to JSON-friendly primitives with normalized strings."""
    if isinstance(value, BaseModel):
        return _normalize(value.model_dump(mode="json"))
    if isinstance(value, Mapping):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        items = [_normalize(v) for v in value]
        return sorted(items, key=lambda v: json.dumps(v, sort_keys=True, default=_stable_text))
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, str):
        return " ".join(value.split())
    return value


def canonicalize(payload: object) -> str:
    """Render *payload* as compact JSON with sorted keys and collapsed whitespace.

    Raises:
        InvalidArgumentError: For values without a process-independent
            rendering, such as objects relying on the default ``repr``.
    """
    return json.dumps(
        _normalize(payload),
        sort_keys=True,
        separators=(",", ":"),
        default=_stable_text,
        ensure_ascii=False,
    )


def hash_payload(payload: object) -> str:
    """Return the 128-bit MD5 hex digest of the canonical form of *payload*.

    Raw ``bytes`` are hashed as-is.
    """
    if isinstance(payload, (bytes, bytearray)):
        data = bytes(payload)
    else:
        data = canonicalize(payload).encode("utf-8")
    return hashlib.md5(data, usedforsecurity=False).hexdigest()


# ── Key builders ─────────────────────────────────────────────────────────────


def _check_prefix(prefix: object) -> None:
    if not isinstance(prefix, str) or not prefix:
        raise InvalidArgumentError(f"Key prefix must be a non-empty string, got {prefix!r}")


def _escape_segment(text: str) -> str:
    return text.replace("%", "%25").replace(":", "%3A")


def build_key(prefix: str, *parts: object) -> str:
    """Join *prefix* and *parts* with ``:``.

    Scalars are rendered as text with ``%`` and ``:`` percent-escaped, so
    distinct parts never run together. ``None`` becomes ``none``; anything
    structured (mappings, lists, models) is replaced by its payload hash.
    """
    _check_prefix(prefix)
    segments = [prefix]
    for part in parts:
        if part is None:
            segments.append("none")
        elif isinstance(part, (str, int, float)):
            segments.append(_escape_segment(str(part)))
        else:
            segments.append(hash_payload(part))
    return ":".join(segments)


def build_payload_key(prefix: str, payload: object) -> str:
    """Key for a memoized computation: ``"<prefix>:<md5 of payload>"``."""
    _check_prefix(prefix)
    return f"{prefix}:{hash_payload(payload)}"


def encode_query(query: object) -> str:
    """Encode query parameters in sorted order.

    Accepts a raw query string, a mapping (list values expand to repeated
    parameters), a Starlette ``QueryParams``, or an iterable of pairs.
    """
    if not query:
        return ""
    if isinstance(query, str):
        pairs = parse_qsl(query.lstrip("?"), keep_blank_values=True)
    elif hasattr(query, "multi_items"):
        pairs = list(query.multi_items())  # type: ignore[union-attr]
    elif isinstance(query, Mapping):
        pairs = []
        for name, value in query.items():
            if isinstance(value, (list, tuple)):
                pairs.extend((name, v) for v in value)
            else:
                pairs.append((name, value))
    elif isinstance(query, Iterable):
        pairs = list(query)  # type: ignore[arg-type]
    else:
        raise InvalidArgumentError(f"Unsupported query type: {type(query).__name__}")
    return urlencode(sorted((str(k), str(v)) for k, v in pairs))


def _body_component(body: object) -> str:
    if isinstance(body, (bytes, bytearray)):
        try:
            body = json.loads(body)
        except ValueError:
            return hash_payload(body)
    return hash_payload(body)


def build_request_key(
    method: str,
    path: str,
    principal_id: object = None,
    query: object = None,
    body: object = None,
    prefix: str = DEFAULT_PREFIX,
) -> str:
    """Key for an HTTP request.

    Args:
        method: HTTP method (case-insensitive).
        path: Request path without query string.
        principal_id: Authenticated principal, or None for anonymous callers.
        query: Query parameters in any form accepted by ``encode_query``.
        body: Request body; only contributes for non-GET methods.
        prefix: Key namespace.

    Returns:
        ``"<prefix>:<METHOD>:<path>[?<query>]:<principal>[:<body hash>]"``.
    """
    _check_prefix(prefix)
    method = method.upper()
    target = path
    query_string = encode_query(query)
    if query_string:
        target = f"{path}?{query_string}"
    principal = ANONYMOUS if principal_id is None else str(principal_id)

    key = f"{prefix}:{method}:{target}:{principal}"
    if method != "GET":
        key = f"{key}:{_body_component(body)}"
    return key


# ── Patterns ─────────────────────────────────────────────────────────────────


def escape_pattern(text: str) -> str:
    """Escape wildcard characters so *text* matches literally."""
    return _GLOB_CHARS.sub(r"[\1]", text)


def resource_pattern(
    path: str, method: str = "GET", prefix: str = DEFAULT_PREFIX
) -> str | None:
    """Pattern covering every cached variant of the resource behind *path*.

    The resource is the first two path segments, so a write to
    ``/api/customers/42`` yields ``cache:GET:/api/customers*``.

    Returns:
        The pattern, or None for paths with fewer than two segments.
    """
    segments = path.split("/")
    if len(segments) < 3 or not segments[2]:
        return None
    resource = "/".join(segments[:3])
    return f"{prefix}:{method.upper()}:{escape_pattern(resource)}*"


def matches(key: str, pattern: str) -> bool:
    """Case-sensitive wildcard match (``*`` and ``?``)."""
    return fnmatchcase(key, pattern)
