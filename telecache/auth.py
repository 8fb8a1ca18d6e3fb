"""Bearer token authentication for remote operator access.

Provides a pre-shared-token verifier using FastMCP's ``TokenVerifier`` base
class. Passing it as ``auth=`` to ``FastMCP`` protects the MCP endpoint and
the custom HTTP routes share the same bind address.
"""

import hmac

from fastmcp.server.auth import AccessToken, TokenVerifier

_MIN_TOKEN_LENGTH = 32
OPERATOR_CLIENT_ID = "operator"
OPERATOR_SCOPES = ["cache:read", "cache:admin"]


class BearerTokenVerifier(TokenVerifier):
    """Verify incoming bearer tokens against a pre-shared secret.

    Args:
        token: The expected bearer token (must be >= 32 characters).

    Raises:
        ValueError: If *token* is empty or shorter than 32 characters.
    """

    def __init__(self, token: str) -> None:
        if not token or len(token) < _MIN_TOKEN_LENGTH:
            raise ValueError(
                f"MCP auth token must be at least {_MIN_TOKEN_LENGTH} characters, "
                f"got {len(token) if token else 0}"
            )
        super().__init__()
        self._token = token

    async def verify_token(self, token: str) -> AccessToken | None:
        """Return an operator ``AccessToken`` when *token* matches, ``None`` otherwise.

        Uses ``hmac.compare_digest`` for constant-time comparison.
        """
        if hmac.compare_digest(token, self._token):
            return AccessToken(token=token, client_id=OPERATOR_CLIENT_ID, scopes=list(OPERATOR_SCOPES))
        return None
