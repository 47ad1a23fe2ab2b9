"""
Bearer token validation for MCP callers.

When the server runs over streamable-http with SPICEDB_AUTH_ENABLED=true,
every tools/list and tools/call request must carry a JWT issued with the
server's secret. The token says who the caller is ("sub") and which tool
scopes it holds ("scope"):

    {
        "sub": "support-agent",
        "scope": ["spicedb:read"],
        "exp": 1738800000
    }

Tokens holding only "spicedb:read" can inspect the schema, relationships and
permissions; "spicedb:write" is needed to change the schema or relationships.
Scope enforcement itself lives in the middleware (server.py); this module
only authenticates and extracts claims.

This is separate from the SpiceDB API key, which authenticates *this server*
to the backend.
"""

from dataclasses import dataclass

import jwt

from spicedb_mcp.config import settings
from spicedb_mcp.tools import TOOL_SCOPE_MAP

# Scopes that grant access to at least one tool.
KNOWN_SCOPES = frozenset(TOOL_SCOPE_MAP.values())


class AuthError(Exception):
    """
    Raised when a caller's token is missing or invalid.

    Attributes:
        message: Human-readable error description (logged server-side)
        status_code: HTTP status code to return (401 for auth failures)
    """

    def __init__(self, message: str, status_code: int = 401):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class TokenInfo:
    """
    Claims of a validated caller token.

    Attributes:
        subject: The "sub" claim (e.g. "support-agent")
        scopes: Granted tool scopes (e.g. ["spicedb:read"])
    """

    subject: str
    scopes: list[str]


def validate_token(authorization_header: str | None) -> TokenInfo:
    """
    Validate a Bearer token from the Authorization header.

    Args:
        authorization_header: The raw header value, "Bearer <jwt>"

    Returns:
        TokenInfo with the validated subject and scopes

    Raises:
        AuthError: If the header is absent or malformed, the signature or
            expiry check fails, or the scope claim is not a list of strings
    """
    if not authorization_header:
        raise AuthError("Missing Authorization header")

    # RFC 6750: the scheme is case-insensitive.
    parts = authorization_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthError("Invalid Authorization header format, expected 'Bearer <token>'")

    try:
        payload = jwt.decode(
            parts[1],
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise AuthError(f"Invalid token: {e}")

    scopes_claim = payload.get("scope", [])
    if not isinstance(scopes_claim, list):
        raise AuthError("Invalid scope claim: must be a list")
    if not all(isinstance(s, str) for s in scopes_claim):
        raise AuthError("Invalid scope claim: all entries must be strings")

    # Scopes that belong to other services are dropped.
    scopes = [s for s in scopes_claim if s in KNOWN_SCOPES]
    return TokenInfo(subject=payload.get("sub", ""), scopes=scopes)
