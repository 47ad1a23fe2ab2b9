"""
CLI utility to mint caller tokens for the SpiceDB MCP server.

Only needed when the server runs with SPICEDB_AUTH_ENABLED=true over the
streamable-http transport. In production the tokens would come from your
identity provider; this script signs them with the shared secret instead.

Usage examples:

    # Read-only agent: schema, relationships, checks and lookups
    python -m scripts.generate_token --sub support-agent --scope spicedb:read

    # Agent that may also change the schema and relationships
    python -m scripts.generate_token --sub admin-agent --scope spicedb:read spicedb:write

    # Custom secret (must match SPICEDB_JWT_SECRET_KEY on the server)
    python -m scripts.generate_token --sub ci --scope spicedb:read --secret my-secret

Register the server with an MCP client using the token:

    claude mcp add --transport http spicedb http://localhost:8080/mcp \\
      --header "Authorization: Bearer <token>"
"""

import argparse
import datetime

import jwt

SCOPES = ("spicedb:read", "spicedb:write")


def generate_token(
    subject: str,
    scopes: list[str],
    secret: str,
    algorithm: str = "HS256",
    exp_hours: float = 8.0,
) -> str:
    """
    Generate a signed JWT with the given subject and scopes.

    Args:
        subject: The "sub" claim
        scopes: Tool scopes to grant (see SCOPES)
        secret: Signing key, must match the server's SPICEDB_JWT_SECRET_KEY
        algorithm: JWT signing algorithm
        exp_hours: Hours until expiration (negative = already expired)
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    payload = {
        "sub": subject,
        "scope": scopes,
        "iat": now,
        "exp": now + datetime.timedelta(hours=exp_hours),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Generate caller tokens for the SpiceDB MCP server.",
    )
    parser.add_argument("--sub", required=True, help="Subject claim, e.g. 'support-agent'")
    parser.add_argument(
        "--scope",
        nargs="+",
        default=["spicedb:read"],
        choices=SCOPES,
        help="Scopes to grant (default: spicedb:read)",
    )
    parser.add_argument(
        "--secret",
        default="dev-secret-change-me",
        help="JWT signing secret (must match SPICEDB_JWT_SECRET_KEY)",
    )
    parser.add_argument("--algorithm", default="HS256", help="JWT signing algorithm")
    parser.add_argument(
        "--exp-hours",
        type=float,
        default=8.0,
        help="Hours until the token expires (default: 8)",
    )

    args = parser.parse_args()

    token = generate_token(
        subject=args.sub,
        scopes=args.scope,
        secret=args.secret,
        algorithm=args.algorithm,
        exp_hours=args.exp_hours,
    )

    print(f"Subject:    {args.sub}")
    print(f"Scopes:     {args.scope}")
    print()
    print(f"Token: {token}")


if __name__ == "__main__":
    main()
