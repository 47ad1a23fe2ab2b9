"""
Application configuration loaded from environment variables.

Uses pydantic-settings to define typed configuration that automatically reads
from environment variables. Everything is read once at process start; nothing
reconfigures the server at runtime.

Typical local setup:

    SPICEDB_ENDPOINT=localhost:8443
    SPICEDB_API_KEY=somerandomkeyhere
    SPICEDB_USE_TLS=false

A .env file in the working directory is read as well.
"""

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Server configuration with environment variable bindings.

    Each field maps to an environment variable with the SPICEDB_ prefix.
    For example, `endpoint` reads from SPICEDB_ENDPOINT and `mcp_port`
    from SPICEDB_MCP_PORT.
    """

    # --- SpiceDB backend ---

    # Address of the SpiceDB HTTP API. May omit the scheme, in which case
    # the client picks http:// or https:// based on use_tls.
    endpoint: str = "localhost:50051"

    # Preshared key sent as a bearer token. Empty means requests go out
    # unauthenticated and the backend decides whether to reject them.
    api_key: str = ""

    use_tls: bool = False

    # --- MCP server ---

    # stdio is what desktop MCP clients spawn; streamable-http serves /mcp
    # plus the /health and /ready probes.
    mcp_transport: Literal["stdio", "streamable-http"] = "stdio"
    mcp_host: str = "0.0.0.0"
    mcp_port: int = 8080

    log_level: str = "info"

    # --- Caller authentication (streamable-http only) ---

    auth_enabled: bool = False

    # Default is for local development only.
    jwt_secret_key: str = "dev-secret-change-me"
    jwt_algorithm: str = "HS256"

    model_config = {
        "env_prefix": "SPICEDB_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


# Singleton instance: import this from other modules.
settings = Settings()
