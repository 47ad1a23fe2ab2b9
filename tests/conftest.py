"""
Shared test fixtures for the SpiceDB MCP test suite.

Key fixtures:
- fake_spicedb: An in-memory stand-in for the SpiceDB HTTP API. Tests queue
  responses per path and inspect the requests the client sent.
- spicedb_client: A SpiceDBClient wired to fake_spicedb through
  httpx.MockTransport (no network needed).
- make_token / make_auth_header: Factories for caller JWTs, used by the
  authentication tests.

Testing approach:
- test_relationships.py, test_schema.py, test_trace.py: pure functions
- test_client.py, test_pagination.py: the client against fake_spicedb
- test_tools.py: tool operations against fake_spicedb
- test_server.py: the FastMCP server through its in-memory client
- test_auth.py, test_auth_middleware.py: token validation and scope
  enforcement over streamable-http
"""

import datetime
import json
from typing import Any

import httpx
import jwt
import pytest

from spicedb_mcp.client import SpiceDBClient
from spicedb_mcp.config import settings

TEST_SECRET = settings.jwt_secret_key
TEST_ALGORITHM = settings.jwt_algorithm


def ndjson(*objects: Any, status: int = 200) -> httpx.Response:
    """A response whose body holds one JSON document per line."""
    return httpx.Response(status, text="\n".join(json.dumps(o) for o in objects) + "\n")


class FakeSpiceDB:
    """
    Serves queued responses per request path.

    Responses for a path are consumed in order; the last one keeps being
    served once the queue is down to it.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._responses: dict[str, list[httpx.Response]] = {}

    def respond(self, path: str, *responses: httpx.Response) -> None:
        self._responses.setdefault(path, []).extend(responses)

    def respond_json(self, path: str, *objects: Any) -> None:
        for obj in objects:
            self.respond(path, httpx.Response(200, json=obj))

    def bodies(self, path: str | None = None) -> list[Any]:
        return [
            json.loads(r.content) if r.content else None
            for r in self.requests
            if path is None or r.url.path == path
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._responses.get(request.url.path)
        if not queue:
            return httpx.Response(404, text=f"no fake response for {request.url.path}")
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]


@pytest.fixture
def fake_spicedb() -> FakeSpiceDB:
    return FakeSpiceDB()


@pytest.fixture
def spicedb_client(fake_spicedb) -> SpiceDBClient:
    return SpiceDBClient(
        "localhost:8443",
        api_key="test-key",
        transport=httpx.MockTransport(fake_spicedb.handler),
    )


@pytest.fixture
def make_token():
    """
    Factory fixture to generate caller JWTs with configurable claims.

    Usage in tests:
        def test_something(make_token):
            token = make_token(sub="agent", scopes=["spicedb:read"])
    """

    def _make_token(
        sub: str = "test-agent",
        scopes: list[str] | None = None,
        secret: str = TEST_SECRET,
        algorithm: str = TEST_ALGORITHM,
        exp_hours: float = 1.0,
        extra_claims: dict | None = None,
        include_exp: bool = True,
        include_sub: bool = True,
    ) -> str:
        now = datetime.datetime.now(datetime.timezone.utc)
        payload: dict = {}

        if include_sub:
            payload["sub"] = sub
        if scopes is not None:
            payload["scope"] = scopes
        if include_exp:
            payload["exp"] = now + datetime.timedelta(hours=exp_hours)
        payload["iat"] = now
        if extra_claims:
            payload.update(extra_claims)

        return jwt.encode(payload, secret, algorithm=algorithm)

    return _make_token


@pytest.fixture
def make_auth_header(make_token):
    """Returns a factory producing full "Bearer <token>" header values."""

    def _make_auth_header(**kwargs) -> str:
        return f"Bearer {make_token(**kwargs)}"

    return _make_auth_header
