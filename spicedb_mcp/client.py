"""
HTTP client for the SpiceDB API.

SpiceDB exposes its gRPC services over HTTP/JSON. Unary calls answer with a
single JSON object; streaming calls (ReadRelationships, LookupResources,
LookupSubjects) answer with newline-delimited JSON, one object per line.
`SpiceDBClient.request` handles both through one code path: every non-blank
line of the body is parsed independently, a single parsed value is returned
as is, and several values are returned as a list.

The client is constructed once by the composition root (server.py) and
passed to whoever needs it. It holds only immutable configuration; each call
opens its own httpx.AsyncClient, so concurrent tool invocations share no
connection state.
"""

import json
import logging
from typing import Any

import httpx

from spicedb_mcp.config import Settings
from spicedb_mcp.errors import ApiError, BackendConnectionError, ParseError
from spicedb_mcp.pagination import (
    LOOKUP_RESOURCES,
    LOOKUP_SUBJECTS,
    READ_RELATIONSHIPS,
    collect_all,
)

logger = logging.getLogger("spicedb-mcp.client")

# Parsed JSON: a dict for unary calls, a list of dicts for streams, None
# for empty bodies.
ParsedValue = Any


def normalize_endpoint(endpoint: str, use_tls: bool) -> str:
    """Prefix a scheme-less endpoint with http:// or https://."""
    if "://" not in endpoint:
        scheme = "https" if use_tls else "http"
        endpoint = f"{scheme}://{endpoint}"
    return endpoint.rstrip("/")


def full_consistency() -> dict[str, bool]:
    """Consistency that always observes the latest writes."""
    return {"fullyConsistent": True}


def minimize_latency() -> dict[str, bool]:
    """Consistency that may serve slightly stale data from cache."""
    return {"minimizeLatency": True}


class SpiceDBClient:
    """
    Thin async wrapper around the SpiceDB HTTP API.

    Args:
        endpoint: Base URL, with or without scheme
        api_key: Bearer token for the backend (omitted from requests when empty)
        use_tls: Scheme to assume when the endpoint has none
        transport: Optional httpx transport, used by tests to fake the backend
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str = "",
        use_tls: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.endpoint = normalize_endpoint(endpoint, use_tls)
        self.api_key = api_key
        self.use_tls = use_tls
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "SpiceDBClient":
        return cls(settings.endpoint, api_key=settings.api_key, use_tls=settings.use_tls)

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, application/x-ndjson",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def request(
        self, path: str, method: str = "POST", body: dict[str, Any] | None = None
    ) -> ParsedValue:
        """
        Send one request and parse the (possibly multi-line) JSON response.

        Returns:
            None for 204 or blank bodies, the parsed value when the body holds
            one JSON document, otherwise the list of parsed lines in order

        Raises:
            ApiError: The backend answered with a non-2xx status
            ParseError: A response line was not valid JSON
            BackendConnectionError: The request could not be sent
        """
        logger.debug(
            "SpiceDB request",
            extra={"log_data": {"method": method, "path": path}},
        )
        try:
            async with httpx.AsyncClient(
                base_url=self.endpoint, transport=self._transport
            ) as http:
                response = await http.request(
                    method,
                    path,
                    headers=self._headers(),
                    json=body,
                )
        except httpx.TransportError as e:
            logger.error("SpiceDB request to %s failed: %s", path, e)
            raise BackendConnectionError(f"Could not reach SpiceDB at {self.endpoint}: {e}") from e

        if not response.is_success:
            logger.warning(
                "SpiceDB API error",
                extra={
                    "log_data": {
                        "path": path,
                        "status": response.status_code,
                        "body": response.text,
                    }
                },
            )
            raise ApiError(response.status_code, response.text)

        if response.status_code == 204:
            return None

        lines = [line for line in response.text.split("\n") if line.strip()]
        if not lines:
            return None

        parsed = []
        for line in lines:
            try:
                parsed.append(json.loads(line))
            except json.JSONDecodeError:
                logger.error("Error parsing JSON line from %s: %s", path, line)
                raise ParseError(line)

        if len(parsed) == 1:
            return parsed[0]
        return parsed

    # --- Schema ---

    async def read_schema(self, consistency: dict[str, bool] | None = None) -> ParsedValue:
        body = {"consistency": consistency} if consistency else {}
        return await self.request("/v1/schema/read", "POST", body)

    async def write_schema(self, schema: str) -> ParsedValue:
        return await self.request("/v1/schema/write", "POST", {"schema": schema})

    # --- Relationships ---

    async def read_relationships(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        return await collect_all(self, READ_RELATIONSHIPS, params)

    async def write_relationships(self, params: dict[str, Any]) -> ParsedValue:
        return await self.request("/v1/relationships/write", "POST", params)

    async def delete_relationships(self, params: dict[str, Any]) -> ParsedValue:
        return await self.request("/v1/relationships/delete", "POST", params)

    # --- Permissions ---

    async def check_permission(self, params: dict[str, Any]) -> ParsedValue:
        """Check a permission; asks for a debug trace unless the caller says otherwise."""
        body = dict(params)
        body.setdefault("withTracing", True)
        return await self.request("/v1/permissions/check", "POST", body)

    async def lookup_resources(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        return await collect_all(self, LOOKUP_RESOURCES, params)

    async def lookup_subjects(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        return await collect_all(self, LOOKUP_SUBJECTS, params)

    async def expand_permission_tree(self, params: dict[str, Any]) -> ParsedValue:
        return await self.request("/v1/permissions/expand", "POST", params)
