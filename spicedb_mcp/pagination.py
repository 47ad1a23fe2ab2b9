"""
Cursor-driven draining of SpiceDB's streaming list endpoints.

ReadRelationships, LookupResources and LookupSubjects are server streams.
Over HTTP they come back in one of two shapes, depending on the SpiceDB
version and gateway in front of it:

    array-wrapped (current):   one ``{"result": {...}}`` object per line
    legacy:                    the bare result object, no wrapper

Each result may carry an ``afterResultCursor``. Sending it back as
``optionalCursor`` requests the next page of the same query. `collect_all`
repeats that until the backend stops handing out cursors and returns every
result in one list. MCP tool responses are single payloads, so there is
nothing to gain from streaming results upward.
"""

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from spicedb_mcp.errors import ApiError

if TYPE_CHECKING:
    from spicedb_mcp.client import SpiceDBClient

logger = logging.getLogger("spicedb-mcp.pagination")


@dataclass(frozen=True)
class PagedEndpoint:
    """
    One paginated backend endpoint.

    Attributes:
        path: Request path, e.g. "/v1/relationships/read"
        is_result: Predicate recognizing a result item of this endpoint
        cursor_field: Field of a result item holding the continuation cursor
    """

    path: str
    is_result: Callable[[dict[str, Any]], bool]
    cursor_field: str = "afterResultCursor"

    def matches(self, item: Any) -> bool:
        return isinstance(item, dict) and self.is_result(item)


READ_RELATIONSHIPS = PagedEndpoint(
    path="/v1/relationships/read",
    is_result=lambda item: "relationship" in item,
)

LOOKUP_RESOURCES = PagedEndpoint(
    path="/v1/permissions/resources",
    is_result=lambda item: "resourceObjectId" in item,
)

# Newer servers report "subject": {"subjectObjectId": ...}; older ones put
# subjectObjectId at the top level.
LOOKUP_SUBJECTS = PagedEndpoint(
    path="/v1/permissions/subjects",
    is_result=lambda item: "subjectObjectId" in item or "subject" in item,
)


def _as_stream(response: Any) -> list[Any] | None:
    """Return the response as a list of stream items, or None for a bare object."""
    if isinstance(response, list):
        return response
    # A stream that produced exactly one line arrives unwrapped.
    if isinstance(response, dict) and ("result" in response or "error" in response):
        return [response]
    return None


async def collect_all(
    client: "SpiceDBClient", endpoint: PagedEndpoint, params: dict[str, Any]
) -> list[dict[str, Any]]:
    """
    Fetch every page of a paginated query and return all results in order.

    The loop ends when a page carries no cursor, yields no results, or hands
    back the same cursor it was requested with. Any error aborts the whole
    drain; partial results are never returned.

    Raises:
        ApiError: The backend rejected a page or streamed an error item
        ParseError: A page contained invalid JSON
    """
    results: list[dict[str, Any]] = []
    cursor: Any = None
    pages = 0

    while True:
        body = dict(params)
        if cursor is not None:
            body["optionalCursor"] = cursor

        response = await client.request(endpoint.path, "POST", body)
        pages += 1

        stream = _as_stream(response)
        if stream is not None:
            page_cursor = None
            found = 0
            for item in stream:
                if not isinstance(item, dict):
                    continue
                if "error" in item:
                    raise ApiError(200, json.dumps(item["error"]))
                result = item.get("result")
                if endpoint.matches(result):
                    results.append(result)
                    found += 1
                    if result.get(endpoint.cursor_field):
                        page_cursor = result[endpoint.cursor_field]
            if page_cursor is None or found == 0 or page_cursor == cursor:
                break
            cursor = page_cursor

        elif endpoint.matches(response):
            results.append(response)
            page_cursor = response.get(endpoint.cursor_field)
            if not page_cursor or page_cursor == cursor:
                break
            cursor = page_cursor

        else:
            # Nothing (or nothing recognizable) came back: an empty answer.
            break

    logger.debug(
        "Drained paginated query",
        extra={"log_data": {"path": endpoint.path, "pages": pages, "results": len(results)}},
    )
    return results
