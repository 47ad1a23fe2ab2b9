"""
SpiceDB MCP server built on FastMCP v2.

This module is the composition root. It configures logging, builds the one
SpiceDBClient the process uses, and registers:

- Tools: read-schema, write-schema, read-relationships, check-permission,
  lookup-resources, lookup-subjects, write-relationship,
  delete-relationships, expand-permission-tree
- Resources: spicedb://schema, spicedb://relationships[/...filters],
  spicedb://definition/{object_type}
- Prompts: lookup-resources-for-subject, lookup-subjects-for-resource,
  explain-permission-check, analyze-schema
- HTTP probes /health and /ready (streamable-http transport only)

Every tool and resource wraps an operation from tools.py. SpiceDBError raised
by the core is logged here and re-raised as FastMCP's ToolError /
ResourceError, which reaches the caller as an isError result carrying the
message. Nothing a backend does can crash the process.

Running the server:
    python -m spicedb_mcp.server              # stdio (default)
    SPICEDB_MCP_TRANSPORT=streamable-http spicedb-mcp
"""

import json
import logging
import sys
import uuid
from typing import Annotated, Literal, Sequence

from fastmcp import FastMCP
from fastmcp.exceptions import ResourceError, ToolError
from fastmcp.server.dependencies import get_http_request
from fastmcp.server.middleware import CallNext, Middleware, MiddlewareContext
from fastmcp.tools.tool import Tool, ToolResult
from mcp.types import CallToolRequestParams, ListToolsRequest
from pydantic import Field
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from spicedb_mcp import tools
from spicedb_mcp.auth import AuthError, TokenInfo, validate_token
from spicedb_mcp.client import SpiceDBClient, minimize_latency
from spicedb_mcp.config import settings
from spicedb_mcp.errors import ApiError, SpiceDBError
from spicedb_mcp.tools import TOOL_SCOPE_MAP

# ---------------------------------------------------------------------------
# Structured JSON Logging
# ---------------------------------------------------------------------------
# One JSON object per line. Logs go to stderr: with the stdio transport,
# stdout is the MCP protocol channel.


class JSONLogFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Example output:

        {"timestamp": "2026-02-06 10:30:00,123", "level": "WARNING",
         "logger": "spicedb-mcp.client", "message": "SpiceDB API error",
         "path": "/v1/permissions/check", "status": 400, "body": "..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Structured fields passed via logger.info("msg", extra={"log_data": {...}})
        if hasattr(record, "log_data"):
            log_entry.update(record.log_data)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


handler = logging.StreamHandler(sys.stderr)
handler.setFormatter(JSONLogFormatter())

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    handlers=[handler],
)
logger = logging.getLogger("spicedb-mcp")


# ---------------------------------------------------------------------------
# SpiceDB client
# ---------------------------------------------------------------------------
# Built once from configuration and passed to every operation.
spicedb = SpiceDBClient.from_settings(settings)


# ---------------------------------------------------------------------------
# Caller Authentication & Authorization Middleware
# ---------------------------------------------------------------------------


class AuthMiddleware(Middleware):
    """
    JWT authentication and scope-based authorization for MCP callers.

    Active only when settings.auth_enabled is true. Then:
    - tools/list responses only include tools the token's scopes allow
    - tools/call requests are rejected if the token lacks the tool's scope

    Tools missing from TOOL_SCOPE_MAP are denied.
    """

    def _get_auth_header(self) -> str | None:
        """Authorization header of the current HTTP request, None on stdio."""
        try:
            request = get_http_request()
            return request.headers.get("authorization")
        except RuntimeError:
            return None

    def _authenticate(self, request_id: str) -> TokenInfo:
        try:
            token_info = validate_token(self._get_auth_header())
        except AuthError as e:
            logger.warning(
                "Authentication failed",
                extra={
                    "log_data": {
                        "request_id": request_id,
                        "decision": "rejected",
                        "reason": e.message,
                    }
                },
            )
            raise
        logger.info(
            "Authentication successful",
            extra={
                "log_data": {
                    "request_id": request_id,
                    "subject": token_info.subject,
                    "scopes": token_info.scopes,
                    "decision": "authenticated",
                }
            },
        )
        return token_info

    async def on_list_tools(
        self,
        context: MiddlewareContext[ListToolsRequest],
        call_next: CallNext[ListToolsRequest, Sequence[Tool]],
    ) -> Sequence[Tool]:
        if not settings.auth_enabled:
            return await call_next(context)

        request_id = str(uuid.uuid4())[:8]
        token_info = self._authenticate(request_id)

        all_tools = await call_next(context)
        authorized_tools = [
            tool
            for tool in all_tools
            if TOOL_SCOPE_MAP.get(tool.name) in token_info.scopes
        ]

        logger.info(
            "Tool list filtered by scope",
            extra={
                "log_data": {
                    "request_id": request_id,
                    "subject": token_info.subject,
                    "total_tools": len(all_tools),
                    "authorized_tools": [t.name for t in authorized_tools],
                    "decision": "filtered",
                }
            },
        )
        return authorized_tools

    async def on_call_tool(
        self,
        context: MiddlewareContext[CallToolRequestParams],
        call_next: CallNext[CallToolRequestParams, ToolResult],
    ) -> ToolResult:
        if not settings.auth_enabled:
            return await call_next(context)

        request_id = str(uuid.uuid4())[:8]
        tool_name = context.message.name
        token_info = self._authenticate(request_id)

        required_scope = TOOL_SCOPE_MAP.get(tool_name)
        if required_scope is None or required_scope not in token_info.scopes:
            reason = "no_scope_mapping" if required_scope is None else "insufficient_scope"
            logger.warning(
                "Tool call denied",
                extra={
                    "log_data": {
                        "request_id": request_id,
                        "subject": token_info.subject,
                        "tool": tool_name,
                        "required_scope": required_scope,
                        "decision": "denied",
                        "reason": reason,
                    }
                },
            )
            if required_scope is None:
                raise PermissionError(f"Access denied: tool '{tool_name}' has no scope mapping")
            raise PermissionError(
                f"Access denied: tool '{tool_name}' requires scope '{required_scope}'"
            )

        logger.info(
            "Tool call authorized",
            extra={
                "log_data": {
                    "request_id": request_id,
                    "subject": token_info.subject,
                    "tool": tool_name,
                    "decision": "allowed",
                }
            },
        )
        return await call_next(context)


mcp = FastMCP(
    name="spicedb-mcp",
    instructions=(
        "Access to a SpiceDB permissions system. Read the schema to learn the "
        "object types, relations and permissions; read and write relationships; "
        "check whether a subject has a permission on a resource and why; and "
        "look up which resources a subject can access or which subjects can "
        "access a resource. Relationships are written as "
        "resourceType:resourceId#relation@subjectType:subjectId[#subjectRelation]."
    ),
    middleware=[AuthMiddleware()],
)


def _tool_error(action: str, error: SpiceDBError) -> ToolError:
    logger.error(
        "Error %s: %s",
        action,
        error.message,
        extra={"log_data": {"error_type": type(error).__name__}},
    )
    return ToolError(f"Error {action}: {error.message}")


def _resource_error(action: str, error: SpiceDBError) -> ResourceError:
    logger.error(
        "Error %s: %s",
        action,
        error.message,
        extra={"log_data": {"error_type": type(error).__name__}},
    )
    return ResourceError(f"Error {action}: {error.message}")


ResourceType = Annotated[str, Field(description="Resource object type, e.g. 'document'")]
ResourceId = Annotated[str, Field(description="Resource object ID, e.g. 'readme'")]
SubjectType = Annotated[str, Field(description="Subject object type, e.g. 'user'")]
SubjectId = Annotated[str, Field(description="Subject object ID, e.g. 'alice'")]
SubjectRelation = Annotated[
    str | None,
    Field(description="Optional subject relation for subject sets, e.g. 'member' in group:eng#member"),
]
Permission = Annotated[str, Field(description="Permission or relation name, e.g. 'view'")]


def _optional(description: str):
    return Annotated[str | None, Field(description=description)]


# ---------------------------------------------------------------------------
# Tools: schema
# ---------------------------------------------------------------------------


@mcp.tool(
    name="read-schema",
    description=(
        "Retrieves the complete schema from the SpiceDB instance. The schema defines "
        "all object types, relations, permissions, and caveats in the system. Takes no "
        "parameters and returns the raw schema text, with a link to each object definition."
    ),
)
async def read_schema() -> ToolResult:
    logger.info("Tool executed: read-schema")
    try:
        return await tools.read_schema(spicedb)
    except SpiceDBError as e:
        raise _tool_error("reading schema", e) from e


@mcp.tool(
    name="write-schema",
    description=(
        "Replaces the SpiceDB schema with the given schema text. The backend rejects "
        "schemas that would orphan existing relationships."
    ),
)
async def write_schema(
    schema: Annotated[str, Field(description="Complete schema text in the SpiceDB schema language")],
) -> ToolResult:
    logger.info("Tool executed: write-schema")
    try:
        return await tools.write_schema(spicedb, schema)
    except SpiceDBError as e:
        raise _tool_error("writing schema", e) from e


# ---------------------------------------------------------------------------
# Tools: relationships
# ---------------------------------------------------------------------------


@mcp.tool(
    name="read-relationships",
    description=(
        "Finds relationships matching the provided filters. All parameters are optional, "
        "from every relationship in the system down to one specific relationship. Subject "
        "filters only apply when subject_type is given."
    ),
)
async def read_relationships(
    resource_type: _optional("Resource object type to filter by") = None,
    resource_id: _optional("Resource object ID to filter by") = None,
    relation: _optional("Relation name to filter by") = None,
    subject_type: _optional("Subject object type to filter by") = None,
    subject_id: _optional("Subject object ID (requires subject_type)") = None,
    subject_relation: _optional("Subject relation (requires subject_type)") = None,
) -> ToolResult:
    logger.info("Tool executed: read-relationships")
    try:
        return await tools.read_relationships(
            spicedb,
            resource_type=resource_type,
            resource_id=resource_id,
            relation=relation,
            subject_type=subject_type,
            subject_id=subject_id,
            subject_relation=subject_relation,
        )
    except SpiceDBError as e:
        raise _tool_error("reading relationships", e) from e


@mcp.tool(
    name="write-relationship",
    description=(
        "Creates, updates, or deletes one relationship. CREATE fails if it already "
        "exists, TOUCH upserts, DELETE removes it. Give the relationship either as "
        "notation in 'relationship' (e.g. document:readme#viewer@user:alice) or "
        "through the individual fields."
    ),
)
async def write_relationship(
    operation: Annotated[Literal["CREATE", "TOUCH", "DELETE"], Field(description="Write operation")],
    resource_type: _optional("Resource object type") = None,
    resource_id: _optional("Resource object ID") = None,
    relation: _optional("Relation name") = None,
    subject_type: _optional("Subject object type") = None,
    subject_id: _optional("Subject object ID") = None,
    subject_relation: _optional("Optional subject relation") = None,
    relationship: _optional(
        "Relationship notation, used instead of the individual fields when given"
    ) = None,
) -> ToolResult:
    logger.info("Tool executed: write-relationship (%s)", operation)
    try:
        return await tools.write_relationship(
            spicedb,
            operation,
            resource_type=resource_type,
            resource_id=resource_id,
            relation=relation,
            subject_type=subject_type,
            subject_id=subject_id,
            subject_relation=subject_relation,
            relationship=relationship,
        )
    except SpiceDBError as e:
        raise _tool_error("writing relationship", e) from e


@mcp.tool(
    name="delete-relationships",
    description=(
        "Deletes every relationship matching a filter. resource_type is required; the "
        "remaining fields narrow the filter."
    ),
)
async def delete_relationships(
    resource_type: ResourceType,
    resource_id: _optional("Resource object ID") = None,
    relation: _optional("Relation name") = None,
    subject_type: _optional("Subject object type") = None,
    subject_id: _optional("Subject object ID (requires subject_type)") = None,
    subject_relation: _optional("Subject relation (requires subject_type)") = None,
) -> ToolResult:
    logger.info("Tool executed: delete-relationships")
    try:
        return await tools.delete_relationships(
            spicedb,
            resource_type,
            resource_id=resource_id,
            relation=relation,
            subject_type=subject_type,
            subject_id=subject_id,
            subject_relation=subject_relation,
        )
    except SpiceDBError as e:
        raise _tool_error("deleting relationships", e) from e


# ---------------------------------------------------------------------------
# Tools: permissions
# ---------------------------------------------------------------------------


@mcp.tool(
    name="check-permission",
    description=(
        "Checks whether a subject has a permission on a resource: 'Can subject X do Y "
        "on resource Z?'. Returns the result together with a trace explaining how the "
        "decision was reached."
    ),
)
async def check_permission(
    resource_type: ResourceType,
    resource_id: ResourceId,
    permission: Permission,
    subject_type: SubjectType,
    subject_id: SubjectId,
    subject_relation: SubjectRelation = None,
) -> ToolResult:
    logger.info("Tool executed: check-permission")
    try:
        return await tools.check_permission(
            spicedb,
            resource_type,
            resource_id,
            permission,
            subject_type,
            subject_id,
            subject_relation,
        )
    except SpiceDBError as e:
        raise _tool_error("checking permission", e) from e


@mcp.tool(
    name="lookup-resources",
    description=(
        "Finds all resources of a type on which a subject has a permission, e.g. "
        "'What documents can this user view?'."
    ),
)
async def lookup_resources(
    resource_type: ResourceType,
    permission: Permission,
    subject_type: SubjectType,
    subject_id: SubjectId,
    subject_relation: SubjectRelation = None,
) -> ToolResult:
    logger.info("Tool executed: lookup-resources")
    try:
        return await tools.lookup_resources(
            spicedb, resource_type, permission, subject_type, subject_id, subject_relation
        )
    except SpiceDBError as e:
        raise _tool_error("looking up resources", e) from e


@mcp.tool(
    name="lookup-subjects",
    description=(
        "Finds all subjects of a type that have a permission on a resource, e.g. "
        "'Who can edit this document?'. Wildcard subjects are listed with their exclusions."
    ),
)
async def lookup_subjects(
    resource_type: ResourceType,
    resource_id: ResourceId,
    permission: Permission,
    subject_type: SubjectType,
    subject_relation: SubjectRelation = None,
) -> ToolResult:
    logger.info("Tool executed: lookup-subjects")
    try:
        return await tools.lookup_subjects(
            spicedb, resource_type, resource_id, permission, subject_type, subject_relation
        )
    except SpiceDBError as e:
        raise _tool_error("looking up subjects", e) from e


@mcp.tool(
    name="expand-permission-tree",
    description=(
        "Expands a permission or relation on a resource into the tree of subject sets "
        "that make it up, showing unions, intersections and exclusions."
    ),
)
async def expand_permission_tree(
    resource_type: ResourceType,
    resource_id: ResourceId,
    permission: Permission,
) -> ToolResult:
    logger.info("Tool executed: expand-permission-tree")
    try:
        return await tools.expand_permission_tree(spicedb, resource_type, resource_id, permission)
    except SpiceDBError as e:
        raise _tool_error("expanding permission tree", e) from e


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


@mcp.resource(
    "spicedb://schema",
    name="Schema",
    description="The current SpiceDB schema",
    mime_type="text/plain",
)
async def schema_resource() -> str:
    try:
        return await tools.fetch_schema_text(spicedb)
    except SpiceDBError as e:
        raise _resource_error("fetching schema", e) from e


@mcp.resource(
    "spicedb://relationships",
    name="Relationships",
    description="Every relationship in the system",
    mime_type="text/plain",
)
async def all_relationships_resource() -> str:
    try:
        return await tools.relationships_text(spicedb, [])
    except SpiceDBError as e:
        raise _resource_error("fetching relationships", e) from e


@mcp.resource(
    "spicedb://relationships/{filters*}",
    name="Filtered Relationships",
    description=(
        "Relationships filtered by path: "
        "/{resourceType}/{resourceId}/{relation}/{subjectType}/{subjectId}/{subjectRelation}, "
        "each segment optional from the right"
    ),
    mime_type="text/plain",
)
async def relationships_resource(filters: str) -> str:
    try:
        return await tools.relationships_text(spicedb, filters.strip("/").split("/"))
    except SpiceDBError as e:
        raise _resource_error("fetching relationships", e) from e


@mcp.resource(
    "spicedb://definition/{object_type}",
    name="Object Definition",
    description="Schema definition block for one object type",
    mime_type="text/plain",
)
async def definition_resource(object_type: str) -> str:
    try:
        return await tools.definition_text(spicedb, object_type)
    except SpiceDBError as e:
        raise _resource_error(f"fetching object definition for {object_type}", e) from e


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


@mcp.prompt(name="lookup-resources-for-subject", description="Find resources a subject can access")
def lookup_resources_for_subject(
    resource_type: str,
    permission: str,
    subject_type: str,
    subject_id: str,
    subject_relation: str | None = None,
) -> str:
    subject = f"{subject_type}:{subject_id}" + (f"#{subject_relation}" if subject_relation else "")
    return (
        f"Please find all resources of type `{resource_type}` where the subject "
        f"`{subject}` has the permission `{permission}`.\n\n"
        "For each resource, explain what it is and how the subject might interact "
        "with it given their permission level."
    )


@mcp.prompt(name="lookup-subjects-for-resource", description="Find subjects that can access a resource")
def lookup_subjects_for_resource(
    resource_type: str, resource_id: str, permission: str, subject_type: str
) -> str:
    return (
        f"Please find all subjects of type `{subject_type}` that have the permission "
        f"`{permission}` on resource `{resource_type}:{resource_id}`.\n\n"
        "For each subject, explain who they are and what they can do with this "
        "resource based on their permission level."
    )


@mcp.prompt(name="explain-permission-check", description="Explain a permission check result")
def explain_permission_check(
    resource_type: str, resource_id: str, permission: str, subject_type: str, subject_id: str
) -> str:
    return (
        f"Please check if the subject `{subject_type}:{subject_id}` has the permission "
        f"`{permission}` on resource `{resource_type}:{resource_id}`.\n\n"
        "Then explain:\n"
        "1. What is the result of the permission check?\n"
        "2. What does this permission allow the subject to do with this resource?\n"
        "3. What relationships in the permission system contribute to this result?"
    )


@mcp.prompt(name="analyze-schema", description="Analyze the permission schema structure")
def analyze_schema() -> str:
    return (
        "Please analyze the current SpiceDB schema and explain:\n\n"
        "1. What object types are defined?\n"
        "2. For each object type, what relations and permissions does it have?\n"
        "3. How are the permissions constructed (from which relations)?\n"
        "4. How would you represent common permission patterns using this schema?\n\n"
        "Please format your explanation in a clear, structured way that would help "
        "someone understand the permission model."
    )


# ---------------------------------------------------------------------------
# Health and Readiness Endpoints
# ---------------------------------------------------------------------------
# Plain HTTP routes for orchestration probes; they never require a token.


@mcp.custom_route("/health", methods=["GET"])
async def health_check(request: Request) -> Response:
    """Liveness probe: is the server process alive and responsive?"""
    return JSONResponse({"status": "healthy"})


@mcp.custom_route("/ready", methods=["GET"])
async def readiness_check(request: Request) -> Response:
    """Readiness probe: does the SpiceDB backend answer and accept our key?"""
    try:
        await spicedb.read_schema(minimize_latency())
    except ApiError as e:
        # 404 only means no schema has been written yet.
        if e.status in (401, 403) or e.status >= 500:
            return JSONResponse(
                {"status": "not_ready", "reason": f"backend returned {e.status}"},
                status_code=503,
            )
    except SpiceDBError as e:
        return JSONResponse({"status": "not_ready", "reason": e.message}, status_code=503)

    return JSONResponse({"status": "ready"})


# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------


def main() -> None:
    logger.info(
        "Starting SpiceDB MCP server (transport=%s, endpoint=%s, tls=%s, auth=%s)",
        settings.mcp_transport,
        spicedb.endpoint,
        settings.use_tls,
        "enabled" if settings.auth_enabled else "disabled",
    )
    if settings.mcp_transport == "stdio":
        mcp.run(transport="stdio")
    else:
        mcp.run(
            transport="streamable-http",
            host=settings.mcp_host,
            port=settings.mcp_port,
            log_level=settings.log_level,
        )


if __name__ == "__main__":
    main()
