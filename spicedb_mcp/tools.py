"""
Tool operations and scope-based access mapping.

Each coroutine here implements one MCP tool (or resource) on top of a
SpiceDBClient: validate the arguments, build the backend payload, call the
backend, and format the answer as text an LLM can read. The client is always
passed in explicitly; server.py owns the single instance and registers thin
wrappers around these functions.

Errors are raised, never formatted here. server.py turns them into MCP error
results at the dispatch boundary.

The module also holds TOOL_SCOPE_MAP, the registry the authentication
middleware uses to decide which caller scopes may see and call which tool:

    TOOL_SCOPE_MAP = {
        "tool-name": "required_scope",
    }
"""

from typing import Any

from fastmcp.tools.tool import ToolResult
from mcp.types import ResourceLink, TextContent

from spicedb_mcp.client import SpiceDBClient, full_consistency
from spicedb_mcp.errors import ValidationError
from spicedb_mcp.relationships import (
    ObjectRef,
    SubjectRef,
    build_filter,
    build_relationship,
    format_relationship,
    object_ref_to_string,
    parse_relationship,
    subject_ref_to_string,
)
from spicedb_mcp.schema import extract_definitions, find_definition
from spicedb_mcp.trace import render_expansion, render_trace

READ_SCOPE = "spicedb:read"
WRITE_SCOPE = "spicedb:write"

# Maps each tool name to the scope required to access it.
#   {"scope": ["spicedb:read"]}                    -> read-only tools
#   {"scope": ["spicedb:read", "spicedb:write"]}   -> every tool
TOOL_SCOPE_MAP: dict[str, str] = {
    "read-schema": READ_SCOPE,
    "read-relationships": READ_SCOPE,
    "check-permission": READ_SCOPE,
    "lookup-resources": READ_SCOPE,
    "lookup-subjects": READ_SCOPE,
    "expand-permission-tree": READ_SCOPE,
    "write-schema": WRITE_SCOPE,
    "write-relationship": WRITE_SCOPE,
    "delete-relationships": WRITE_SCOPE,
}

OPERATIONS = {
    "CREATE": "OPERATION_CREATE",
    "TOUCH": "OPERATION_TOUCH",
    "DELETE": "OPERATION_DELETE",
}

PERMISSIONSHIP_LABELS = {
    "PERMISSIONSHIP_NO_PERMISSION": "NO PERMISSION",
    "PERMISSIONSHIP_HAS_PERMISSION": "HAS PERMISSION",
    "PERMISSIONSHIP_CONDITIONAL_PERMISSION": "CONDITIONAL PERMISSION",
}

# Path segments of spicedb://relationships/..., in order.
RELATIONSHIP_FILTER_FIELDS = (
    "resource_type",
    "resource_id",
    "relation",
    "subject_type",
    "subject_id",
    "subject_relation",
)


def _require(**fields: Any) -> None:
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise ValidationError(f"Missing required parameters: {', '.join(missing)}")


def _text_result(text: str, links: list[ResourceLink] | None = None) -> ToolResult:
    content: list[Any] = [TextContent(type="text", text=text)]
    content.extend(links or [])
    return ToolResult(content=content)


def _subject_string(subject_type: str, subject_id: str, subject_relation: str | None) -> str:
    return str(
        SubjectRef(
            object=ObjectRef(object_type=subject_type, object_id=subject_id),
            optional_relation=subject_relation or None,
        )
    )


def _subject_payload(subject_type: str, subject_id: str, subject_relation: str | None) -> dict:
    return SubjectRef(
        object=ObjectRef(object_type=subject_type, object_id=subject_id),
        optional_relation=subject_relation or None,
    ).to_dict()


def _relationship_line(result: dict[str, Any]) -> str | None:
    rel = result.get("relationship")
    if not rel:
        return None
    resource = object_ref_to_string(rel.get("resource", {}))
    subject = subject_ref_to_string(rel.get("subject", {}))
    return f"{resource}#{rel.get('relation', '')}@{subject}"


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


async def fetch_schema_text(client: SpiceDBClient) -> str:
    response = await client.read_schema(full_consistency())
    return (response or {}).get("schemaText", "")


async def read_schema(client: SpiceDBClient) -> ToolResult:
    """Return the schema text with one resource link per object definition."""
    schema_text = await fetch_schema_text(client)
    links = [
        ResourceLink(
            type="resource_link",
            uri=f"spicedb://definition/{definition.object_type}",
            name=f"{definition.object_type} Definition",
            description=f"Object definition for type {definition.object_type} in the schema",
            mimeType="text/plain",
        )
        for definition in extract_definitions(schema_text)
    ]
    return _text_result(schema_text or "The schema is empty.", links)


async def write_schema(client: SpiceDBClient, schema: str) -> ToolResult:
    _require(schema=schema)
    response = await client.write_schema(schema)
    token = ((response or {}).get("writtenAt") or {}).get("token")

    text = "Schema written successfully."
    if token:
        text += f"\n\nWritten at: {token}"
    return _text_result(text)


async def definition_text(client: SpiceDBClient, object_type: str) -> str:
    _require(object_type=object_type)
    definition = find_definition(await fetch_schema_text(client), object_type)
    if definition is None:
        return f"No definition found for object type: {object_type}"
    return definition.raw_text


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------


async def _read_relationship_results(
    client: SpiceDBClient, **filters: str | None
) -> list[dict[str, Any]]:
    return await client.read_relationships(
        {
            "consistency": full_consistency(),
            "relationshipFilter": build_filter(**filters),
        }
    )


async def read_relationships(
    client: SpiceDBClient,
    resource_type: str | None = None,
    resource_id: str | None = None,
    relation: str | None = None,
    subject_type: str | None = None,
    subject_id: str | None = None,
    subject_relation: str | None = None,
) -> ToolResult:
    """List every relationship matching the optional filter fields."""
    results = await _read_relationship_results(
        client,
        resource_type=resource_type,
        resource_id=resource_id,
        relation=relation,
        subject_type=subject_type,
        subject_id=subject_id,
        subject_relation=subject_relation,
    )

    lines = []
    links = []
    for result in results:
        line = _relationship_line(result)
        if line is None:
            continue
        lines.append(line)
        rel = result["relationship"]
        resource = rel.get("resource", {})
        links.append(
            ResourceLink(
                type="resource_link",
                uri=(
                    f"spicedb://relationships/{resource.get('objectType', '')}"
                    f"/{resource.get('objectId', '')}/{rel.get('relation', '')}"
                ),
                name=line,
                description=(
                    f"Relationship between {object_ref_to_string(resource)} "
                    f"and {subject_ref_to_string(rel.get('subject', {}))}"
                ),
                mimeType="text/plain",
            )
        )

    if not lines:
        return _text_result("No relationships found matching the specified filter.")

    body = "\n".join(lines)
    return _text_result(f"Found {len(lines)} relationship(s):\n\n{body}\n", links)


async def relationships_text(client: SpiceDBClient, segments: list[str]) -> str:
    """
    Resource view of read-relationships.

    `segments` are the path segments after spicedb://relationships/, read in
    the order of RELATIONSHIP_FILTER_FIELDS. Empty segments are skipped
    filters.
    """
    if len(segments) > len(RELATIONSHIP_FILTER_FIELDS):
        raise ValidationError(
            f"Too many path segments: expected at most {len(RELATIONSHIP_FILTER_FIELDS)}, "
            f"got {len(segments)}"
        )
    filters = dict(zip(RELATIONSHIP_FILTER_FIELDS, segments))
    results = await _read_relationship_results(client, **filters)
    lines = [line for line in map(_relationship_line, results) if line]
    if not lines:
        return "No relationships found"
    return "\n".join(lines) + "\n"


async def write_relationship(
    client: SpiceDBClient,
    operation: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    relation: str | None = None,
    subject_type: str | None = None,
    subject_id: str | None = None,
    subject_relation: str | None = None,
    relationship: str | None = None,
) -> ToolResult:
    """
    Create, touch (upsert) or delete a single relationship.

    The relationship is given either as notation in `relationship`
    (e.g. "document:readme#viewer@user:alice") or field by field.
    """
    backend_operation = OPERATIONS.get(operation)
    if backend_operation is None:
        raise ValidationError(
            f"Unsupported operation: {operation} (expected one of {', '.join(OPERATIONS)})"
        )

    if relationship:
        rel = parse_relationship(relationship)
    else:
        rel = build_relationship(
            resource_type or "",
            resource_id or "",
            relation or "",
            subject_type or "",
            subject_id or "",
            subject_relation,
        )

    response = await client.write_relationships(
        {"updates": [{"operation": backend_operation, "relationship": rel.to_dict()}]}
    )

    text = f"Successfully performed operation {operation} on relationship:\n\n{format_relationship(rel)}"
    token = ((response or {}).get("writtenAt") or {}).get("token")
    if token:
        text += f"\n\nWritten at: {token}"

    link = ResourceLink(
        type="resource_link",
        uri=f"spicedb://relationships/{rel.resource.object_type}/{rel.resource.object_id}/{rel.relation}",
        name=format_relationship(rel),
        description=f"Relationships of {rel.resource} via {rel.relation}",
        mimeType="text/plain",
    )
    return _text_result(text, [link])


async def delete_relationships(
    client: SpiceDBClient,
    resource_type: str,
    resource_id: str | None = None,
    relation: str | None = None,
    subject_type: str | None = None,
    subject_id: str | None = None,
    subject_relation: str | None = None,
) -> ToolResult:
    """Bulk delete every relationship matching the filter. A resource type is mandatory."""
    _require(resource_type=resource_type)
    relationship_filter = build_filter(
        resource_type=resource_type,
        resource_id=resource_id,
        relation=relation,
        subject_type=subject_type,
        subject_id=subject_id,
        subject_relation=subject_relation,
    )

    response = await client.delete_relationships({"relationshipFilter": relationship_filter}) or {}

    described = ", ".join(
        f"{name}={value}"
        for name, value in (
            ("resource_type", resource_type),
            ("resource_id", resource_id),
            ("relation", relation),
            ("subject_type", subject_type),
            ("subject_id", subject_id),
            ("subject_relation", subject_relation),
        )
        if value
    )
    text = f"Deleted relationships matching {described}."
    if response.get("relationshipsDeletedCount") is not None:
        text += f"\n\nRelationships deleted: {response['relationshipsDeletedCount']}"
    if response.get("deletionProgress") == "DELETION_PROGRESS_PARTIAL":
        text += "\n\nDeletion was partial; run the tool again to remove the rest."
    token = (response.get("deletedAt") or {}).get("token")
    if token:
        text += f"\n\nDeleted at: {token}"
    return _text_result(text)


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


async def check_permission(
    client: SpiceDBClient,
    resource_type: str,
    resource_id: str,
    permission: str,
    subject_type: str,
    subject_id: str,
    subject_relation: str | None = None,
) -> ToolResult:
    """Check a permission and explain the decision from the debug trace."""
    _require(
        resource_type=resource_type,
        resource_id=resource_id,
        permission=permission,
        subject_type=subject_type,
        subject_id=subject_id,
    )

    response = await client.check_permission(
        {
            "consistency": full_consistency(),
            "resource": ObjectRef(resource_type, resource_id).to_dict(),
            "permission": permission,
            "subject": _subject_payload(subject_type, subject_id, subject_relation),
            "withTracing": True,
        }
    ) or {}

    result = PERMISSIONSHIP_LABELS.get(response.get("permissionship"), "UNKNOWN")
    debug_trace = response.get("debugTrace") or {}
    explanation = render_trace(debug_trace.get("check"))

    schema_context = ""
    if debug_trace.get("schemaUsed"):
        schema_context = f"\n\nRelevant schema:\n```zed\n{debug_trace['schemaUsed']}\n```"

    subject = _subject_string(subject_type, subject_id, subject_relation)
    text = (
        f"Permission check result: {result}\n"
        f"\n"
        f"Resource: {resource_type}:{resource_id}\n"
        f"Permission: {permission}\n"
        f"Subject: {subject}\n"
        f"\n"
        f"Explanation:\n"
        f"{explanation}{schema_context}"
    )
    return _text_result(text)


async def lookup_resources(
    client: SpiceDBClient,
    resource_type: str,
    permission: str,
    subject_type: str,
    subject_id: str,
    subject_relation: str | None = None,
) -> ToolResult:
    """List resources of `resource_type` on which the subject has `permission`."""
    _require(
        resource_type=resource_type,
        permission=permission,
        subject_type=subject_type,
        subject_id=subject_id,
    )

    results = await client.lookup_resources(
        {
            "consistency": full_consistency(),
            "resourceObjectType": resource_type,
            "permission": permission,
            "subject": _subject_payload(subject_type, subject_id, subject_relation),
        }
    )

    lines = []
    for result in results:
        if result.get("resourceObjectId"):
            line = f"{resource_type}:{result['resourceObjectId']}"
            if result.get("permissionship") == "LOOKUP_PERMISSIONSHIP_CONDITIONAL_PERMISSION":
                line += " (conditional)"
            lines.append(line)

    subject = _subject_string(subject_type, subject_id, subject_relation)
    if not lines:
        return _text_result(
            f"No resources of type {resource_type} found where subject {subject} "
            f"has permission {permission}."
        )

    body = "\n".join(lines)
    return _text_result(
        f"Found {len(lines)} resource(s) where subject {subject} has permission "
        f"{permission}:\n\n{body}\n"
    )


def _subject_lines(
    subject_type: str, subject_id: str, excluded: Any, subject_relation: str | None
) -> list[str]:
    if subject_id == "*" and isinstance(excluded, list) and excluded:
        lines = [f"{subject_type}:* (with exclusions)", "Exclusions:"]
        for item in excluded:
            lines.append(f"- {subject_type}:{item.get('subjectObjectId', '')}")
        return lines
    suffix = f"#{subject_relation}" if subject_relation else ""
    return [f"{subject_type}:{subject_id}{suffix}"]


async def lookup_subjects(
    client: SpiceDBClient,
    resource_type: str,
    resource_id: str,
    permission: str,
    subject_type: str,
    subject_relation: str | None = None,
) -> ToolResult:
    """List subjects of `subject_type` that have `permission` on the resource."""
    _require(
        resource_type=resource_type,
        resource_id=resource_id,
        permission=permission,
        subject_type=subject_type,
    )

    request: dict[str, Any] = {
        "consistency": full_consistency(),
        "resource": ObjectRef(resource_type, resource_id).to_dict(),
        "permission": permission,
        "subjectObjectType": subject_type,
    }
    if subject_relation:
        request["optionalSubjectRelation"] = subject_relation

    results = await client.lookup_subjects(request)

    lines = []
    count = 0
    for result in results:
        if result.get("subjectObjectId"):
            subject_id = result["subjectObjectId"]
        elif isinstance(result.get("subject"), dict):
            subject_id = result["subject"].get("subjectObjectId", "")
        else:
            continue
        lines.extend(
            _subject_lines(subject_type, subject_id, result.get("excludedSubjects"), subject_relation)
        )
        count += 1

    if count == 0:
        return _text_result(
            f"No subjects of type {subject_type} found with permission {permission} "
            f"on resource {resource_type}:{resource_id}."
        )

    body = "\n".join(lines)
    return _text_result(
        f"Found {count} subject(s) with permission {permission} on resource "
        f"{resource_type}:{resource_id}:\n\n{body}\n"
    )


async def expand_permission_tree(
    client: SpiceDBClient, resource_type: str, resource_id: str, permission: str
) -> ToolResult:
    _require(resource_type=resource_type, resource_id=resource_id, permission=permission)

    response = await client.expand_permission_tree(
        {
            "consistency": full_consistency(),
            "resource": ObjectRef(resource_type, resource_id).to_dict(),
            "permission": permission,
        }
    ) or {}

    tree = render_expansion(response.get("treeRoot"))
    return _text_result(f"Permission tree for {resource_type}:{resource_id}#{permission}:\n\n{tree}")
