"""
Human-readable rendering of permission check traces and expansion trees.

A CheckPermission call made with ``withTracing`` returns a debug trace: a tree
whose root is the requested check and whose children are the sub-checks the
backend evaluated to reach the result. `render_trace` walks that tree and
produces indented text such as:

    Checking if user:alice has permission "view" on document:readme: HAS_PERMISSION
    (took 0.000412s)
    This was determined by:
      Checking if user:alice has relation "viewer" on document:readme: HAS_PERMISSION

Children are printed in the order the backend returned them. The trees come
from the backend, so recursion stops at MAX_TRACE_DEPTH levels.
"""

from typing import Any

from spicedb_mcp.relationships import object_ref_to_string, subject_ref_to_string

MAX_TRACE_DEPTH = 64

NO_TRACE = "No trace data available"

RESULT_PREFIX = "PERMISSIONSHIP_"


def _indent(depth: int) -> str:
    return "  " * depth


def _truncated(depth: int) -> str:
    return f"{_indent(depth)}... (trace truncated at depth {MAX_TRACE_DEPTH})\n"


def render_trace(trace: dict[str, Any] | None, depth: int = 0) -> str:
    """Render a CheckDebugTrace node and all its sub-problems."""
    if not trace:
        if depth > 0:
            return f"{_indent(depth)}{NO_TRACE}\n"
        return NO_TRACE
    if depth > MAX_TRACE_DEPTH:
        return _truncated(depth)

    indent = _indent(depth)

    resource = object_ref_to_string(trace.get("resource", {}))
    subject_ref = trace.get("subject") or {}
    subject = subject_ref_to_string(subject_ref) if subject_ref.get("object") else "unknown subject"
    permission_type = (
        "permission"
        if trace.get("permissionType") == "PERMISSION_TYPE_PERMISSION"
        else "relation"
    )
    result = trace.get("result", "").replace(RESULT_PREFIX, "", 1)

    text = (
        f"{indent}Checking if {subject} has {permission_type} "
        f"\"{trace.get('permission', '')}\" on {resource}: {result}\n"
    )

    if trace.get("duration"):
        text += f"{indent}(took {trace['duration']})\n"

    children = (trace.get("subProblems") or {}).get("traces") or []
    if children:
        text += f"{indent}This was determined by:\n"
        for child in children:
            text += render_trace(child, depth + 1)

    return text


def render_expansion(node: dict[str, Any] | None, depth: int = 0) -> str:
    """
    Render a PermissionRelationshipTree from ExpandPermissionTree.

    Intermediate nodes show their set operation (union, intersection,
    exclusion) followed by their children; leaves list their subjects.
    """
    if not node:
        if depth > 0:
            return f"{_indent(depth)}No expansion data available\n"
        return "No expansion data available"
    if depth > MAX_TRACE_DEPTH:
        return _truncated(depth)

    indent = _indent(depth)
    expanded = object_ref_to_string(node.get("expandedObject", {}))
    text = f"{indent}{expanded}#{node.get('expandedRelation', '')}\n"

    intermediate = node.get("intermediate")
    if intermediate:
        operation = intermediate.get("operation", "").replace("OPERATION_", "", 1).lower()
        text += f"{indent}{operation or 'unknown operation'} of:\n"
        for child in intermediate.get("children") or []:
            text += render_expansion(child, depth + 1)

    leaf = node.get("leaf")
    if leaf is not None:
        subjects = leaf.get("subjects") or []
        if not subjects:
            text += f"{indent}  (no subjects)\n"
        for subject in subjects:
            text += f"{indent}  - {subject_ref_to_string(subject)}\n"

    return text
