"""
Extraction of `definition` blocks from SpiceDB schema text.

The extractor is a line scanner, not a parser: it counts ``{`` and ``}`` on
each line and closes a block when the count returns to zero. Braces inside
string literals, comments or caveat expressions therefore shift the block
boundaries. Blocks still open at the end of the text are dropped.
"""

import re
from dataclasses import dataclass

DEFINITION_START = re.compile(r"^\s*definition\s+([\w/]+)\s*\{")


@dataclass(frozen=True)
class SchemaDefinition:
    """One ``definition <type> { ... }`` block, verbatim."""

    object_type: str
    raw_text: str


def extract_definitions(schema_text: str | None) -> list[SchemaDefinition]:
    """Return every complete definition block in order of appearance."""
    if not schema_text:
        return []

    definitions = []
    current_type = None
    current_lines: list[str] = []
    balance = 0

    for line in schema_text.split("\n"):
        if current_type is None:
            match = DEFINITION_START.match(line)
            if not match:
                continue
            current_type = match.group(1)
            current_lines = []
            balance = 0

        current_lines.append(line)
        balance += line.count("{") - line.count("}")

        if balance <= 0:
            definitions.append(
                SchemaDefinition(object_type=current_type, raw_text="\n".join(current_lines) + "\n")
            )
            current_type = None

    return definitions


def find_definition(schema_text: str | None, object_type: str) -> SchemaDefinition | None:
    """Return the definition block for `object_type`, or None if absent."""
    for definition in extract_definitions(schema_text):
        if definition.object_type == object_type:
            return definition
    return None
