"""
Relationship notation and backend payload builders.

SpiceDB stores its authorization graph as relationships, written in text as:

    resourceType:resourceId#relation@subjectType:subjectId[#subjectRelation]

For example ``document:readme#viewer@user:alice`` or, for a computed subject
set, ``document:readme#viewer@group:eng#member``.

This module converts between that notation, the immutable value types below,
and the camelCase JSON shapes the backend's HTTP API expects.
"""

from dataclasses import dataclass
from typing import Any

from spicedb_mcp.errors import FormatError, ValidationError


@dataclass(frozen=True)
class ObjectRef:
    """A resource, or the object underlying a subject (e.g. ``user:alice``)."""

    object_type: str
    object_id: str

    def to_dict(self) -> dict[str, str]:
        return {"objectType": self.object_type, "objectId": self.object_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ObjectRef":
        return cls(object_type=data.get("objectType", ""), object_id=data.get("objectId", ""))

    def __str__(self) -> str:
        return f"{self.object_type}:{self.object_id}"


@dataclass(frozen=True)
class SubjectRef:
    """
    The actor side of a relationship.

    When ``optional_relation`` is set the subject is a computed set, e.g.
    ``group:eng#member`` means "every member of group eng" rather than the
    group object itself.
    """

    object: ObjectRef
    optional_relation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"object": self.object.to_dict()}
        if self.optional_relation:
            data["optionalRelation"] = self.optional_relation
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SubjectRef":
        return cls(
            object=ObjectRef.from_dict(data.get("object", {})),
            optional_relation=data.get("optionalRelation") or None,
        )

    def __str__(self) -> str:
        if self.optional_relation:
            return f"{self.object}#{self.optional_relation}"
        return str(self.object)


@dataclass(frozen=True)
class Relationship:
    """A single edge of the authorization graph."""

    resource: ObjectRef
    relation: str
    subject: SubjectRef

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": self.resource.to_dict(),
            "relation": self.relation,
            "subject": self.subject.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Relationship":
        return cls(
            resource=ObjectRef.from_dict(data.get("resource", {})),
            relation=data.get("relation", ""),
            subject=SubjectRef.from_dict(data.get("subject", {})),
        )

    def __str__(self) -> str:
        return format_relationship(self)


def _split_object(segment: str, text: str, what: str) -> ObjectRef:
    parts = segment.split(":")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise FormatError(f"Invalid {what} format in relationship: {text}")
    return ObjectRef(object_type=parts[0], object_id=parts[1])


def parse_relationship(text: str) -> Relationship:
    """
    Parse relationship notation into a Relationship.

    Raises:
        FormatError: If the text does not follow
            ``RESOURCE_TYPE:RESOURCE_ID#RELATION@SUBJECT_TYPE:SUBJECT_ID(#SUBJECT_RELATION)?``
    """
    resource_part, sep, rest = text.partition("#")
    if not sep:
        raise FormatError(f"Invalid relationship format, missing '#': {text}")

    resource = _split_object(resource_part, text, "resource")

    relation_parts = rest.split("@")
    if len(relation_parts) != 2:
        raise FormatError(f"Invalid relationship format, expected exactly one '@': {text}")
    relation, subject_part = relation_parts
    if not relation:
        raise FormatError(f"Invalid relationship format, empty relation: {text}")
    if "#" in relation:
        raise FormatError(f"Invalid relationship format, unexpected '#' in relation: {text}")

    subject_object, has_relation, subject_relation = subject_part.partition("#")
    if has_relation and (not subject_relation or "#" in subject_relation):
        raise FormatError(f"Invalid subject relation in relationship: {text}")

    subject = SubjectRef(
        object=_split_object(subject_object, text, "subject"),
        optional_relation=subject_relation or None,
    )
    return Relationship(resource=resource, relation=relation, subject=subject)


def format_relationship(relationship: Relationship) -> str:
    """Render a Relationship in the textual notation (inverse of parse_relationship)."""
    return f"{relationship.resource}#{relationship.relation}@{relationship.subject}"


def object_ref_to_string(ref: dict[str, Any]) -> str:
    """Render a backend JSON object reference as ``type:id``."""
    return f"{ref.get('objectType', '')}:{ref.get('objectId', '')}"


def subject_ref_to_string(ref: dict[str, Any]) -> str:
    """Render a backend JSON subject reference as ``type:id[#relation]``."""
    base = object_ref_to_string(ref.get("object", {}))
    if ref.get("optionalRelation"):
        return f"{base}#{ref['optionalRelation']}"
    return base


def build_filter(
    resource_type: str | None = None,
    resource_id: str | None = None,
    relation: str | None = None,
    subject_type: str | None = None,
    subject_id: str | None = None,
    subject_relation: str | None = None,
) -> dict[str, Any]:
    """
    Build a RelationshipFilter payload from optional fields.

    Absent or empty fields are left out entirely, so an empty call matches
    every relationship. Subject fields are only nested when ``subject_type``
    is given: the backend rejects a subject filter without a type, so
    ``subject_id`` and ``subject_relation`` are ignored on their own.
    """
    relationship_filter: dict[str, Any] = {}

    if resource_type:
        relationship_filter["resourceType"] = resource_type
    if resource_id:
        relationship_filter["optionalResourceId"] = resource_id
    if relation:
        relationship_filter["optionalRelation"] = relation

    if subject_type:
        subject_filter: dict[str, Any] = {"subjectType": subject_type}
        if subject_id:
            subject_filter["optionalSubjectId"] = subject_id
        if subject_relation:
            subject_filter["optionalRelation"] = {"relation": subject_relation}
        relationship_filter["optionalSubjectFilter"] = subject_filter

    return relationship_filter


def build_relationship(
    resource_type: str,
    resource_id: str,
    relation: str,
    subject_type: str,
    subject_id: str,
    subject_relation: str | None = None,
) -> Relationship:
    """
    Construct a Relationship from its fields.

    Only presence is checked here; the backend validates types and relations
    against the schema.

    Raises:
        ValidationError: If a required field is empty
    """
    required = {
        "resource_type": resource_type,
        "resource_id": resource_id,
        "relation": relation,
        "subject_type": subject_type,
        "subject_id": subject_id,
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        raise ValidationError(f"Missing required parameters: {', '.join(missing)}")

    return Relationship(
        resource=ObjectRef(object_type=resource_type, object_id=resource_id),
        relation=relation,
        subject=SubjectRef(
            object=ObjectRef(object_type=subject_type, object_id=subject_id),
            optional_relation=subject_relation or None,
        ),
    )
