"""Pillar schema model and specification validation.

A schema is closed but tolerant: fields it names are validated, anything
else the extraction service returns is kept apart as ``extra`` and reported
with an "unknown field" warning.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from catalog_pipeline.db.models import PillarSchema

_LEADING_NUMBER_RE = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")


@dataclass
class FieldDefinition:
    """One field of a pillar schema."""

    name: str
    type: str = "text"  # text, number, boolean
    label: str = ""
    example: Any = None
    options: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type, "label": self.label or self.name}
        if self.example is not None:
            data["example"] = self.example
        if self.options:
            data["options"] = list(self.options)
        return data


@dataclass
class PillarSchemaSpec:
    """In-memory form of a PillarSchema row."""

    pillar: str
    display_name: str
    fields: Dict[str, FieldDefinition] = field(default_factory=dict)
    required_fields: List[str] = field(default_factory=list)

    @classmethod
    def from_definitions(
        cls,
        pillar: str,
        display_name: str,
        field_definitions: Dict[str, Dict[str, Any]],
        required_fields: Optional[List[str]] = None,
    ) -> "PillarSchemaSpec":
        fields = {
            name: FieldDefinition(
                name=name,
                type=(definition or {}).get("type", "text"),
                label=(definition or {}).get("label", ""),
                example=(definition or {}).get("example"),
                options=(definition or {}).get("options"),
            )
            for name, definition in (field_definitions or {}).items()
        }
        return cls(
            pillar=pillar,
            display_name=display_name,
            fields=fields,
            required_fields=list(required_fields or []),
        )

    @classmethod
    def from_model(cls, row: PillarSchema) -> "PillarSchemaSpec":
        return cls.from_definitions(
            row.pillar, row.display_name, row.field_definitions, row.required_fields
        )

    def field_definitions(self) -> Dict[str, Dict[str, Any]]:
        return {name: definition.to_dict() for name, definition in self.fields.items()}


@dataclass
class ValidatedSpecifications:
    """Extraction output split against a schema."""

    known: Dict[str, Any] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def merge_into(self, existing: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Merge over existing specifications. Schema fields win on conflict."""
        return {**(existing or {}), **self.extra, **self.known}


def is_missing(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def is_numeric(value: Any) -> bool:
    """Lenient number check: numbers pass, and so do strings that start with one."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    return bool(_LEADING_NUMBER_RE.match(str(value)))


def validate_specifications(
    specifications: Dict[str, Any],
    schema: PillarSchemaSpec,
) -> ValidatedSpecifications:
    """
    Validate extracted specifications against a pillar schema.

    Warnings are produced for:
    - every required field that is absent or empty
    - every field the schema does not define
    - every number field whose value does not parse as a number
    - every enumerated field whose value is not an allowed option

    Args:
        specifications: Field values returned by the extraction service
        schema: Target pillar schema

    Returns:
        ValidatedSpecifications with known/extra partition and warnings
    """
    result = ValidatedSpecifications()

    for name in schema.required_fields:
        if is_missing(specifications.get(name)):
            result.warnings.append(f'Required field "{name}" is missing')

    for name, value in specifications.items():
        definition = schema.fields.get(name)
        if definition is None:
            result.extra[name] = value
            result.warnings.append(f'Unknown field "{name}" — not in {schema.display_name} schema')
            continue

        result.known[name] = value
        if is_missing(value):
            continue

        if definition.type == "number" and not is_numeric(value):
            result.warnings.append(f'Field "{name}" should be a number, got "{value}"')

        if definition.options:
            allowed = [str(option).lower() for option in definition.options]
            if str(value).lower() not in allowed:
                result.warnings.append(
                    f'Field "{name}" value "{value}" not in allowed options: '
                    f'{", ".join(str(o) for o in definition.options)}'
                )

    return result
