"""Input schemas declared by workflow templates.

A template may declare the shape of the input a run expects, in one of two
forms::

    {"type": "object", "properties": {"age": {"type": "integer", "default": 0}}, "required": ["email"]}
    {"email": {"type": "string", "required": true}, "age": {"type": "int", "default": 0}}

Validation coerces declared fields, fills absent ones from their defaults and
passes undeclared fields through unchanged.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from workflow_orchestrator.errors import InputValidationError

# JSON Schema spellings -> coercion names
_JSON_SCHEMA_TYPES: dict[str, str] = {
    "integer": "int",
    "boolean": "bool",
    "number": "number",
    "string": "string",
}


def coerce(value: Any, type_name: str) -> Any:
    """Best-effort scalar coercion.

    Raises:
        ValueError: When ``value`` cannot be read as ``type_name``.
    """

    if not type_name:
        return value
    if type_name == "string":
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)
    if type_name == "int":
        if isinstance(value, bool):
            return int(value)
        try:
            if isinstance(value, int | float):
                return int(value)
            if isinstance(value, str):
                return int(value.strip())
        except OverflowError as e:
            raise ValueError(f"cannot convert {value!r} to int") from e
        raise ValueError(f"cannot convert {type(value).__name__} to int")
    if type_name in {"number", "double", "float"}:
        if isinstance(value, int | float) and not isinstance(value, bool):
            return float(value)
        if isinstance(value, str):
            return float(value.strip())
        raise ValueError(f"cannot convert {type(value).__name__} to {type_name}")
    if type_name == "bool":
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() == "true"
        if isinstance(value, int | float):
            return value != 0
        raise ValueError(f"cannot convert {type(value).__name__} to bool")
    if type_name == "object":
        if not isinstance(value, Mapping):
            raise ValueError(f"expected an object, got {type(value).__name__}")
        return value
    if type_name == "array":
        if not isinstance(value, list | tuple):
            raise ValueError(f"expected an array, got {type(value).__name__}")
        return value
    return value


class SchemaField(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    type: str = Field(default="", description="Coercion target; empty keeps the value as is")
    description: str = Field(default="")
    default: Any = None
    required: bool = False


class _ObjectSchema(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    type: Literal["object"]
    properties: dict[str, SchemaField]
    required: list[str] = Field(default_factory=list)


_FIELD_SCHEMA = TypeAdapter(dict[str, SchemaField])


@dataclass(frozen=True, slots=True)
class InputSchema:
    fields: Mapping[str, SchemaField]

    @classmethod
    def parse(cls, raw: Mapping[str, Any]) -> InputSchema:
        """Read either schema form.

        Raises:
            ValueError: If ``raw`` is neither form (pydantic's ``ValidationError``
                is a ``ValueError``).
        """

        if raw.get("type") == "object" and isinstance(raw.get("properties"), Mapping):
            obj = _ObjectSchema.model_validate(raw)
            required = set(obj.required)
            fields = {
                name: field.model_copy(update={"required": field.required or name in required})
                for name, field in obj.properties.items()
            }
            return cls(fields)
        return cls(_FIELD_SCHEMA.validate_python(dict(raw)))

    def validate(self, data: Mapping[str, Any] | None, *, template_id: str = "") -> dict[str, Any]:
        """Return ``data`` coerced and enriched with defaults.

        Raises:
            InputValidationError: Listing every missing or unconvertible field.
        """

        source = dict(data or {})
        result: dict[str, Any] = {}
        problems: list[str] = []

        for name, field in self.fields.items():
            value = source.get(name)
            if value is None:
                if field.default is not None:
                    result[name] = copy.deepcopy(field.default)
                elif field.required:
                    problems.append(f"required field '{name}' is missing")
                continue
            try:
                result[name] = coerce(value, _JSON_SCHEMA_TYPES.get(field.type, field.type))
            except ValueError as e:
                problems.append(f"field '{name}' type coercion failed: {e}")

        for name, value in source.items():
            if name not in self.fields:
                result[name] = value

        if problems:
            raise InputValidationError(template_id, problems)
        return result
