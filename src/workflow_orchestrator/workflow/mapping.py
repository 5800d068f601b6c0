"""Resolve ``input_mapping`` / ``output_mapping`` entries against plain data.

A mapping is a ``{target: source}`` dict. Sources are either a path string such
as ``$.stage[0].activity[1].output.client_id``, a template string with
``${path}`` placeholders, or a structured entry::

    {"source": "$.input.email", "type": "string", "default": "", "required": true}

Targets may use dots and ``[n]`` to build nested maps and lists
(``user.first_name``, ``to[0].address``).
"""

from __future__ import annotations

import copy
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from workflow_orchestrator.errors import OrchestrationError
from workflow_orchestrator.templates.schema import coerce

_TOKEN = re.compile(r"([^.\[\]]+)|\[(\d+)\]")
_TEMPLATE = re.compile(r"\$\{([^}]+)\}")
_INDEXED_KEY = re.compile(r"^([^\[]+)\[(\d+)\]$")

_MISSING = object()


class MappingError(OrchestrationError):
    """A mapping entry is malformed or a required source is absent."""

    def __init__(self, target: str, message: str) -> None:
        super().__init__(f"mapping '{target}': {message}")
        self.target = target
        self.message = message


@dataclass(frozen=True, slots=True)
class FieldMapping:
    source: str
    type: str = ""
    default: Any = None
    required: bool = False

    @staticmethod
    def parse(target: str, raw: object) -> FieldMapping:
        if isinstance(raw, str):
            return FieldMapping(source=raw)
        if isinstance(raw, Mapping):
            source = raw.get("source")
            if not isinstance(source, str) or not source:
                raise MappingError(target, "structured entry needs a 'source' string")
            return FieldMapping(
                source=source,
                type=str(raw.get("type") or ""),
                default=raw.get("default"),
                required=bool(raw.get("required", False)),
            )
        raise MappingError(target, f"unsupported entry type {type(raw).__name__}")


def split_path(path: str) -> list[str | int]:
    """Split ``$.a.b[0].c`` into ``["a", "b", 0, "c"]``."""

    path = path.strip()
    if path.startswith("$"):
        path = path[1:]
    steps: list[str | int] = []
    for name, index in _TOKEN.findall(path):
        steps.append(int(index) if index else name)
    return steps


def lookup(data: object, path: str) -> Any:
    """Return the value at ``path``, or ``None`` when any step is absent."""

    value = _walk(data, split_path(path))
    return None if value is _MISSING else value


def _walk(data: object, steps: list[str | int]) -> object:
    current = data
    for step in steps:
        if isinstance(current, Mapping):
            key = str(step)
            if key not in current:
                return _MISSING
            current = current[key]
        elif isinstance(current, list | tuple) and isinstance(step, int):
            if step >= len(current):
                return _MISSING
            current = current[step]
        else:
            return _MISSING
    return current


def render_template(data: object, template: str) -> str:
    """Replace every ``${path}`` with the value found there (empty when absent)."""

    def _replace(match: re.Match[str]) -> str:
        value = lookup(data, match.group(1))
        return "" if value is None else str(value)

    return _TEMPLATE.sub(_replace, template)


def assign(result: dict[str, Any], target: str, value: Any) -> None:
    """Set ``value`` at a dotted/indexed ``target`` inside ``result``."""

    head, _, rest = target.partition(".")
    match = _INDEXED_KEY.match(head)
    if match is None:
        if not rest:
            result[head] = value
            return
        nested = result.get(head)
        if not isinstance(nested, dict):
            nested = {}
            result[head] = nested
        assign(nested, rest, value)
        return

    name, index = match.group(1), int(match.group(2))
    items = result.get(name)
    if not isinstance(items, list):
        items = []
        result[name] = items
    while len(items) <= index:
        items.append(None)
    if not rest:
        items[index] = value
        return
    element = items[index]
    if not isinstance(element, dict):
        element = {}
        items[index] = element
    assign(element, rest, value)


def resolve(data: object, mapping: Mapping[str, object] | None) -> dict[str, Any]:
    """Resolve every entry of ``mapping`` against ``data``.

    Absent sources without a default are left out of the result.

    Raises:
        MappingError: For malformed entries, failed coercion, or a missing
            required source.
    """

    result: dict[str, Any] = {}
    for target, raw in (mapping or {}).items():
        field = FieldMapping.parse(target, raw)
        if _TEMPLATE.search(field.source):
            value: Any = render_template(data, field.source)
        else:
            value = lookup(data, field.source)

        if value is None:
            if field.default is not None:
                value = copy.deepcopy(field.default)
            elif field.required:
                raise MappingError(target, f"required source {field.source} is absent")
            else:
                continue

        try:
            value = coerce(value, field.type)
        except ValueError as e:
            raise MappingError(target, str(e)) from e
        assign(result, target, copy.deepcopy(value))
    return result
