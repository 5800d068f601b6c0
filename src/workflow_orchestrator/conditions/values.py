"""Variant values for the schema-less condition context.

Condition expressions run against arbitrarily nested JSON-like data. Rather than
poking at raw Python objects while evaluating, the data is converted once into
:class:`Value` instances that carry an explicit :class:`ValueKind` tag.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ValueKind(str, Enum):
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    LIST = "list"
    MAP = "map"


@dataclass(frozen=True, slots=True)
class Value:
    """A tagged value.

    ``data`` holds ``None`` for NULL, ``bool``, ``int | float``, ``str``,
    ``tuple[Value, ...]`` for LIST and ``dict[str, Value]`` for MAP.
    """

    kind: ValueKind
    data: Any = None

    @staticmethod
    def of(raw: object) -> Value:
        """Convert plain Python data into a value tree.

        Raises:
            TypeError: For objects with no JSON-like representation.
        """

        if isinstance(raw, Value):
            return raw
        if raw is None:
            return NULL
        # bool before int: bool is an int subclass.
        if isinstance(raw, bool):
            return TRUE if raw else FALSE
        if isinstance(raw, int | float):
            return Value(ValueKind.NUMBER, raw)
        if isinstance(raw, str):
            return Value(ValueKind.STRING, raw)
        if isinstance(raw, Mapping):
            return Value(ValueKind.MAP, {str(k): Value.of(v) for k, v in raw.items()})
        if isinstance(raw, Sequence) and not isinstance(raw, bytes | bytearray):
            return Value(ValueKind.LIST, tuple(Value.of(v) for v in raw))
        raise TypeError(f"Unsupported value type: {type(raw).__name__}")

    @staticmethod
    def empty_map() -> Value:
        return Value(ValueKind.MAP, {})

    @property
    def is_null(self) -> bool:
        return self.kind is ValueKind.NULL

    def to_python(self) -> object:
        if self.kind is ValueKind.LIST:
            return [item.to_python() for item in self.data]
        if self.kind is ValueKind.MAP:
            return {key: item.to_python() for key, item in self.data.items()}
        return self.data

    def describe(self) -> str:
        return self.kind.value

    def equals(self, other: Value) -> bool:
        """Structural equality; values of different kinds are never equal."""

        if self.kind is not other.kind:
            return False
        if self.kind is ValueKind.LIST:
            return len(self.data) == len(other.data) and all(
                a.equals(b) for a, b in zip(self.data, other.data, strict=True)
            )
        if self.kind is ValueKind.MAP:
            return self.data.keys() == other.data.keys() and all(
                item.equals(other.data[key]) for key, item in self.data.items()
            )
        return bool(self.data == other.data)


NULL = Value(ValueKind.NULL, None)
TRUE = Value(ValueKind.BOOL, True)
FALSE = Value(ValueKind.BOOL, False)


@dataclass(frozen=True, slots=True)
class Namespaces:
    """The three variables a condition may reference.

    Any namespace that is missing from the caller's data is an empty map.
    """

    input: Value
    stage: Value
    computed: Value

    @classmethod
    def from_mappings(
        cls,
        *,
        input: object = None,  # noqa: A002 (matches the variable name)
        stage: object = None,
        computed: object = None,
    ) -> Namespaces:
        return cls(
            input=_namespace(input),
            stage=_namespace(stage),
            computed=_namespace(computed),
        )

    def lookup(self, name: str) -> Value:
        if name == "input":
            return self.input
        if name == "stage":
            return self.stage
        if name == "computed":
            return self.computed
        raise KeyError(name)


def _namespace(raw: object) -> Value:
    if raw is None:
        return Value.empty_map()
    return Value.of(raw)
