"""Condition expressions gating stages and activities.

The language is a small CEL-flavoured subset:

- literals: numbers, strings, ``true`` / ``false`` / ``null``, list literals
- selection: ``input.amount``, ``stage[0].activity[1].output["status"]``
- operators: ``&&`` ``||`` ``!`` (or ``and`` ``or`` ``not``), comparisons,
  ``in`` / ``not in``, ``+ - * / %``
- functions: ``has(path)``, ``size(x)``, ``int(x)``, ``double(x)``, ``string(x)``

Expressions are parsed with :mod:`ast`, validated against a whitelist of node
types, and then interpreted over :class:`~workflow_orchestrator.conditions.values.Value`
trees. Nothing is ever passed to ``eval``.

Only three variables exist: ``input``, ``stage`` and ``computed``.
"""

from __future__ import annotations

import ast
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from workflow_orchestrator.conditions.values import (
    FALSE,
    NULL,
    TRUE,
    Namespaces,
    Value,
    ValueKind,
)
from workflow_orchestrator.errors import CompilationError, EvaluationError

logger = logging.getLogger(__name__)

DECLARED_VARIABLES: frozenset[str] = frozenset({"input", "stage", "computed"})

_LITERAL_NAMES: dict[str, Value] = {"true": TRUE, "false": FALSE, "null": NULL}

# name -> arity
_FUNCTIONS: dict[str, int] = {
    "has": 1,
    "size": 1,
    "int": 1,
    "double": 1,
    "string": 1,
}

_ALLOWED_NODES: tuple[type[ast.AST], ...] = (
    ast.Expression,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.UnaryOp,
    ast.Not,
    ast.USub,
    ast.UAdd,
    ast.BinOp,
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.Mod,
    ast.Compare,
    ast.Eq,
    ast.NotEq,
    ast.Lt,
    ast.LtE,
    ast.Gt,
    ast.GtE,
    ast.In,
    ast.NotIn,
    ast.Attribute,
    ast.Subscript,
    ast.Name,
    ast.Load,
    ast.Constant,
    ast.List,
    ast.Call,
)


@runtime_checkable
class SupportsNamespaces(Protocol):
    """Anything that can render itself as the three condition variables."""

    def namespaces(self) -> Namespaces: ...


ConditionContext = Namespaces | SupportsNamespaces | Mapping[str, object] | None


@dataclass(frozen=True, slots=True)
class CompiledCondition:
    expression: str
    tree: ast.Expression


class _Failure(Exception):
    """Internal signal carrying an evaluation failure reason."""


def normalize_operators(expression: str) -> str:
    """Rewrite ``&&``, ``||`` and ``!`` into their Python keywords.

    String literals are copied through untouched.
    """

    out: list[str] = []
    quote: str | None = None
    i = 0
    n = len(expression)
    while i < n:
        ch = expression[i]
        if quote is not None:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(expression[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = None
            i += 1
            continue
        if ch in {"'", '"'}:
            quote = ch
            out.append(ch)
        elif expression.startswith("&&", i):
            out.append(" and ")
            i += 2
            continue
        elif expression.startswith("||", i):
            out.append(" or ")
            i += 2
            continue
        elif ch == "!" and not expression.startswith("!=", i):
            out.append(" not ")
        else:
            out.append(ch)
        i += 1
    return "".join(out)


def _validate(node: ast.AST, expression: str) -> None:
    if not isinstance(node, _ALLOWED_NODES):
        raise CompilationError(expression, f"unsupported syntax: {type(node).__name__}")

    if isinstance(node, ast.Constant):
        value = node.value
        if value is not None and not isinstance(value, bool | int | float | str):
            raise CompilationError(expression, f"unsupported literal: {value!r}")
        return

    if isinstance(node, ast.Name):
        if node.id not in DECLARED_VARIABLES and node.id not in _LITERAL_NAMES:
            raise CompilationError(expression, f"undeclared reference to '{node.id}'")
        return

    if isinstance(node, ast.Call):
        func = node.func
        if not isinstance(func, ast.Name) or func.id not in _FUNCTIONS:
            name = func.id if isinstance(func, ast.Name) else ast.unparse(func)
            raise CompilationError(expression, f"unknown function '{name}'")
        if node.keywords:
            raise CompilationError(expression, f"{func.id}() takes no keyword arguments")
        if len(node.args) != _FUNCTIONS[func.id]:
            raise CompilationError(
                expression,
                f"{func.id}() takes {_FUNCTIONS[func.id]} argument(s), got {len(node.args)}",
            )
        if func.id == "has" and not isinstance(node.args[0], ast.Attribute | ast.Subscript):
            raise CompilationError(expression, "has() requires a field or index selection")
        for arg in node.args:
            _validate(arg, expression)
        return

    for child in ast.iter_child_nodes(node):
        _validate(child, expression)


class _Interpreter:
    def __init__(self, namespaces: Namespaces) -> None:
        self._ns = namespaces

    def run(self, node: ast.AST) -> Value:  # noqa: C901 (dispatch table)
        if isinstance(node, ast.Expression):
            return self.run(node.body)
        if isinstance(node, ast.Constant):
            return Value.of(node.value)
        if isinstance(node, ast.Name):
            literal = _LITERAL_NAMES.get(node.id)
            if literal is not None:
                return literal
            return self._ns.lookup(node.id)
        if isinstance(node, ast.List):
            return Value(ValueKind.LIST, tuple(self.run(e) for e in node.elts))
        if isinstance(node, ast.Attribute):
            return _select(self.run(node.value), Value.of(node.attr))
        if isinstance(node, ast.Subscript):
            return _select(self.run(node.value), self.run(node.slice))
        if isinstance(node, ast.BoolOp):
            return self._bool_op(node)
        if isinstance(node, ast.UnaryOp):
            return _unary(node.op, self.run(node.operand))
        if isinstance(node, ast.BinOp):
            return _binary(node.op, self.run(node.left), self.run(node.right))
        if isinstance(node, ast.Compare):
            return self._compare(node)
        if isinstance(node, ast.Call):
            return self._call(node)
        raise _Failure(f"unsupported syntax: {type(node).__name__}")

    def _bool_op(self, node: ast.BoolOp) -> Value:
        short_circuit = isinstance(node.op, ast.Or)
        for operand in node.values:
            value = self.run(operand)
            if value.kind is not ValueKind.BOOL:
                op = "||" if short_circuit else "&&"
                raise _Failure(f"'{op}' requires bool operands, got {value.describe()}")
            if value.data is short_circuit:
                return value
        return TRUE if not short_circuit else FALSE

    def _compare(self, node: ast.Compare) -> Value:
        left = self.run(node.left)
        for op, comparator in zip(node.ops, node.comparators, strict=True):
            right = self.run(comparator)
            if not _compare(op, left, right):
                return FALSE
            left = right
        return TRUE

    def _call(self, node: ast.Call) -> Value:
        name = node.func.id  # type: ignore[attr-defined]
        if name == "has":
            present = self._presence(node.args[0])
            return TRUE if present is not None and not present.is_null else FALSE
        arg = self.run(node.args[0])
        if name == "size":
            if arg.kind in {ValueKind.STRING, ValueKind.LIST, ValueKind.MAP}:
                return Value(ValueKind.NUMBER, len(arg.data))
            raise _Failure(f"size() is not defined for {arg.describe()}")
        if name == "int":
            return _to_int(arg)
        if name == "double":
            return _to_double(arg)
        return _to_string(arg)

    def _presence(self, node: ast.AST) -> Value | None:
        if isinstance(node, ast.Attribute | ast.Subscript):
            base = self._presence(node.value)
            if base is None or base.is_null:
                return None
            key = Value.of(node.attr) if isinstance(node, ast.Attribute) else self.run(node.slice)
            try:
                return _select(base, key)
            except _Failure:
                return None
        return self.run(node)


def _select(base: Value, key: Value) -> Value:
    if base.kind is ValueKind.MAP:
        if key.kind is ValueKind.STRING:
            name = key.data
        elif key.kind is ValueKind.NUMBER and float(key.data).is_integer():
            name = str(int(key.data))
        else:
            raise _Failure(f"unsupported map key type: {key.describe()}")
        if name not in base.data:
            raise _Failure(f"no such key: {name}")
        return base.data[name]
    if base.kind is ValueKind.LIST:
        if key.kind is not ValueKind.NUMBER or not float(key.data).is_integer():
            raise _Failure(f"list index must be an integer, got {key.describe()}")
        index = int(key.data)
        if index < 0 or index >= len(base.data):
            raise _Failure(f"index out of range: {index}")
        return base.data[index]
    if base.is_null:
        raise _Failure(f"cannot select {key.to_python()!r} from null")
    raise _Failure(f"cannot select {key.to_python()!r} from {base.describe()}")


def _unary(op: ast.unaryop, operand: Value) -> Value:
    if isinstance(op, ast.Not):
        if operand.kind is not ValueKind.BOOL:
            raise _Failure(f"'!' requires a bool operand, got {operand.describe()}")
        return FALSE if operand.data else TRUE
    if operand.kind is not ValueKind.NUMBER:
        raise _Failure(f"unary minus requires a number, got {operand.describe()}")
    return Value(ValueKind.NUMBER, -operand.data if isinstance(op, ast.USub) else operand.data)


def _binary(op: ast.operator, left: Value, right: Value) -> Value:
    if isinstance(op, ast.Add):
        if left.kind is right.kind and left.kind in {
            ValueKind.NUMBER,
            ValueKind.STRING,
            ValueKind.LIST,
        }:
            return Value(left.kind, left.data + right.data)
        raise _Failure(f"cannot add {left.describe()} and {right.describe()}")

    if left.kind is not ValueKind.NUMBER or right.kind is not ValueKind.NUMBER:
        raise _Failure(f"arithmetic requires numbers, got {left.describe()} and {right.describe()}")
    a, b = left.data, right.data
    if isinstance(op, ast.Sub):
        return Value(ValueKind.NUMBER, a - b)
    if isinstance(op, ast.Mult):
        return Value(ValueKind.NUMBER, a * b)
    if b == 0:
        raise _Failure("division by zero")
    try:
        if isinstance(op, ast.Div):
            return Value(ValueKind.NUMBER, a / b)
        return Value(ValueKind.NUMBER, a % b)
    except (OverflowError, ValueError) as e:
        raise _Failure(f"arithmetic error: {e}") from None


def _compare(op: ast.cmpop, left: Value, right: Value) -> bool:
    if isinstance(op, ast.Eq):
        return left.equals(right)
    if isinstance(op, ast.NotEq):
        return not left.equals(right)
    if isinstance(op, ast.In | ast.NotIn):
        found = _contains(right, left)
        return found if isinstance(op, ast.In) else not found

    if left.kind is not right.kind or left.kind not in {ValueKind.NUMBER, ValueKind.STRING}:
        raise _Failure(f"cannot order {left.describe()} and {right.describe()}")
    a, b = left.data, right.data
    if isinstance(op, ast.Lt):
        return bool(a < b)
    if isinstance(op, ast.LtE):
        return bool(a <= b)
    if isinstance(op, ast.Gt):
        return bool(a > b)
    return bool(a >= b)


def _contains(container: Value, item: Value) -> bool:
    if container.kind is ValueKind.LIST:
        return any(item.equals(element) for element in container.data)
    if container.kind is ValueKind.MAP:
        if item.kind is not ValueKind.STRING:
            raise _Failure(f"map keys are strings, got {item.describe()}")
        return item.data in container.data
    if container.kind is ValueKind.STRING:
        if item.kind is not ValueKind.STRING:
            raise _Failure(f"substring test requires a string, got {item.describe()}")
        return item.data in container.data
    raise _Failure(f"'in' is not defined for {container.describe()}")


def _to_int(arg: Value) -> Value:
    if arg.kind is ValueKind.NUMBER:
        try:
            return Value(ValueKind.NUMBER, int(arg.data))
        except (OverflowError, ValueError):
            raise _Failure(f"cannot convert {arg.data!r} to int") from None
    if arg.kind is ValueKind.STRING:
        try:
            return Value(ValueKind.NUMBER, int(arg.data.strip()))
        except ValueError:
            raise _Failure(f"cannot convert {arg.data!r} to int") from None
    raise _Failure(f"int() is not defined for {arg.describe()}")


def _to_double(arg: Value) -> Value:
    if arg.kind is ValueKind.NUMBER:
        return Value(ValueKind.NUMBER, float(arg.data))
    if arg.kind is ValueKind.STRING:
        try:
            return Value(ValueKind.NUMBER, float(arg.data.strip()))
        except ValueError:
            raise _Failure(f"cannot convert {arg.data!r} to double") from None
    raise _Failure(f"double() is not defined for {arg.describe()}")


def _to_string(arg: Value) -> Value:
    if arg.kind is ValueKind.STRING:
        return arg
    if arg.kind is ValueKind.BOOL:
        return Value(ValueKind.STRING, "true" if arg.data else "false")
    if arg.kind is ValueKind.NUMBER:
        return Value(ValueKind.STRING, str(arg.data))
    if arg.is_null:
        return Value(ValueKind.STRING, "null")
    raise _Failure(f"string() is not defined for {arg.describe()}")


def _as_namespaces(context: ConditionContext) -> Namespaces:
    if context is None:
        return Namespaces.from_mappings()
    if isinstance(context, Namespaces):
        return context
    if isinstance(context, SupportsNamespaces):
        return context.namespaces()
    return Namespaces.from_mappings(
        input=context.get("input"),
        stage=context.get("stage"),
        computed=context.get("computed"),
    )


class ConditionEvaluator:
    """Compile and evaluate condition expressions.

    Compiled expressions are cached by their text. Instances are safe to share
    between threads.
    """

    def __init__(self) -> None:
        self._cache: dict[str, CompiledCondition] = {}
        self._lock = threading.Lock()

    def compile(self, expression: str) -> CompiledCondition:
        """Parse and type-check an expression.

        Raises:
            CompilationError: On syntax errors, unsupported constructs, unknown
                functions or references to undeclared variables.
        """

        with self._lock:
            cached = self._cache.get(expression)
        if cached is not None:
            return cached

        if not expression.strip():
            raise CompilationError(expression, "empty expression")

        source = normalize_operators(expression).strip()
        try:
            tree = ast.parse(source, mode="eval")
        except (SyntaxError, ValueError, RecursionError) as e:
            reason = getattr(e, "msg", None) or str(e) or type(e).__name__
            raise CompilationError(expression, f"syntax error: {reason}") from e

        _validate(tree, expression)
        compiled = CompiledCondition(expression=expression, tree=tree)

        with self._lock:
            self._cache.setdefault(expression, compiled)
        logger.debug("Compiled condition", extra={"expression": expression})
        return compiled

    def evaluate(self, expression: str | None, context: ConditionContext = None) -> bool:
        """Evaluate ``expression`` against ``context``.

        An empty expression is unconditional and returns ``True`` without
        looking at the context.

        Raises:
            CompilationError: If the expression does not compile.
            EvaluationError: If evaluation fails or does not yield a bool.
        """

        if expression is None or not expression.strip():
            return True

        compiled = self.compile(expression)
        return self.evaluate_compiled(compiled, context)

    def evaluate_compiled(self, compiled: CompiledCondition, context: ConditionContext) -> bool:
        try:
            namespaces = _as_namespaces(context)
        except TypeError as e:
            raise EvaluationError(compiled.expression, str(e)) from e

        try:
            result = _Interpreter(namespaces).run(compiled.tree)
        except _Failure as e:
            raise EvaluationError(compiled.expression, str(e)) from None
        except RecursionError as e:
            raise EvaluationError(compiled.expression, "expression nested too deeply") from e
        except (ArithmeticError, ValueError, TypeError) as e:
            raise EvaluationError(compiled.expression, f"{type(e).__name__}: {e}") from e

        if result.kind is not ValueKind.BOOL:
            raise EvaluationError(
                compiled.expression, f"result is not boolean (got {result.describe()})"
            )
        return bool(result.data)
