"""
MODULE OVERVIEW:
Declarative payload schemas and the recursive validator that checks JSON
bodies against them.

WHAT IS HAPPENING HERE:
A schema is a mapping of field name -> node. A node is exactly one of
`Primitive`, `ArrayOf` or `ObjectOf`, so there is no such thing as a node that
is "both an array and an object" or "nothing at all". The validator walks the
payload depth-first in schema field order and raises the FIRST problem it
finds as a `ValidationError` whose message quotes the offending field path,
e.g. `"items[2].qty"`. Errors are never aggregated.

Example:
    LOGIN = {
        "user": string(min_length=1),
        "pass": string(min_length=1),
        "remember": boolean(optional=True),
    }
    validate({"user": "a", "pass": "b"}, LOGIN)
"""
import math
import re
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Union

from roomgate.shared.errors import SchemaDefinitionError, ValidationError

PrimitiveKind = Literal["number", "string", "boolean"]


@dataclass(frozen=True)
class NumberConstraints:
    min: float
    max: float | None = None


@dataclass(frozen=True)
class StringConstraints:
    min_length: int
    max_length: int | None = None
    pattern: str | None = None
    _compiled: re.Pattern | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.pattern is not None:
            object.__setattr__(self, "_compiled", re.compile(self.pattern))

    def matches(self, value: str) -> bool:
        return self._compiled is None or self._compiled.search(value) is not None


@dataclass(frozen=True)
class Primitive:
    kind: PrimitiveKind
    constraints: NumberConstraints | StringConstraints | None = None
    optional: bool = False

    def __post_init__(self):
        expected = {"number": NumberConstraints, "string": StringConstraints, "boolean": type(None)}
        if self.kind not in expected:
            raise SchemaDefinitionError(f"unknown primitive kind: {self.kind!r}")
        if not isinstance(self.constraints, expected[self.kind]):
            raise SchemaDefinitionError(
                f"{self.kind} node needs {expected[self.kind].__name__}, got {type(self.constraints).__name__}"
            )


@dataclass(frozen=True)
class ArrayOf:
    element: "SchemaNode"
    optional: bool = False


@dataclass(frozen=True)
class ObjectOf:
    fields: Mapping[str, "SchemaNode"]
    optional: bool = False


SchemaNode = Union[Primitive, ArrayOf, ObjectOf]
Schema = Mapping[str, SchemaNode]


# Builders used when declaring routes.

def number(min: float, max: float | None = None, optional: bool = False) -> Primitive:
    return Primitive("number", NumberConstraints(min, max), optional)


def string(min_length: int, max_length: int | None = None, pattern: str | None = None,
           optional: bool = False) -> Primitive:
    return Primitive("string", StringConstraints(min_length, max_length, pattern), optional)


def boolean(optional: bool = False) -> Primitive:
    return Primitive("boolean", None, optional)


def array(element: SchemaNode, optional: bool = False) -> ArrayOf:
    return ArrayOf(element, optional)


def obj(fields: Schema, optional: bool = False) -> ObjectOf:
    return ObjectOf(fields, optional)


# Validation

PREFIX = "Check the submitted data."


def _fail(path: str, problem: str) -> ValidationError:
    return ValidationError(path, f'{PREFIX} Value "{path}" {problem}')


def _join(parent: str, key: str) -> str:
    return f"{parent}.{key}" if parent else key


def _is_number(value: Any) -> bool:
    # bool is a subclass of int but is not a JSON number; NaN and Infinity are not either
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, int) and not isinstance(value, bool)


def _check_primitive(value: Any, node: Primitive, path: str) -> None:
    if node.kind == "boolean":
        if not isinstance(value, bool):
            raise _fail(path, "has invalid data")
    elif node.kind == "number":
        limits = node.constraints
        if not _is_number(value):
            raise _fail(path, "has invalid data")
        if value < limits.min:
            raise _fail(path, f"is less than the minimum of {limits.min}")
        if limits.max is not None and value > limits.max:
            raise _fail(path, f"is greater than the maximum of {limits.max}")
    elif node.kind == "string":
        limits = node.constraints
        if not isinstance(value, str):
            raise _fail(path, "has invalid data")
        if len(value) < limits.min_length:
            raise _fail(path, f"is shorter than {limits.min_length} characters")
        if limits.max_length is not None and len(value) > limits.max_length:
            raise _fail(path, f"is longer than {limits.max_length} characters")
        if not limits.matches(value):
            raise _fail(path, "does not match the expected format")


def _check_node(value: Any, node: SchemaNode, path: str) -> None:
    if isinstance(node, Primitive):
        _check_primitive(value, node, path)
    elif isinstance(node, ArrayOf):
        if not isinstance(value, list):
            raise _fail(path, "has invalid data")
        for index, item in enumerate(value):
            _check_node(item, node.element, f"{path}[{index}]")
    elif isinstance(node, ObjectOf):
        _check_object(value, node.fields, path)
    else:
        raise SchemaDefinitionError(f"not a schema node: {node!r}")


def _check_object(payload: Any, schema: Schema, path: str) -> None:
    if not isinstance(payload, dict):
        if path:
            raise _fail(path, "has invalid data")
        raise ValidationError("", f"{PREFIX} The payload must be a JSON object")

    for key in payload:
        if key not in schema:
            raise _fail(_join(path, key), "is not expected")

    for key, node in schema.items():
        field_path = _join(path, key)
        if key not in payload:
            if node.optional:
                continue
            raise ValidationError(field_path, f'{PREFIX} Value "{field_path}" is missing')
        value = payload[key]
        if node.optional and isinstance(node, ArrayOf) and value == []:
            continue
        _check_node(value, node, field_path)


def validate(payload: Any, schema: Schema) -> None:
    """
    Check `payload` against `schema`.

    Returns None when the payload is accepted, raises `ValidationError`
    for the first field that breaks the schema otherwise.
    """
    _check_object(payload, schema, "")
