"""
Value model — the tagged union every value crossing a boundary is turned into.

Script return values, store entries and JSON documents are all expressed as
one of five variants::

    Nil | Boolean(bool) | Number(int | float) | String(bytes) | Table

Table keeps an *array part* (keys 1..n) apart from its *fields* (every other
key).  When a table is flattened to JSON-compatible data, a non-empty array
part wins and the fields are dropped:

    {true, num = 1.23, "string"}   →   [true, "string"]

The loss only ever goes in that direction and is relied upon by scripts that
return ``table.pack(...)`` (which carries an extra ``n`` field).
"""

import json
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union

from lam.exceptions import ValueConversionError

__all__ = [
    "ValueKind",
    "Value",
    "Nil",
    "Boolean",
    "Number",
    "String",
    "Table",
    "NIL",
    "MAX_DEPTH",
    "value_from_plain",
    "value_to_json",
    "value_from_json",
]

# Nesting limit for conversions; also what stops self-referencing tables.
MAX_DEPTH = 100


class ValueKind(str, Enum):
    """Tag of a Value variant."""
    NIL     = "nil"
    BOOLEAN = "boolean"
    NUMBER  = "number"
    STRING  = "string"
    TABLE   = "table"


class Value:
    """Common base of all variants.  Never instantiated directly."""

    kind: ClassVar[ValueKind]

    @property
    def type_hint(self) -> str:
        """Short type label persisted next to store entries."""
        raise NotImplementedError

    def to_plain(self, depth: int = 0) -> Any:
        """Convert to JSON-compatible Python data (None, bool, int, float, str, list, dict)."""
        raise NotImplementedError

    def render(self) -> str:
        """
        Text rendering used by front-ends.

        Strings are emitted raw, nil as an empty string, everything else as JSON.
        """
        return json.dumps(self.to_plain(), ensure_ascii=False, separators=(",", ":"))


@dataclass(frozen=True)
class Nil(Value):
    kind: ClassVar[ValueKind] = ValueKind.NIL

    @property
    def type_hint(self) -> str:
        return "none"

    def to_plain(self, depth: int = 0) -> Any:
        return None

    def render(self) -> str:
        return ""


NIL = Nil()


@dataclass(frozen=True)
class Boolean(Value):
    value: bool
    kind: ClassVar[ValueKind] = ValueKind.BOOLEAN

    @property
    def type_hint(self) -> str:
        return "boolean"

    def to_plain(self, depth: int = 0) -> Any:
        return self.value


@dataclass(frozen=True)
class Number(Value):
    """Lua number.  Keeps the integer/float subtype so 1 never prints as 1.0."""
    value: Union[int, float]
    kind: ClassVar[ValueKind] = ValueKind.NUMBER

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            raise ValueConversionError(f"not a number: {self.value!r}")

    @property
    def type_hint(self) -> str:
        return "integer" if isinstance(self.value, int) else "number"

    def to_plain(self, depth: int = 0) -> Any:
        return self.value


@dataclass(frozen=True)
class String(Value):
    """Lua string — raw bytes, not necessarily valid UTF-8.  str input is UTF-8 encoded."""
    value: bytes
    kind: ClassVar[ValueKind] = ValueKind.STRING

    def __post_init__(self) -> None:
        if isinstance(self.value, str):
            object.__setattr__(self, "value", self.value.encode("utf-8"))
        elif isinstance(self.value, (bytearray, memoryview)):
            object.__setattr__(self, "value", bytes(self.value))
        elif not isinstance(self.value, bytes):
            raise ValueConversionError(f"not a string: {self.value!r}")

    @property
    def text(self) -> str:
        """Decoded form; undecodable bytes survive as lone surrogates."""
        return self.value.decode("utf-8", "surrogateescape")

    @property
    def type_hint(self) -> str:
        return "string"

    def to_plain(self, depth: int = 0) -> Any:
        return self.text

    def render(self) -> str:
        return self.value.decode("utf-8", "replace")


@dataclass
class Table(Value):
    """
    Lua table.

    array      — values for the contiguous keys 1..n, in order
    fields     — every other key; keys are scalar Values
    array_hint — set on tables decoded from JSON arrays so an *empty* one
                 still encodes as [] instead of {}
    """
    array:      list = field(default_factory=list)
    fields:     dict = field(default_factory=dict)
    array_hint: bool = field(default=False, compare=False)
    kind: ClassVar[ValueKind] = ValueKind.TABLE

    @property
    def is_array(self) -> bool:
        """True iff the table flattens to a JSON array."""
        if self.array:
            return True
        return self.array_hint and not self.fields

    @property
    def type_hint(self) -> str:
        return "list" if self.is_array else "table"

    def to_plain(self, depth: int = 0) -> Any:
        if depth >= MAX_DEPTH:
            raise ValueConversionError(f"table nested deeper than {MAX_DEPTH} levels")
        if self.is_array:
            return [v.to_plain(depth + 1) for v in self.array]
        plain: dict = {}
        for k, v in self.fields.items():
            text = _key_text(k)
            if text in plain:
                raise ValueConversionError(f"duplicate key {text!r} after conversion to JSON")
            plain[text] = v.to_plain(depth + 1)
        return plain


# ── Helpers ───────────────────────────────────────────────────────────────────

def _format_number(n: Union[int, float]) -> str:
    """Format a number the way Lua's tostring() does."""
    if isinstance(n, int):
        return str(n)
    if math.isinf(n):
        return "inf" if n > 0 else "-inf"
    if math.isnan(n):
        return "nan"
    if n.is_integer():
        return f"{n:.1f}"
    return f"{n:.14g}"


def _key_text(key: Value) -> str:
    if isinstance(key, String):
        return key.text
    if isinstance(key, Number):
        return _format_number(key.value)
    if isinstance(key, Boolean):
        return "true" if key.value else "false"
    raise ValueConversionError(f"unsupported table key of type {key.kind.value}")


def value_from_plain(obj: Any, depth: int = 0) -> Value:
    """
    Build a Value from JSON-compatible Python data.

    Lists become array tables (with array_hint set), dicts become field tables.
    """
    if depth >= MAX_DEPTH:
        raise ValueConversionError(f"data nested deeper than {MAX_DEPTH} levels")
    if isinstance(obj, Value):
        return obj
    if obj is None:
        return NIL
    if isinstance(obj, bool):
        return Boolean(obj)
    if isinstance(obj, (int, float)):
        return Number(obj)
    if isinstance(obj, str):
        return String(obj.encode("utf-8", "surrogateescape"))
    if isinstance(obj, (bytes, bytearray)):
        return String(bytes(obj))
    if isinstance(obj, (list, tuple)):
        return Table(array=[value_from_plain(v, depth + 1) for v in obj], array_hint=True)
    if isinstance(obj, dict):
        fields = {}
        for k, v in obj.items():
            key = value_from_plain(k, depth + 1)
            if isinstance(key, (Table, Nil)):
                raise ValueConversionError(f"unsupported table key: {k!r}")
            fields[key] = value_from_plain(v, depth + 1)
        return Table(fields=fields)
    raise ValueConversionError(f"cannot convert {type(obj).__name__} to a value")


def value_to_json(value: Value) -> str:
    """
    Encode *value* as canonical JSON: sorted keys, compact separators.

    Raises:
        ValueConversionError: NaN/Infinity, unsupported keys or excessive nesting.
    """
    try:
        return json.dumps(
            value.to_plain(),
            ensure_ascii=False,
            allow_nan=False,
            separators=(",", ":"),
            sort_keys=True,
        )
    except ValueError as exc:
        raise ValueConversionError(str(exc)) from exc


def value_from_json(text: Union[str, bytes]) -> Value:
    """
    Decode JSON text into a Value.

    Raises:
        ValueConversionError: *text* is not valid JSON.
    """
    if isinstance(text, (bytes, bytearray)):
        text = bytes(text).decode("utf-8", "surrogateescape")
    try:
        data = json.loads(text)
    except (ValueError, RecursionError) as exc:
        raise ValueConversionError(f"invalid JSON: {exc}") from exc
    return value_from_plain(data)
