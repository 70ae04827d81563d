"""
ValueBridge — converts between Lua objects (as lupa hands them over) and Values.

Lua → Value
    nil/boolean/number/string map one to one (strings arrive as bytes).
    A table's contiguous integer keys 1..n become the array part; every other
    key becomes a field.  Keys must be scalars.  Functions, coroutines and
    host objects have no Value form.
Value → Lua
    Each Table produces a *new* Lua table, so equal values never share a
    reference (three empty objects stay three tables).  Array-shaped tables
    carry the sandbox's array marker so an empty one still encodes as [].
"""

import logging
from typing import Any, Iterable

from lupa.lua54 import lua_type

from lam.exceptions import ValueConversionError
from lam.value import MAX_DEPTH, NIL, Boolean, Nil, Number, String, Table, Value

__all__ = ["ValueBridge"]

logger = logging.getLogger(__name__)


def _is_int(k: Any) -> bool:
    return type(k) is int


class ValueBridge:
    """Stateless converter bound to one Sandbox."""

    def __init__(self, sandbox) -> None:
        self._sandbox = sandbox

    # ── Lua → Value ───────────────────────────────────────────────────────

    def from_lua(self, obj: Any, depth: int = 0) -> Value:
        """
        Raises:
            ValueConversionError: *obj* (or something inside it) has no Value form.
        """
        if obj is None:
            return NIL
        if isinstance(obj, bool):
            return Boolean(obj)
        if isinstance(obj, (int, float)):
            return Number(obj)
        if isinstance(obj, (bytes, bytearray)):
            return String(bytes(obj))
        kind = lua_type(obj)
        if kind == "table":
            return self._table_from_lua(obj, depth)
        raise ValueConversionError(
            f"cannot convert a {kind or 'host object'} to a value"
        )

    def _table_from_lua(self, table, depth: int) -> Table:
        if depth >= MAX_DEPTH:
            raise ValueConversionError(
                f"table nested deeper than {MAX_DEPTH} levels (recursive table?)"
            )
        items = list(table.items())
        ints = {k: v for k, v in items if _is_int(k) and k >= 1}
        n = 0
        while n + 1 in ints:
            n += 1

        array = [self.from_lua(ints[i], depth + 1) for i in range(1, n + 1)]
        fields = {}
        for k, v in items:
            if _is_int(k) and 1 <= k <= n:
                continue
            key = self.from_lua(k, depth + 1)
            if isinstance(key, (Table, Nil)):
                raise ValueConversionError("table keys must be strings, numbers or booleans")
            fields[key] = self.from_lua(v, depth + 1)
        return Table(array=array, fields=fields, array_hint=self._sandbox.is_array(table))

    # ── Value → Lua ───────────────────────────────────────────────────────

    def to_lua(self, value: Value, depth: int = 0) -> Any:
        if isinstance(value, Nil):
            return None
        if isinstance(value, (Boolean, Number, String)):
            return value.value
        if isinstance(value, Table):
            if depth >= MAX_DEPTH:
                raise ValueConversionError(f"table nested deeper than {MAX_DEPTH} levels")
            table = self._sandbox.array() if value.is_array else self._sandbox.table()
            for i, item in enumerate(value.array, start=1):
                table[i] = self.to_lua(item, depth + 1)
            for key, item in value.fields.items():
                table[self.to_lua(key, depth + 1)] = self.to_lua(item, depth + 1)
            return table
        raise ValueConversionError(f"not a value: {value!r}")

    def array_to_lua(self, values: Iterable[Value]):
        """Lua array table holding *values* in order."""
        table = self._sandbox.array()
        for i, item in enumerate(values, start=1):
            table[i] = self.to_lua(item)
        return table
