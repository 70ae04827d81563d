"""
@lam — input readers, the request description and the key-value store.

Lua surface::

    local m = require('@lam')
    m:read('*a')                 -- same formats as io.read
    m:read_unicode(2)            -- n code points
    m.request                    -- table, or nil outside the HTTP front-end
    m.store:get('a')             -- value or nil
    m.store:put('a', 1)          -- previous value or nil
    m.store:update({'a', 'b'}, function(values) ... end, {0, 0})
    m.store.a                    -- same as m.store:get('a')
    m.store.a = 1                -- same as m.store:put('a', 1)

Without a Store in the context every store call returns nil.
"""

import logging
from typing import Any, Optional

from lupa.lua54 import lua_type

from lam import __version__
from lam.exceptions import (
    ScriptTimeoutError,
    StoreError,
    StoreLockTimeoutError,
    ValueConversionError,
)
from lam.value import String, Table, Value

__all__ = ["StoreCapability", "build"]

logger = logging.getLogger(__name__)


def _key(name: Any) -> str:
    if isinstance(name, bytes):
        return name.decode("utf-8", "surrogateescape")
    if isinstance(name, str):
        return name
    raise StoreError(f"store key must be a string, got {lua_type(name) or type(name).__name__}")


class StoreCapability:
    """Script-facing adapter between Lua objects and the context's Store."""

    def __init__(self, engine) -> None:
        self._store = engine.context.store
        self._bridge = engine.bridge
        self._deadline = engine.context.deadline
        self._checkpoint = engine.controller.check

    def _value(self, obj: Any) -> Value:
        try:
            return self._bridge.from_lua(obj)
        except ValueConversionError as exc:
            raise StoreError(f"cannot store value: {exc}") from exc

    def _out(self, value: Optional[Value]) -> Any:
        return None if value is None else self._bridge.to_lua(value)

    def _bounded(self, call, *args):
        """Run a locking store call within what is left of the invocation deadline."""
        try:
            return call(*args, timeout=self._deadline.remaining(), checkpoint=self._checkpoint)
        except StoreLockTimeoutError as exc:
            if self._deadline.passed():
                raise ScriptTimeoutError("deadline passed while waiting for a store lock") from exc
            raise

    def _names(self, names: Any) -> list:
        if isinstance(names, (bytes, str)):
            return [_key(names)]
        table = self._value(names)
        if not isinstance(table, Table) or not table.array:
            raise StoreError("update expects a key or a list of keys")
        keys = []
        for item in table.array:
            if not isinstance(item, String):
                raise StoreError(f"store key must be a string, got {item.kind.value}")
            keys.append(item.text)
        return keys

    def _defaults(self, defaults: Any) -> list:
        if defaults is None:
            return []
        value = self._value(defaults)
        if isinstance(value, Table) and value.array:
            return list(value.array)
        return [value]

    def _results(self, returned: Any, expected: int) -> list:
        """
        Interpret what the update function returned.

        A single table whose array part has one entry per key is the list of
        new values (table.pack(...) works); otherwise the returned values
        themselves are the list.
        """
        items = list(returned) if isinstance(returned, tuple) else [returned]
        values = [self._value(item) for item in items]
        if len(values) == 1 and isinstance(values[0], Table):
            table = values[0]
            if table.array and len(table.array) == expected:
                return list(table.array)
        return values

    # ── Lua-callable ──────────────────────────────────────────────────────

    def get(self, name):
        if self._store is None:
            return None
        return self._out(self._store.get(_key(name)))

    def put(self, name, value):
        if self._store is None:
            return None
        return self._out(self._bounded(self._store.put, _key(name), self._value(value)))

    def update(self, names, fn, defaults=None):
        if self._store is None:
            return None
        if lua_type(fn) != "function":
            raise StoreError("update expects a function as its second argument")
        keys = self._names(names)

        def apply(values: list) -> list:
            return self._results(fn(self._bridge.array_to_lua(values)), len(keys))

        written = self._bounded(self._store.update, keys, apply, self._defaults(defaults))
        return self._bridge.array_to_lua(written)


def build(engine):
    """Module table for require('@lam')."""
    sandbox = engine.sandbox
    capability = StoreCapability(engine)
    store = sandbox.keyed(
        sandbox.module({
            b"get":    capability.get,
            b"put":    capability.put,
            b"update": capability.update,
        }),
        capability.get,
        capability.put,
    )
    request = engine.context.request
    return sandbox.module({
        b"_VERSION":     f"lam {__version__}".encode(),
        b"read":         engine.read,
        b"read_unicode": engine.read_unicode,
        b"request":      None if request is None else engine.bridge.to_lua(request),
        b"store":        store,
    })
