"""
Sandbox — one restricted Lua 5.4 state per invocation.

Design goals
────────────
* Scripts see only the globals built by prelude.lua: base functions, copies
  of string/table/math/utf8, a few os time helpers, guarded pcall/xpcall and
  coroutines, and the host-provided print/io/require.
* No path from script code to Python: eval registration is off and every
  Python attribute access from Lua is rejected by the attribute filter.
* Strings cross the boundary as raw bytes (``encoding=None``), so binary
  input and partial UTF-8 sequences reach scripts untouched.

Public surface
──────────────
Sandbox().new_env(stdout, stderr, read, require) → Lua table (script globals)
Sandbox().compile(source, chunkname, env)      → Lua function
Sandbox().module(fields)                       → module table
Sandbox().set_interrupt(check, interval)       → installs the count hook
"""

import logging
from pathlib import Path
from typing import Callable, Union

from lupa.lua54 import LuaRuntime

from lam.exceptions import ScriptCompileError

__all__ = ["Sandbox"]

logger = logging.getLogger(__name__)

_PRELUDE_PATH = Path(__file__).parent / "prelude.lua"


def _deny_attribute_access(obj, attr_name, is_setting):
    raise AttributeError(f"access to host attribute {attr_name!r} is not allowed")


def _to_bytes(s: Union[str, bytes]) -> bytes:
    return s.encode("utf-8") if isinstance(s, str) else bytes(s)


class Sandbox:
    """Owns a LuaRuntime and the prelude helpers loaded into it."""

    _prelude_source: bytes = b""

    def __init__(self) -> None:
        self.runtime = LuaRuntime(
            encoding=None,
            register_eval=False,
            unpack_returned_tuples=True,
            attribute_filter=_deny_attribute_access,
        )
        self._prelude = self.runtime.execute(self._load_prelude())

    @classmethod
    def _load_prelude(cls) -> bytes:
        if not cls._prelude_source:
            cls._prelude_source = _PRELUDE_PATH.read_bytes()
        return cls._prelude_source

    def _helper(self, name: bytes):
        return self._prelude[name]

    # ── Environment ───────────────────────────────────────────────────────

    def new_env(
        self,
        stdout: Callable[[bytes], None],
        stderr: Callable[[bytes], None],
        read: Callable,
        require: Callable,
    ):
        """Build the global table a script runs with."""
        host = self.runtime.table_from({
            b"stdout":  stdout,
            b"stderr":  stderr,
            b"read":    read,
            b"require": require,
        })
        return self._helper(b"new_env")(host)

    def compile(self, source: Union[str, bytes], chunkname: str, env):
        """
        Compile *source* as a text chunk bound to *env*.

        Raises:
            ScriptCompileError: The source does not parse.
        """
        fn, err = self._helper(b"compile")(
            _to_bytes(source), _to_bytes("=" + chunkname), env
        )
        if fn is None:
            message = err.decode("utf-8", "replace") if isinstance(err, bytes) else str(err)
            raise ScriptCompileError(message)
        return fn

    # ── Values and modules ────────────────────────────────────────────────

    def table(self):
        return self.runtime.table()

    def array(self):
        """New empty table marked as a JSON array."""
        return self._helper(b"array")()

    def is_array(self, table) -> bool:
        return bool(self._helper(b"is_array")(table))

    def module(self, fields: dict):
        """Wrap *fields* ({bytes: callable | value}) into a module table."""
        return self._helper(b"module")(self.runtime.table_from(fields))

    def keyed(self, module, get: Callable, put: Callable):
        """Let *module* answer unknown field reads with get(k) and writes with put(k, v)."""
        return self._helper(b"keyed")(module, get, put)

    # ── Interrupts ────────────────────────────────────────────────────────

    def set_interrupt(self, check: Callable, interval: int) -> None:
        """Call *check* every *interval* VM instructions, in every coroutine the script creates."""
        self._helper(b"set_interrupt")(check, interval)

    def clear_interrupt(self) -> None:
        """Remove the count hook; later calls into the state run unchecked."""
        self._helper(b"clear_interrupt")()
