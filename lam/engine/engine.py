"""
ScriptEngine — compiles one Script into a fresh sandbox and runs it.

Usage::

    ctx = ExecutionContext.create(input=b"lam", timeout=1.0)
    engine = ScriptEngine(Script("return io.read('*a')"), ctx)   # compiles
    engine.evaluate()                                            # String(b"lam")

The engine wires the context into the sandbox: print/io.* go to the
context's sinks and input cursor, require() resolves the virtual modules and
the interrupt controller bounds the run by the context's deadline.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from lam.engine.bridge import ValueBridge
from lam.engine.context import ExecutionContext
from lam.engine.interrupt import DEFAULT_INTERVAL, InterruptController
from lam.engine.sandbox import Sandbox
from lam.exceptions import UnknownModuleError
from lam import modules as virtual_modules
from lam.value import Value

__all__ = ["Script", "ScriptEngine", "check_syntax"]

logger = logging.getLogger(__name__)

ModuleBuilder = Callable[["ScriptEngine"], Any]


@dataclass(frozen=True)
class Script:
    """Immutable script source plus an optional name used in error messages."""
    source: str
    name:   Optional[str] = None

    @property
    def chunkname(self) -> str:
        return self.name or "(script)"


class ScriptEngine:
    """
    One sandboxed Lua state bound to one ExecutionContext.

    Construction compiles the script (ScriptCompileError on a syntax error);
    evaluate() runs it once.  Neither the engine nor its context are reused.
    """

    def __init__(
        self,
        script: Script,
        context: ExecutionContext,
        modules: Optional[dict[str, ModuleBuilder]] = None,
        interval: int = DEFAULT_INTERVAL,
    ) -> None:
        self.script = script
        self.context = context
        self.sandbox = Sandbox()
        self.bridge = ValueBridge(self.sandbox)
        self.controller = InterruptController(context.deadline, interval)
        self._builders = virtual_modules.MODULES if modules is None else modules
        self._loaded: dict[str, Any] = {}

        env = self.sandbox.new_env(
            stdout=context.stdout.write,
            stderr=context.stderr.write,
            read=self.read,
            require=self.require,
        )
        self._chunk = self.sandbox.compile(script.source, script.chunkname, env)

    # ── Host callbacks ────────────────────────────────────────────────────

    def read(self, fmt=None):
        """io.read / @lam:read — formats as InputCursor.read."""
        return self.context.input.read(b"*l" if fmt is None else fmt)

    def read_unicode(self, fmt=None):
        return self.context.input.read_unicode(fmt)

    def require(self, name):
        """
        Resolve a virtual module by name.

        Raises:
            UnknownModuleError: *name* is not one of the virtual modules.
        """
        key = name.decode("utf-8", "replace") if isinstance(name, bytes) else str(name)
        if key not in self._loaded:
            builder = self._builders.get(key)
            if builder is None:
                raise UnknownModuleError(f"module '{key}' not found")
            logger.debug("Loading module %s", key)
            self._loaded[key] = builder(self)
        return self._loaded[key]

    # ── Running ───────────────────────────────────────────────────────────

    def evaluate(self) -> Value:
        """
        Run the script and return its first return value (Nil if none).

        Raises:
            lupa.LuaError:       The script raised an error.
            ScriptTimeoutError:  The deadline passed while the script ran.
            LamError:            A host capability failed and the script did not catch it.
        """
        self.controller.install(self.sandbox)
        started = time.monotonic()
        try:
            result = self._chunk()
        finally:
            self.sandbox.clear_interrupt()
            logger.debug(
                "%s ran for %.3fs (%d interrupt checks)",
                self.script.chunkname, time.monotonic() - started, self.controller.checks,
            )
        if isinstance(result, tuple):
            result = result[0] if result else None
        return self.bridge.from_lua(result)


def check_syntax(source: str, name: Optional[str] = None) -> None:
    """
    Compile *source* without running it.

    Raises:
        ScriptCompileError: The source does not parse.
    """
    sandbox = Sandbox()
    env = sandbox.table()
    sandbox.compile(source, Script(source, name).chunkname, env)
