"""
engine — the sandboxed Lua interpreter and everything a single run needs.

Public API
──────────
Script            — immutable source + name
ScriptEngine      — compiles a Script into a fresh sandbox; evaluate() runs it
ExecutionContext  — per-invocation input, output sinks, deadline and store
Deadline          — absolute monotonic deadline (or unbounded)
InterruptController — raises ScriptTimeoutError from the VM hook once expired
check_syntax()    — compile-only check
"""

from lam.engine.context import ExecutionContext
from lam.engine.engine import Script, ScriptEngine, check_syntax
from lam.engine.interrupt import DEFAULT_INTERVAL, Deadline, InterruptController
from lam.engine.streams import InputCursor, OutputSink

__all__ = [
    "Script",
    "ScriptEngine",
    "ExecutionContext",
    "Deadline",
    "InterruptController",
    "DEFAULT_INTERVAL",
    "InputCursor",
    "OutputSink",
    "check_syntax",
]
