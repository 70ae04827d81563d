"""
ExecutionContext — everything one invocation owns besides its Lua state.

A context is created per invocation by a front-end (or by the Evaluator on
its behalf) and discarded afterwards.  Only the Store handle is shared.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

from lam.engine.interrupt import Deadline
from lam.engine.streams import InputCursor, OutputSink
from lam.store import Store
from lam.value import Value

__all__ = ["ExecutionContext"]


@dataclass
class ExecutionContext:
    """
    Per-invocation state handed to the ScriptEngine.

    Fields
    ──────
    input    — cursor over the invocation's input bytes
    stdout   — sink for print() / io.write()
    stderr   — sink for io.stderr:write()
    deadline — when the invocation must stop (unbounded by default)
    store    — shared Store, or None (store calls then return nil)
    request  — request description exposed as require('@lam').request
    """
    input:    InputCursor      = field(default_factory=InputCursor)
    stdout:   OutputSink       = field(default_factory=OutputSink)
    stderr:   OutputSink       = field(default_factory=OutputSink)
    deadline: Deadline         = field(default_factory=Deadline.unbounded)
    store:    Optional[Store]  = None
    request:  Optional[Value]  = None

    @classmethod
    def create(
        cls,
        input: Union[bytes, str] = b"",
        timeout: Optional[float] = None,
        store: Optional[Store] = None,
        request: Optional[Value] = None,
    ) -> "ExecutionContext":
        """Build a context whose deadline starts counting now."""
        return cls(
            input=InputCursor(input),
            deadline=Deadline.after(timeout),
            store=store,
            request=request,
        )
