"""
Evaluator — the single entry point every front-end goes through.

Usage::

    from lam.evaluator import evaluate
    outcome = evaluate("return 1 + 1")
    outcome.value          # Number(2)

    evaluator = Evaluator(store=Store(), config=RuntimeConfig(timeout=1.0))
    outcome = evaluator.evaluate(script, input=b"lam")
    future = evaluator.submit(script, input=b"lam")   # runs on the worker pool

An evaluation never raises for script-caused failures.  Every failure is
classified into an ErrorKind and reported on the Outcome together with
whatever the script printed before it failed.
"""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from lupa.lua54 import LuaError

from lam.config import RuntimeConfig
from lam.engine import ExecutionContext, Script, ScriptEngine
from lam.exceptions import (
    CapabilityError,
    ScriptCompileError,
    ScriptRuntimeError,
    ScriptTimeoutError,
    StoreError,
)
from lam.store import Store
from lam.value import NIL, Value

__all__ = [
    "ErrorKind",
    "EvaluationError",
    "Outcome",
    "Evaluator",
    "ExecutionContext",
    "evaluate",
]

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Category of a failed evaluation."""
    COMPILE    = "compile"
    RUNTIME    = "runtime"
    TIMEOUT    = "timeout"
    STORE      = "store"
    CAPABILITY = "capability"


@dataclass(frozen=True)
class EvaluationError:
    kind:    ErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value} error: {self.message}"


@dataclass
class Outcome:
    """
    Result of one evaluation.

    Fields
    ──────
    value    — the script's first return value (Nil on error or no return)
    stdout   — bytes printed to stdout, partial if the script failed
    stderr   — bytes written to stderr, partial if the script failed
    error    — None on success
    duration — wall-clock seconds, compile included
    """
    value:    Value                     = NIL
    stdout:   bytes                     = b""
    stderr:   bytes                     = b""
    error:    Optional[EvaluationError] = None
    duration: float                     = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


def _classify(exc: BaseException, timed_out: bool) -> EvaluationError:
    """Map an exception escaping the engine onto an EvaluationError."""
    if timed_out or isinstance(exc, ScriptTimeoutError):
        return EvaluationError(ErrorKind.TIMEOUT, str(exc))
    if isinstance(exc, ScriptCompileError):
        return EvaluationError(ErrorKind.COMPILE, str(exc))
    if isinstance(exc, StoreError):
        return EvaluationError(ErrorKind.STORE, str(exc))
    if isinstance(exc, CapabilityError):
        return EvaluationError(ErrorKind.CAPABILITY, str(exc))
    return EvaluationError(ErrorKind.RUNTIME, str(exc))


class Evaluator:
    """
    Runs scripts against one shared Store.

    Args:
        store:  Store shared by every invocation; None disables the store.
        config: Timeouts, worker count and hook interval.
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        config: Optional[RuntimeConfig] = None,
    ) -> None:
        self.store = store
        self.config = config or RuntimeConfig()
        self._pool: Optional[ThreadPoolExecutor] = None

    def evaluate(
        self,
        script: Union[Script, str],
        input: Union[bytes, str] = b"",
        timeout: Optional[float] = None,
        request: Optional[Value] = None,
    ) -> Outcome:
        """
        Compile and run *script* once.

        Args:
            script:  Script or bare source.
            input:   Bytes served to io.read() / @lam:read().
            timeout: Seconds; overrides config.timeout when given.
            request: Value exposed as require('@lam').request.
        """
        if isinstance(script, str):
            script = Script(script)
        if timeout is None:
            timeout = self.config.timeout
        context = ExecutionContext.create(
            input=input, timeout=timeout, store=self.store, request=request
        )
        return self.run(script, context)

    def run(self, script: Script, context: ExecutionContext) -> Outcome:
        """Evaluate *script* with a context the caller built."""
        started = time.monotonic()
        engine = None
        value: Value = NIL
        error = None
        try:
            engine = ScriptEngine(script, context, interval=self.config.hook_interval)
            value = engine.evaluate()
        except (LuaError, ScriptCompileError, ScriptRuntimeError, ScriptTimeoutError,
                StoreError, CapabilityError) as exc:
            timed_out = engine is not None and engine.controller.expired
            error = _classify(exc, timed_out)
            logger.debug("%s failed: %s", script.chunkname, error)
        except Exception as exc:
            # host-level misuse, e.g. calling a capability with missing arguments
            logger.debug("%s raised %s", script.chunkname, type(exc).__name__, exc_info=True)
            timed_out = engine is not None and engine.controller.expired
            error = _classify(exc, timed_out) if timed_out else EvaluationError(
                ErrorKind.RUNTIME, f"{type(exc).__name__}: {exc}"
            )
        duration = time.monotonic() - started
        logger.debug("%s evaluated in %.3fs", script.chunkname, duration)
        return Outcome(
            value=value,
            stdout=context.stdout.getvalue(),
            stderr=context.stderr.getvalue(),
            error=error,
            duration=duration,
        )

    def submit(
        self,
        script: Union[Script, str],
        input: Union[bytes, str] = b"",
        timeout: Optional[float] = None,
        request: Optional[Value] = None,
    ) -> "Future[Outcome]":
        """Run evaluate() on the worker pool."""
        if self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=self.config.max_workers, thread_name_prefix="lam-eval"
            )
        return self._pool.submit(self.evaluate, script, input, timeout, request)

    def shutdown(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None


def evaluate(
    script_source: str,
    name: Optional[str] = None,
    input: Union[bytes, str] = b"",
    timeout: Optional[float] = None,
    store: Optional[Store] = None,
) -> Outcome:
    """
    One-shot evaluation without a configured Evaluator.

    timeout=None means unbounded here, unlike Evaluator.evaluate() which
    falls back to the configured default.
    """
    evaluator = Evaluator(store=store, config=RuntimeConfig(timeout=timeout))
    return evaluator.evaluate(Script(script_source, name), input=input)
