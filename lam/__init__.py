"""
lam — run small Lua scripts in a sandbox with a persistent key-value store.

Public API
──────────
evaluate()     — one-shot evaluation, returns an Outcome
Evaluator      — evaluations against a shared Store, with a worker pool
Outcome        — value, captured stdout/stderr, error, duration
ErrorKind      — compile | runtime | timeout | store | capability
Store          — SQLite-backed key-value store
RuntimeConfig  — timeouts, store path, pool size
"""

__version__ = "0.1.0"

from lam.config import RuntimeConfig
from lam.evaluator import ErrorKind, EvaluationError, Evaluator, Outcome, evaluate
from lam.store import Store

__all__ = [
    "__version__",
    "evaluate",
    "Evaluator",
    "Outcome",
    "ErrorKind",
    "EvaluationError",
    "Store",
    "RuntimeConfig",
]
