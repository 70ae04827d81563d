"""
Runtime configuration shared by the evaluator and the front-ends.

Values come from the dataclass defaults, then LAM_* environment variables
(RuntimeConfig.from_env), then command-line flags.
"""

import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

from lam.engine.interrupt import DEFAULT_INTERVAL
from lam.exceptions import LamError

__all__ = ["RuntimeConfig"]

logger = logging.getLogger(__name__)

_TRUE = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class RuntimeConfig:
    """Runtime configuration for Evaluator and the front-ends."""
    timeout:        Optional[float] = 30.0     # seconds; None = unbounded
    store_path:     Optional[str]   = None     # None = in-memory store
    run_migrations: bool            = False
    max_workers:    int             = 8        # Evaluator.submit() pool size
    hook_interval:  int             = DEFAULT_INTERVAL
    lock_timeout:   Optional[float] = 30.0     # seconds to wait for a store key lock

    def __post_init__(self) -> None:
        if self.timeout is not None:
            if self.timeout < 0:
                raise LamError(f"timeout must not be negative, got {self.timeout:g}")
            if self.timeout == 0:
                object.__setattr__(self, "timeout", None)

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "RuntimeConfig":
        """
        Build a config from LAM_TIMEOUT, LAM_STORE_PATH, LAM_RUN_MIGRATIONS
        and LAM_MAX_WORKERS.  LAM_TIMEOUT=0 or "none" means unbounded,
        as does timeout=0 anywhere else.

        Raises:
            LamError: A variable holds a value of the wrong type.
        """
        env = os.environ if environ is None else environ
        config = cls()
        changes: dict = {}
        try:
            if env.get("LAM_TIMEOUT"):
                raw = env["LAM_TIMEOUT"].strip().lower()
                seconds = None if raw == "none" else float(raw)
                changes["timeout"] = seconds
            if env.get("LAM_MAX_WORKERS"):
                changes["max_workers"] = int(env["LAM_MAX_WORKERS"])
        except ValueError as exc:
            raise LamError(f"invalid environment configuration: {exc}") from exc
        if env.get("LAM_STORE_PATH"):
            changes["store_path"] = env["LAM_STORE_PATH"]
        if env.get("LAM_RUN_MIGRATIONS"):
            changes["run_migrations"] = env["LAM_RUN_MIGRATIONS"].strip().lower() in _TRUE
        if changes:
            logger.debug("Configuration from environment: %s", changes)
        return replace(config, **changes)

    def with_overrides(self, **overrides) -> "RuntimeConfig":
        """Copy with every override that is not None applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
