"""
Interrupt controller — bounds the wall-clock time of one invocation.

The Lua VM calls back into check() every ``interval`` executed instructions
through a count hook, so a pure compute loop is interrupted just like one
that performs I/O.  Once the deadline has passed check() raises
ScriptTimeoutError, and keeps raising on every later call: the sandbox's
pcall/xpcall/coroutine wrappers call check() when a protected call returns,
so a script cannot catch the timeout and carry on.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from lam.exceptions import ScriptTimeoutError

__all__ = ["Deadline", "InterruptController", "DEFAULT_INTERVAL"]

logger = logging.getLogger(__name__)

# VM instructions between two deadline checks
DEFAULT_INTERVAL = 1000


@dataclass(frozen=True)
class Deadline:
    """
    Absolute point on the monotonic clock; ``at=None`` means unbounded.

    timeout — the duration the deadline was created from (for messages)
    """
    at:      Optional[float] = None
    timeout: Optional[float] = None

    @classmethod
    def after(cls, seconds: Optional[float]) -> "Deadline":
        if seconds is None:
            return cls.unbounded()
        return cls(at=time.monotonic() + seconds, timeout=seconds)

    @classmethod
    def unbounded(cls) -> "Deadline":
        return cls()

    @property
    def bounded(self) -> bool:
        return self.at is not None

    def remaining(self) -> Optional[float]:
        """Seconds left (never negative), or None when unbounded."""
        if self.at is None:
            return None
        return max(0.0, self.at - time.monotonic())

    def passed(self) -> bool:
        return self.at is not None and time.monotonic() >= self.at


class InterruptController:
    """
    Deadline tracker wired into the Lua VM's instruction-count hook.

    Usage::

        controller = InterruptController(Deadline.after(1.0))
        controller.install(sandbox)      # before running the script
        ...
        controller.expired               # True if the script was interrupted
    """

    def __init__(self, deadline: Deadline, interval: int = DEFAULT_INTERVAL) -> None:
        if interval < 1:
            raise ValueError("interval must be a positive instruction count")
        self.deadline = deadline
        self.interval = interval
        self.expired = False
        self.checks = 0

    def check(self, *_hook_args) -> None:
        """
        Raise ScriptTimeoutError if the deadline has passed.

        Called by the VM hook (which passes event arguments, ignored here)
        and by the sandbox after every protected call.
        """
        self.checks += 1
        if not self.expired and self.deadline.passed():
            self.expired = True
            logger.debug("Deadline passed after %d checks", self.checks)
        if self.expired:
            if self.deadline.timeout is None:
                raise ScriptTimeoutError("script exceeded its deadline")
            raise ScriptTimeoutError(
                f"script exceeded timeout of {self.deadline.timeout:g}s"
            )

    def install(self, sandbox) -> None:
        """Attach the count hook to *sandbox*'s main Lua thread (no-op when unbounded)."""
        if not self.deadline.bounded:
            return
        sandbox.set_interrupt(self.check, self.interval)
