"""
KeyLockRegistry — per-name locks that serialize overlapping store writes.

Writers lock exactly the names they touch, so updates on disjoint key sets
run concurrently while overlapping ones queue behind each other.  Locks are
always taken in sorted order, which rules out lock-order deadlocks between
two multi-key updates.

A thread that already holds a name (inside its own update function) and asks
for it again gets a StoreError instead of deadlocking on itself.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional

from lam.exceptions import StoreError, StoreLockTimeoutError

__all__ = ["KeyLockRegistry"]

logger = logging.getLogger(__name__)


class _Slot:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyLockRegistry:
    """Hands out one lock per store name; idle locks are dropped."""

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._timeout = timeout
        self._guard = threading.Lock()
        self._slots: dict[str, _Slot] = {}
        self._held = threading.local()

    # ── Internal helpers ──────────────────────────────────────────────────

    def _held_names(self) -> set:
        names = getattr(self._held, "names", None)
        if names is None:
            names = self._held.names = set()
        return names

    def _checkout(self, name: str) -> _Slot:
        with self._guard:
            slot = self._slots.get(name)
            if slot is None:
                slot = self._slots[name] = _Slot()
            slot.users += 1
            return slot

    def _checkin(self, name: str, slot: _Slot) -> None:
        with self._guard:
            slot.users -= 1
            if slot.users == 0:
                self._slots.pop(name, None)

    # ── Public API ────────────────────────────────────────────────────────

    @contextmanager
    def hold(
        self, names: Iterable[str], timeout: Optional[float] = None
    ) -> Iterator[list[str]]:
        """
        Lock every name in *names* for the duration of the with-block.

        *timeout* further limits the wait below the registry-wide timeout.

        Yields:
            The de-duplicated, sorted list of locked names.

        Raises:
            StoreError: The current thread already holds one of the names.
            StoreLockTimeoutError: A lock was not acquired within the timeout.
        """
        ordered = sorted(set(names))
        held = self._held_names()
        nested = held.intersection(ordered)
        if nested:
            raise StoreError(
                f"key {sorted(nested)[0]!r} is locked by an enclosing update"
            )

        limits = [t for t in (self._timeout, timeout) if t is not None]
        deadline = time.monotonic() + max(0.0, min(limits)) if limits else None
        acquired: list[tuple[str, _Slot]] = []
        try:
            for name in ordered:
                slot = self._checkout(name)
                if deadline is None:
                    ok = slot.lock.acquire()
                else:
                    ok = slot.lock.acquire(timeout=max(0.0, deadline - time.monotonic()))
                if not ok:
                    self._checkin(name, slot)
                    raise StoreLockTimeoutError(
                        f"timed out waiting for lock on key {name!r}"
                    )
                acquired.append((name, slot))
                held.add(name)
            yield ordered
        finally:
            for name, slot in reversed(acquired):
                held.discard(name)
                slot.lock.release()
                self._checkin(name, slot)

    def active(self) -> int:
        """Number of names currently locked or waited on."""
        with self._guard:
            return len(self._slots)
