"""
store — SQLite-backed key-value store shared by all script invocations.

Public API
──────────
StoreEntry        — dataclass describing one persisted row
Store             — get / put / update (atomic, multi-key) / delete / list
StoreTransaction  — state of a single update() call
KeyLockRegistry   — per-name locks serializing overlapping writes
"""

from lam.store.models import StoreEntry
from lam.store.locks import KeyLockRegistry
from lam.store.db import Store, StoreTransaction

__all__ = ["StoreEntry", "Store", "StoreTransaction", "KeyLockRegistry"]
