"""Data models for the store module."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from lam.value import Value

__all__ = ["StoreEntry"]


@dataclass
class StoreEntry:
    """
    One persisted row of the store.

    Fields
    ──────
    name        — unique key chosen by the script
    value       — decoded Value
    size        — length in bytes of the encoded value blob
    type_hint   — Value.type_hint at write time ("integer", "table", …)
    created_at  — seconds since epoch, set on first write
    updated_at  — seconds since epoch, bumped on every write
    """
    name:       str
    value:      Value
    size:       int           = 0
    type_hint:  str           = "none"
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    @property
    def updated(self) -> Optional[datetime]:
        """updated_at as an aware UTC datetime (None if unknown)."""
        if self.updated_at is None:
            return None
        return datetime.fromtimestamp(self.updated_at, tz=timezone.utc)

    def __str__(self) -> str:
        return (
            f"StoreEntry(name={self.name!r}, type={self.type_hint}, "
            f"size={self.size})"
        )
