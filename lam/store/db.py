"""
Store — SQLite-backed key-value persistence shared by all invocations.

Usage::

    store = Store()                                   # in-memory, migrated
    store = Store("~/.lam/store.db", run_migrations=True)

    store.put("a", Number(1))
    store.get("a")                                    # Number(1)

    # Atomic read-modify-write over several keys
    store.update(
        ["alice", "bob"],
        lambda v: [Number(v[0].value - 100), Number(v[1].value + 100)],
        [Number(0), Number(0)],
    )

Writes to a name are serialized through KeyLockRegistry; the SQLite
connection itself is only held for the few statements of each call and never
while an update function (i.e. script code) is running.  An update therefore
writes all of its values in one SQLite transaction after the function
returns, or nothing at all if it raises.
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence

from lam.exceptions import MigrationError, StoreError, ValueConversionError
from lam.store.locks import KeyLockRegistry
from lam.store.models import StoreEntry
from lam.value import NIL, Value, value_from_json, value_to_json

__all__ = ["Store", "StoreTransaction", "UpdateFn"]

logger = logging.getLogger(__name__)

# Directory of numbered *.sql migrations bundled with this package
_MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# Default time to wait for a key lock before giving up (seconds)
DEFAULT_LOCK_TIMEOUT = 30.0

_SQL_GET = "SELECT value FROM store WHERE name = ?"
_SQL_UPSERT = """
    INSERT INTO store (name, value, size, type) VALUES (?, ?, ?, ?)
    ON CONFLICT(name) DO UPDATE SET
        value = excluded.value,
        size = excluded.size,
        type = excluded.type,
        updated_at = strftime('%s', 'now')
"""
_SQL_DELETE = "DELETE FROM store WHERE name = ?"
_SQL_LIST = """
    SELECT name, value, size, type, created_at, updated_at
    FROM store ORDER BY name
"""

UpdateFn = Callable[[list], Sequence[Value]]

# Raises to abort a write, e.g. when the caller's deadline has passed
Checkpoint = Callable[[], None]


@dataclass
class StoreTransaction:
    """
    State of one update() call.

    names     — requested names, in caller order
    defaults  — caller defaults, padded with Nil to len(names)
    snapshot  — current value (or default) per name, read under the key locks
    pending   — values staged by the update function, written on commit
    """
    names:    list
    defaults: list
    snapshot: list = field(default_factory=list)
    pending:  list = field(default_factory=list)

    @classmethod
    def begin(cls, names: Sequence[str], defaults: Optional[Sequence[Value]]) -> "StoreTransaction":
        defaults = list(defaults or [])[: len(names)]
        defaults += [NIL] * (len(names) - len(defaults))
        for d in defaults:
            if not isinstance(d, Value):
                raise StoreError(f"default is not a value: {d!r}")
        return cls(names=list(names), defaults=defaults)

    def stage(self, values: Sequence[Value]) -> None:
        """Validate the update function's result and keep it for commit."""
        values = list(values)
        if len(values) != len(self.names):
            raise StoreError(
                f"update function returned {len(values)} values for "
                f"{len(self.names)} keys"
            )
        for v in values:
            if not isinstance(v, Value):
                raise StoreError(f"update function returned a non-value: {v!r}")
        self.pending = values


def _check_name(name: object) -> str:
    if not isinstance(name, str) or not name:
        raise StoreError(f"store key must be a non-empty string, got {name!r}")
    return name


class Store:
    """
    Keyed Value storage with get / put / atomic multi-key update.

    Pass ``db_path=None`` (default) for an ephemeral in-memory database, which
    is always migrated.  File-backed databases are migrated only when
    ``run_migrations`` is set; schema setup is otherwise an explicit step
    (``lam store migrate``).
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        run_migrations: bool = False,
        lock_timeout: Optional[float] = DEFAULT_LOCK_TIMEOUT,
    ) -> None:
        self._in_memory = db_path is None or db_path == ":memory:"
        if self._in_memory:
            self._db_path = ":memory:"
        else:
            path = Path(db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            self._db_path = str(path)
        self._conn_lock = threading.RLock()
        self._locks = KeyLockRegistry(timeout=lock_timeout)
        self._conn = self._connect()
        logger.debug("Opened store at %s", self._db_path)
        if self._in_memory or run_migrations:
            self.migrate()

    @classmethod
    def open(
        cls,
        path: Optional[str] = None,
        run_migrations: bool = False,
        lock_timeout: Optional[float] = DEFAULT_LOCK_TIMEOUT,
    ) -> "Store":
        """Alias of the constructor that reads better at call sites."""
        return cls(path, run_migrations=run_migrations, lock_timeout=lock_timeout)

    # ── Internal helpers ──────────────────────────────────────────────────

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self._db_path, check_same_thread=False, isolation_level=None
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA busy_timeout=5000")
            conn.execute("PRAGMA foreign_keys=OFF")
            if not self._in_memory:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.Error as exc:
            raise StoreError(f"cannot open store {self._db_path}: {exc}") from exc
        return conn

    @staticmethod
    def _encode(value: Value) -> tuple[bytes, int, str]:
        if not isinstance(value, Value):
            raise StoreError(f"cannot store non-value {value!r}")
        try:
            blob = value_to_json(value).encode("utf-8", "surrogateescape")
        except ValueConversionError as exc:
            raise StoreError(f"cannot store value: {exc}") from exc
        return blob, len(blob), value.type_hint

    @staticmethod
    def _decode(blob: bytes) -> Value:
        try:
            return value_from_json(bytes(blob))
        except ValueConversionError as exc:
            raise StoreError(f"corrupt store value: {exc}") from exc

    def _read(self, name: str) -> Optional[Value]:
        row = self._conn.execute(_SQL_GET, (name,)).fetchone()
        return self._decode(row["value"]) if row else None

    def _write(self, rows: list[tuple[str, Value]]) -> None:
        """Upsert *rows* in a single transaction."""
        encoded = [(name, *self._encode(value)) for name, value in rows]
        with self._conn_lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                self._conn.executemany(_SQL_UPSERT, encoded)
                self._conn.execute("COMMIT")
            except sqlite3.Error as exc:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise StoreError(f"store write failed: {exc}") from exc

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> StoreEntry:
        return StoreEntry(
            name=row["name"],
            value=Store._decode(row["value"]),
            size=row["size"],
            type_hint=row["type"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ── Schema ────────────────────────────────────────────────────────────

    def current_version(self) -> int:
        """Number of migrations applied to this database."""
        with self._conn_lock:
            return self._conn.execute("PRAGMA user_version").fetchone()[0]

    def migrate(self) -> int:
        """
        Apply pending migrations.  Safe to call any number of times.

        Returns:
            The schema version after migrating.

        Raises:
            MigrationError: A migration script failed; it is rolled back.
        """
        scripts = sorted(_MIGRATIONS_DIR.glob("*.sql"))
        with self._conn_lock:
            version = self.current_version()
            for number, script in enumerate(scripts, start=1):
                if number <= version:
                    continue
                sql = script.read_text(encoding="utf-8")
                logger.debug("Applying migration %s", script.name)
                try:
                    self._conn.executescript(
                        f"BEGIN;\n{sql}\nPRAGMA user_version = {number};\nCOMMIT;"
                    )
                except sqlite3.Error as exc:
                    if self._conn.in_transaction:
                        self._conn.execute("ROLLBACK")
                    raise MigrationError(f"{script.name}: {exc}") from exc
                version = number
        return version

    # ── Public API ────────────────────────────────────────────────────────

    def get(self, name: str) -> Optional[Value]:
        """
        Return the committed value of *name*.

        Returns:
            The Value, or None when the name has never been written.
        """
        name = _check_name(name)
        with self._conn_lock:
            try:
                return self._read(name)
            except sqlite3.Error as exc:
                raise StoreError(f"store read failed: {exc}") from exc

    def put(
        self,
        name: str,
        value: Value,
        timeout: Optional[float] = None,
        checkpoint: Optional[Checkpoint] = None,
    ) -> Optional[Value]:
        """
        Unconditionally set *name* to *value*, committed immediately.

        Args:
            timeout:    Longest wait for the key lock, on top of lock_timeout.
            checkpoint: Called once the lock is held; raising aborts the put.

        Returns:
            The previous value, or None if the name was absent.
        """
        name = _check_name(name)
        with self._locks.hold([name], timeout):
            if checkpoint is not None:
                checkpoint()
            previous = self.get(name)
            self._write([(name, value)])
        logger.debug("put %s (%s)", name, value.type_hint)
        return previous

    def update(
        self,
        names: Sequence[str],
        update_fn: UpdateFn,
        defaults: Optional[Sequence[Value]] = None,
        timeout: Optional[float] = None,
        checkpoint: Optional[Checkpoint] = None,
    ) -> list:
        """
        Atomically read, transform and write back several names.

        Args:
            names:     Keys to update.
            update_fn: Receives the current values (defaults for absent keys)
                       in *names* order; returns the new values in the same order.
            defaults:  Values substituted for absent keys; padded with Nil.
            timeout:   Longest wait for the key locks, on top of lock_timeout.
            checkpoint: Called once the locks are held and again right before
                       the write; raising aborts the update with nothing written.

        Returns:
            The values written.

        Raises:
            StoreError: Bad arguments, or update_fn returned the wrong number
                        of values.  Nothing is written.
            Exception:  Whatever update_fn raised, unchanged.  Nothing is written.
        """
        names = [_check_name(n) for n in names]
        if not names:
            raise StoreError("update requires at least one key")
        txn = StoreTransaction.begin(names, defaults)
        with self._locks.hold(names, timeout):
            if checkpoint is not None:
                checkpoint()
            for name, default in zip(txn.names, txn.defaults):
                current = self.get(name)
                txn.snapshot.append(default if current is None else current)
            txn.stage(update_fn(list(txn.snapshot)))
            if checkpoint is not None:
                checkpoint()
            self._write(list(zip(txn.names, txn.pending)))
        logger.debug("update %s committed", txn.names)
        return txn.pending

    def delete(self, name: str) -> bool:
        """
        Remove *name*.  Not reachable from scripts.

        Returns:
            True if a row was deleted, False if the name was absent.
        """
        name = _check_name(name)
        with self._locks.hold([name]), self._conn_lock:
            try:
                cur = self._conn.execute(_SQL_DELETE, (name,))
            except sqlite3.Error as exc:
                raise StoreError(f"store delete failed: {exc}") from exc
            return cur.rowcount > 0

    def list(self) -> list[StoreEntry]:
        """Return every entry, ordered by name."""
        with self._conn_lock:
            try:
                rows = self._conn.execute(_SQL_LIST).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"store list failed: {exc}") from exc
        return [self._row_to_entry(r) for r in rows]

    def close(self) -> None:
        with self._conn_lock:
            self._conn.close()

    @property
    def path(self) -> str:
        return self._db_path

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
