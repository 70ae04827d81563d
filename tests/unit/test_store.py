"""
Unit tests for lam/store/

Coverage plan
─────────────
models.py   → 2 tests  (StoreEntry defaults, updated datetime)
locks.py    → 4 tests  (sorted names, nested hold, lock timeout,
                        per-call timeout)
db.py       → 20 tests (get miss, put/get round-trip per type, previous
                        value, nil, list, delete, empty key, update commit,
                        defaults, absent default, wrong arity, raising
                        update_fn, nested put, concurrent counters,
                        concurrent transfers, migrate idempotent, file
                        store needs migrate, reopen, disjoint keys
                        concurrent, checkpoint aborts write)
─────────────────────────────────────────────────────────────────
Total       = 26 test functions
"""

import threading

import pytest


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def store():
    """Fresh in-memory Store (always migrated)."""
    from lam.store import Store
    s = Store()
    yield s
    s.close()


@pytest.fixture
def file_store(tmp_path):
    """Store backed by a temporary SQLite file, migrated."""
    from lam.store import Store
    s = Store(str(tmp_path / "store.db"), run_migrations=True)
    yield s
    s.close()


# ─────────────────────────────────────────────────────────────────────────────
# 1. StoreEntry
# ─────────────────────────────────────────────────────────────────────────────

class TestStoreEntry:

    def test_defaults(self):
        from lam.store import StoreEntry
        from lam.value import NIL
        e = StoreEntry(name="a", value=NIL)
        assert e.size == 0
        assert e.type_hint == "none"
        assert e.updated is None

    def test_updated_is_utc_datetime(self):
        from datetime import timezone
        from lam.store import StoreEntry
        from lam.value import NIL
        e = StoreEntry(name="a", value=NIL, updated_at=0)
        assert e.updated.tzinfo is timezone.utc
        assert e.updated.year == 1970


# ─────────────────────────────────────────────────────────────────────────────
# 2. KeyLockRegistry
# ─────────────────────────────────────────────────────────────────────────────

class TestKeyLockRegistry:

    def test_hold_yields_sorted_unique_names(self):
        from lam.store import KeyLockRegistry
        locks = KeyLockRegistry()
        with locks.hold(["b", "a", "b"]) as names:
            assert names == ["a", "b"]
        assert locks.active() == 0

    def test_nested_hold_of_same_name_raises(self):
        from lam.exceptions import StoreError
        from lam.store import KeyLockRegistry
        locks = KeyLockRegistry()
        with locks.hold(["a"]):
            with pytest.raises(StoreError, match="enclosing update"):
                with locks.hold(["a"]):
                    pass

    def test_lock_timeout(self):
        from lam.exceptions import StoreLockTimeoutError
        from lam.store import KeyLockRegistry
        locks = KeyLockRegistry(timeout=0.05)
        held = threading.Event()
        release = threading.Event()

        def holder():
            with locks.hold(["a"]):
                held.set()
                release.wait(5)

        t = threading.Thread(target=holder)
        t.start()
        held.wait(5)
        try:
            with pytest.raises(StoreLockTimeoutError):
                with locks.hold(["a"]):
                    pass
        finally:
            release.set()
            t.join()

    def test_per_call_timeout_shortens_wait(self):
        import time
        from lam.exceptions import StoreLockTimeoutError
        from lam.store import KeyLockRegistry
        locks = KeyLockRegistry(timeout=30.0)
        held = threading.Event()
        release = threading.Event()

        def holder():
            with locks.hold(["a"]):
                held.set()
                release.wait(5)

        t = threading.Thread(target=holder)
        t.start()
        held.wait(5)
        started = time.monotonic()
        try:
            with pytest.raises(StoreLockTimeoutError):
                with locks.hold(["a"], timeout=0.05):
                    pass
        finally:
            release.set()
            t.join()
        assert time.monotonic() - started < 5


# ─────────────────────────────────────────────────────────────────────────────
# 3. get / put
# ─────────────────────────────────────────────────────────────────────────────

class TestGetPut:

    def test_get_missing_returns_none(self, store):
        assert store.get("nope") is None

    @pytest.mark.parametrize("plain", [
        True, 1, 1.23, "hello", [True, 1, 1.23, "hello"],
        {"bool": True, "num": 1.23, "str": "hello"}, [],
    ])
    def test_put_get_round_trip(self, store, plain):
        from lam.value import value_from_plain
        value = value_from_plain(plain)
        store.put("k", value)
        assert store.get("k").to_plain() == plain

    def test_put_returns_previous(self, store):
        from lam.value import Number
        assert store.put("a", Number(1)) is None
        assert store.put("a", Number(2)) == Number(1)
        assert store.get("a") == Number(2)

    def test_nil_round_trips(self, store):
        from lam.value import NIL
        store.put("n", NIL)
        assert store.get("n") == NIL

    def test_list_reports_size_and_type(self, store):
        from lam.value import value_from_plain
        store.put("o", value_from_plain({"bool": True, "num": 1.23, "str": "hello"}))
        entry = store.list()[0]
        assert entry.name == "o"
        assert entry.type_hint == "table"
        assert entry.size == len(b'{"bool":true,"num":1.23,"str":"hello"}')

    def test_delete(self, store):
        from lam.value import Number
        store.put("a", Number(1))
        assert store.delete("a") is True
        assert store.delete("a") is False
        assert store.get("a") is None

    def test_empty_key_rejected(self, store):
        from lam.exceptions import StoreError
        from lam.value import Number
        with pytest.raises(StoreError):
            store.put("", Number(1))


# ─────────────────────────────────────────────────────────────────────────────
# 4. update
# ─────────────────────────────────────────────────────────────────────────────

class TestUpdate:

    def test_transfer_commits_both(self, store):
        from lam.value import Number
        store.put("alice", Number(100))
        store.put("bob", Number(0))
        written = store.update(
            ["alice", "bob"],
            lambda v: [Number(v[0].value - 50), Number(v[1].value + 50)],
        )
        assert written == [Number(50), Number(50)]
        assert store.get("alice") == Number(50)
        assert store.get("bob") == Number(50)

    def test_absent_keys_use_defaults(self, store):
        from lam.value import Number
        seen = []

        def fn(values):
            seen.extend(values)
            return [Number(values[0].value + 1)]

        store.update(["counter"], fn, [Number(0)])
        assert seen == [Number(0)]
        assert store.get("counter") == Number(1)

    def test_absent_key_without_default_is_nil(self, store):
        from lam.value import NIL, Number
        seen = []
        store.update(["x"], lambda v: seen.extend(v) or [Number(1)])
        assert seen == [NIL]

    def test_wrong_arity_writes_nothing(self, store):
        from lam.exceptions import StoreError
        from lam.value import Number
        store.put("a", Number(1))
        with pytest.raises(StoreError, match="returned 2 values"):
            store.update(["a"], lambda v: [Number(5), Number(6)])
        assert store.get("a") == Number(1)

    def test_raising_update_fn_writes_nothing(self, store):
        from lam.value import Number
        store.put("alice", Number(100))
        store.put("bob", Number(0))

        class Boom(Exception):
            pass

        err = Boom("insufficient funds")

        def fn(values):
            raise err

        with pytest.raises(Boom) as excinfo:
            store.update(["alice", "bob"], fn)
        assert excinfo.value is err
        assert store.get("alice") == Number(100)
        assert store.get("bob") == Number(0)

    def test_put_inside_update_of_same_key_raises(self, store):
        from lam.exceptions import StoreError
        from lam.value import Number

        def fn(values):
            store.put("a", Number(9))
            return [Number(1)]

        with pytest.raises(StoreError, match="enclosing update"):
            store.update(["a"], fn)
        assert store.get("a") is None

    def test_disjoint_keys_update_concurrently(self, store):
        from lam.value import Number
        entered = threading.Event()
        release = threading.Event()

        def slow(values):
            entered.set()
            release.wait(5)
            return [Number(1)]

        holder = threading.Thread(target=store.update, args=(["a"], slow))
        holder.start()
        try:
            assert entered.wait(5)
            assert store.update(["b"], lambda v: [Number(2)], timeout=1.0) == [Number(2)]
            assert store.get("b") == Number(2)
            assert store.get("a") is None
        finally:
            release.set()
            holder.join(5)
        assert store.get("a") == Number(1)

    def test_checkpoint_failure_writes_nothing(self, store):
        from lam.exceptions import ScriptTimeoutError
        from lam.value import Number
        store.put("a", Number(1))
        calls = []

        def checkpoint():
            calls.append(len(calls))
            if len(calls) == 2:
                raise ScriptTimeoutError("deadline passed")

        with pytest.raises(ScriptTimeoutError):
            store.update(["a"], lambda v: [Number(2)], checkpoint=checkpoint)
        assert calls == [0, 1]
        assert store.get("a") == Number(1)

    def test_concurrent_increments(self, store):
        from lam.value import Number

        def work():
            for _ in range(25):
                store.update(["n"], lambda v: [Number(v[0].value + 1)], [Number(0)])

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.get("n") == Number(200)

    def test_concurrent_transfers_preserve_total(self, file_store):
        from lam.value import Number
        file_store.put("alice", Number(1000))
        file_store.put("bob", Number(1000))

        def transfer(src, dst):
            def fn(values):
                a, b = values if src < dst else values[::-1]
                a, b = Number(a.value - 1), Number(b.value + 1)
                return [a, b] if src < dst else [b, a]
            for _ in range(20):
                file_store.update(sorted([src, dst]), fn)

        threads = [
            threading.Thread(target=transfer, args=("alice", "bob")),
            threading.Thread(target=transfer, args=("bob", "alice")),
            threading.Thread(target=transfer, args=("alice", "bob")),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        total = file_store.get("alice").value + file_store.get("bob").value
        assert total == 2000
        assert file_store.get("alice") == Number(980)


# ─────────────────────────────────────────────────────────────────────────────
# 5. Migrations
# ─────────────────────────────────────────────────────────────────────────────

class TestMigrations:

    def test_migrate_is_idempotent(self, file_store):
        first = file_store.current_version()
        assert first >= 1
        assert file_store.migrate() == first
        assert file_store.migrate() == first

    def test_unmigrated_file_store_fails_cleanly(self, tmp_path):
        from lam.exceptions import StoreError
        from lam.store import Store
        from lam.value import Number
        with Store(str(tmp_path / "raw.db")) as s:
            assert s.current_version() == 0
            with pytest.raises(StoreError):
                s.put("a", Number(1))

    def test_values_survive_reopen(self, tmp_path):
        from lam.store import Store
        from lam.value import String
        path = str(tmp_path / "persist.db")
        with Store(path, run_migrations=True) as s:
            s.put("greeting", String("hello"))
        with Store(path) as s:
            assert s.get("greeting") == String("hello")
