"""
Unit tests for the SQL storage backend.

Tests cover:
1. Node get/put and upsert semantics
2. Root get/set and root caching
3. Tree instance isolation
4. Error surfacing (not found, malformed rows, wrapped root writes)
5. Context cancellation
"""

import itertools
import sqlite3
import threading

import pytest

from mtsql.crypto import sha256
from mtsql.core.context import Context
from mtsql.core.errors import (
    ContextCancelledError,
    MalformedRecordError,
    NotFoundError,
    StorageError,
)
from mtsql.core.node import EmptyNode, LeafNode, MiddleNode
from mtsql.core.storage import SQLiteAdapter, SqlStorage, Storage


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def adapter(tmp_path):
    """File-backed database, closed after the test."""
    db = SQLiteAdapter(tmp_path / "mt.db")
    yield db
    db.close()


@pytest.fixture
def mt_ids():
    """Fresh tree instance ids for this test."""
    return itertools.count(1)


@pytest.fixture
def new_storage(adapter, mt_ids):
    """Factory for storages on fresh tree instance ids."""
    def factory() -> SqlStorage:
        return SqlStorage(adapter, next(mt_ids))
    return factory


@pytest.fixture
def storage(new_storage) -> SqlStorage:
    return new_storage()


class FlakyDB:
    """Database wrapper that fails reads or writes on demand."""

    def __init__(self, db):
        self.db = db
        self.fail_reads = False
        self.fail_writes = False
        self.reads = 0

    def execute(self, ctx, query, params=()):
        if self.fail_writes:
            raise sqlite3.OperationalError("disk I/O error")
        return self.db.execute(ctx, query, params)

    def fetch_one(self, ctx, query, params=()):
        self.reads += 1
        if self.fail_reads:
            raise sqlite3.OperationalError("disk I/O error")
        return self.db.fetch_one(ctx, query, params)


def h(label: str) -> bytes:
    return sha256(label.encode())


def leaf(label: str) -> LeafNode:
    return LeafNode(h(label + "/index"), h(label + "/value"))


# =============================================================================
# Contract
# =============================================================================


@pytest.fixture(params=["file", "memory"])
def any_storage(request, tmp_path):
    """Storage on a file database and on an in-memory database."""
    path = tmp_path / "contract.db" if request.param == "file" else ":memory:"
    db = SQLiteAdapter(path)
    yield SqlStorage(db, 1)
    db.close()


class TestStorageContract:
    """Behaviour every Storage must show to the tree engine."""

    def test_is_storage(self, any_storage):
        assert isinstance(any_storage, Storage)

    def test_get_missing(self, any_storage):
        with pytest.raises(NotFoundError):
            any_storage.get(h("missing"))

    def test_get_root_missing(self, any_storage):
        with pytest.raises(NotFoundError):
            any_storage.get_root()

    @pytest.mark.parametrize(
        "node", [leaf("a"), MiddleNode(h("l"), h("r")), EmptyNode()]
    )
    def test_put_get(self, any_storage, node):
        any_storage.put(h("k"), node)
        assert any_storage.get(h("k")) == node

    def test_set_get_root(self, any_storage):
        any_storage.set_root(h("root"))
        assert any_storage.get_root() == h("root")

    def test_concurrent_put_get(self, any_storage):
        """Threads writing and reading their own keys never see lock errors."""
        errors = []

        def worker(n: int):
            try:
                for i in range(50):
                    key = h(f"{n}/{i}")
                    any_storage.put(key, leaf(f"{n}/{i}"))
                    assert any_storage.get(key) == leaf(f"{n}/{i}")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        for n in range(4):
            for i in range(50):
                assert any_storage.get(h(f"{n}/{i}")) == leaf(f"{n}/{i}")

    def test_concurrent_get_root(self, any_storage):
        """Fresh storages on many threads read the same root."""
        any_storage.set_root(h("root"))
        seen, errors = [], []

        def reader():
            try:
                seen.append(SqlStorage(any_storage.db, any_storage.mt_id).get_root())
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=reader) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert seen == [h("root")] * 8


# =============================================================================
# Nodes
# =============================================================================


class TestNodes:
    """Tests for get/put."""

    def test_not_found_is_distinct(self, storage):
        """A miss is NotFoundError, never a malformed or empty node."""
        with pytest.raises(NotFoundError) as exc_info:
            storage.get(h("never-written"))
        assert not isinstance(exc_info.value, MalformedRecordError)

    def test_last_write_wins(self, storage, adapter):
        key = h("k")
        storage.put(key, leaf("a"))
        storage.put(key, leaf("b"))
        assert storage.get(key) == leaf("b")
        assert adapter.count("mt_nodes", storage.mt_id) == 1

    def test_upsert_replaces_shape(self, storage):
        """Overwriting a leaf with a middle node clears the entry."""
        key = h("k")
        storage.put(key, leaf("a"))
        storage.put(key, MiddleNode(h("l"), h("r")))
        assert storage.get(key) == MiddleNode(h("l"), h("r"))

        storage.put(key, EmptyNode())
        assert storage.get(key) == EmptyNode()

    def test_created_at_kept_on_update(self, storage, adapter):
        key = h("k")
        storage.put(key, leaf("a"))
        query = "SELECT created_at, deleted_at FROM mt_nodes WHERE mt_id = ? AND key = ?"
        first = adapter.fetch_one(None, query, (storage.mt_id, key))
        assert first["created_at"] is not None
        assert first["deleted_at"] is None

        adapter.execute(
            None,
            "UPDATE mt_nodes SET created_at = 1 WHERE mt_id = ? AND key = ?",
            (storage.mt_id, key),
        )
        storage.put(key, leaf("b"))
        second = adapter.fetch_one(None, query, (storage.mt_id, key))
        assert second["created_at"] == 1

    @pytest.mark.parametrize("size", [1, 31, 65])
    def test_malformed_row(self, storage, adapter, size):
        key = h("corrupt")
        adapter.execute(
            None,
            "INSERT INTO mt_nodes (mt_id, key, type, entry) VALUES (?, ?, ?, ?)",
            (storage.mt_id, key, 1, bytes(size)),
        )
        with pytest.raises(MalformedRecordError):
            storage.get(key)

    def test_read_error_propagates_unchanged(self, adapter):
        flaky = FlakyDB(adapter)
        storage = SqlStorage(flaky, 1)
        flaky.fail_reads = True
        with pytest.raises(sqlite3.OperationalError, match="disk I/O error"):
            storage.get(h("k"))

    def test_put_error_propagates_unchanged(self, adapter):
        flaky = FlakyDB(adapter)
        storage = SqlStorage(flaky, 1)
        flaky.fail_writes = True
        with pytest.raises(sqlite3.OperationalError):
            storage.put(h("k"), EmptyNode())

    @pytest.mark.parametrize("key", [b"", bytes(31), bytes(33), "00" * 32])
    def test_rejects_bad_key(self, storage, key):
        with pytest.raises(ValueError):
            storage.put(key, EmptyNode())
        with pytest.raises(ValueError):
            storage.get(key)


# =============================================================================
# Root
# =============================================================================


class TestRoot:
    """Tests for get_root/set_root."""

    def test_scenario(self, adapter):
        """Fresh tree 7: root missing, set, node stored, root moved."""
        storage = SqlStorage(adapter, 7)
        with pytest.raises(NotFoundError):
            storage.get_root()

        storage.set_root(h("h1"))
        assert storage.get_root() == h("h1")

        storage.put(h("k1"), leaf("k1"))
        assert storage.get(h("k1")) == leaf("k1")

        storage.set_root(h("h2"))
        assert storage.get_root() == h("h2")

    def test_set_root_overwrites(self, storage, adapter):
        storage.set_root(h("h1"))
        storage.set_root(h("h2"))
        assert adapter.count("mt_roots", storage.mt_id) == 1
        assert SqlStorage(adapter, storage.mt_id).get_root() == h("h2")

    def test_cached_after_set(self, adapter):
        """get_root after set_root does not touch the database."""
        flaky = FlakyDB(adapter)
        storage = SqlStorage(flaky, 1)
        storage.set_root(h("h1"))

        flaky.fail_reads = True
        assert storage.get_root() == h("h1")
        assert flaky.reads == 0

    def test_cached_after_first_read(self, adapter):
        SqlStorage(adapter, 1).set_root(h("h1"))

        flaky = FlakyDB(adapter)
        storage = SqlStorage(flaky, 1)
        assert storage.cached_root is None
        assert storage.get_root() == h("h1")
        assert storage.get_root() == h("h1")
        assert flaky.reads == 1

    def test_cache_not_invalidated_by_other_writers(self, adapter):
        """A second instance's write is only seen by a fresh instance."""
        first = SqlStorage(adapter, 1)
        first.set_root(h("h1"))
        SqlStorage(adapter, 1).set_root(h("h2"))

        assert first.get_root() == h("h1")
        assert SqlStorage(adapter, 1).get_root() == h("h2")

    def test_not_found_not_cached(self, storage):
        with pytest.raises(NotFoundError):
            storage.get_root()
        assert storage.cached_root is None

    def test_set_root_failure_wrapped(self, adapter):
        flaky = FlakyDB(adapter)
        storage = SqlStorage(flaky, 1)
        flaky.fail_writes = True

        with pytest.raises(StorageError) as exc_info:
            storage.set_root(h("h1"))

        err = exc_info.value
        assert str(err) == "failed to update current root hash: disk I/O error"
        assert err.msg == "failed to update current root hash"
        assert isinstance(err.cause, sqlite3.OperationalError)
        assert err.__cause__ is err.cause

    def test_set_root_failure_keeps_cache(self, adapter):
        """A failed write leaves the cache on the durable root."""
        flaky = FlakyDB(adapter)
        storage = SqlStorage(flaky, 1)
        storage.set_root(h("h1"))

        flaky.fail_writes = True
        with pytest.raises(StorageError):
            storage.set_root(h("h2"))

        assert storage.get_root() == h("h1")
        assert SqlStorage(adapter, 1).get_root() == h("h1")

    def test_set_root_failure_on_cold_cache(self, adapter):
        flaky = FlakyDB(adapter)
        storage = SqlStorage(flaky, 1)
        flaky.fail_writes = True
        with pytest.raises(StorageError):
            storage.set_root(h("h1"))
        assert storage.cached_root is None

    def test_malformed_root_row(self, adapter):
        adapter.execute(None, "INSERT INTO mt_roots (mt_id, key) VALUES (?, ?)", (1, bytes(5)))
        with pytest.raises(MalformedRecordError):
            SqlStorage(adapter, 1).get_root()


# =============================================================================
# Isolation
# =============================================================================


class TestIsolation:
    """Trees sharing a database never see each other's data."""

    def test_same_key_different_trees(self, new_storage):
        a, b = new_storage(), new_storage()
        key = h("shared")
        a.put(key, leaf("a"))

        with pytest.raises(NotFoundError):
            b.get(key)

        b.put(key, leaf("b"))
        assert a.get(key) == leaf("a")
        assert b.get(key) == leaf("b")

    def test_roots_are_per_tree(self, new_storage):
        a, b = new_storage(), new_storage()
        a.set_root(h("a"))

        with pytest.raises(NotFoundError):
            b.get_root()

        b.set_root(h("b"))
        assert a.get_root() == h("a")
        assert b.get_root() == h("b")

    @pytest.mark.parametrize("mt_id", [-1, 2**63, True, "1", 1.0])
    def test_rejects_bad_mt_id(self, adapter, mt_id):
        with pytest.raises(ValueError):
            SqlStorage(adapter, mt_id)

    def test_large_mt_id(self, adapter):
        storage = SqlStorage(adapter, 2**63 - 1)
        storage.set_root(h("root"))
        assert SqlStorage(adapter, 2**63 - 1).get_root() == h("root")


# =============================================================================
# Context
# =============================================================================


class TestContext:
    """Tests for cancelled and expired contexts."""

    @pytest.fixture
    def cancelled(self) -> Context:
        ctx = Context()
        ctx.cancel()
        return ctx

    def test_get_cancelled(self, storage, cancelled):
        storage.put(h("k"), EmptyNode())
        with pytest.raises(ContextCancelledError, match="canceled"):
            storage.get(h("k"), cancelled)

    def test_put_cancelled_writes_nothing(self, storage, adapter, cancelled):
        with pytest.raises(ContextCancelledError):
            storage.put(h("k"), EmptyNode(), cancelled)
        assert adapter.count("mt_nodes", storage.mt_id) == 0

    def test_get_root_expired(self, storage):
        with pytest.raises(ContextCancelledError, match="deadline exceeded"):
            storage.get_root(Context(timeout=0))

    def test_set_root_cancelled(self, adapter, cancelled):
        storage = SqlStorage(adapter, 1)
        with pytest.raises(StorageError) as exc_info:
            storage.set_root(h("h1"), cancelled)
        assert isinstance(exc_info.value.cause, ContextCancelledError)
        assert storage.cached_root is None
        with pytest.raises(NotFoundError):
            SqlStorage(adapter, 1).get_root()

    def test_live_context(self, storage):
        ctx = Context(timeout=30)
        storage.put(h("k"), leaf("k"), ctx)
        storage.set_root(h("root"), ctx)
        assert storage.get(h("k"), ctx) == leaf("k")
        assert storage.get_root(ctx) == h("root")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
