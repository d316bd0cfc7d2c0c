"""
Tests for storage backends and transaction support
"""

import pytest
import sqlite3
import tempfile
from pathlib import Path

from lendwise.storage import InMemoryStorage, SQLiteStorage, StorageInterface, create_storage


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    """Each test runs against both backends"""
    if request.param == "memory":
        backend = InMemoryStorage()
        yield backend
        backend.close()
    else:
        with tempfile.TemporaryDirectory() as temp_dir:
            backend = SQLiteStorage(Path(temp_dir) / "test.db")
            yield backend
            backend.close()


class TestStorageOperations:
    """Basic CRUD shared by every backend"""

    def test_save_and_load(self, storage):
        storage.save("loans", "L1", {"id": "L1", "balance": "100.50"})
        assert storage.load("loans", "L1") == {"id": "L1", "balance": "100.50"}
        assert storage.load("loans", "missing") is None
        assert storage.exists("loans", "L1")
        assert not storage.exists("loans", "missing")

    def test_load_all_keeps_insertion_order_across_updates(self, storage):
        for record_id in ["c", "a", "b"]:
            storage.save("t", record_id, {"id": record_id, "v": 1})
        storage.save("t", "c", {"id": "c", "v": 2})

        records = storage.load_all("t")
        assert [r["id"] for r in records] == ["c", "a", "b"]
        assert records[0]["v"] == 2

    def test_find(self, storage):
        storage.save("payments", "P1", {"id": "P1", "loan_id": "L1"})
        storage.save("payments", "P2", {"id": "P2", "loan_id": "L2"})
        storage.save("payments", "P3", {"id": "P3", "loan_id": "L1"})

        found = storage.find("payments", {"loan_id": "L1"})
        assert [r["id"] for r in found] == ["P1", "P3"]
        assert storage.find("payments", {"loan_id": "L9"}) == []

    def test_count(self, storage):
        assert storage.count("t") == 0
        storage.save("t", "x", {"id": "x"})
        storage.save("t", "y", {"id": "y"})
        storage.save("t", "x", {"id": "x", "v": 2})
        assert storage.count("t") == 2

    def test_loaded_records_are_copies(self, storage):
        storage.save("t", "x", {"id": "x", "nested": {"a": 1}})
        loaded = storage.load("t", "x")
        loaded["nested"]["a"] = 99
        assert storage.load("t", "x")["nested"]["a"] == 1


class TestTransactions:
    """atomic() applies all writes or none"""

    def test_commit(self, storage):
        with storage.atomic():
            storage.save("t", "a", {"id": "a"})
            storage.save("t", "b", {"id": "b"})
        assert storage.count("t") == 2

    def test_rollback_on_error(self, storage):
        storage.save("t", "a", {"id": "a", "v": 1})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("t", "a", {"id": "a", "v": 2})
                storage.save("t", "b", {"id": "b"})
                raise RuntimeError("boom")

        assert storage.load("t", "a") == {"id": "a", "v": 1}
        assert not storage.exists("t", "b")

    def test_nested_atomic_rolls_back_outer(self, storage):
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("t", "outer", {"id": "outer"})
                with storage.atomic():
                    storage.save("t", "inner", {"id": "inner"})
                raise RuntimeError("boom")

        assert storage.count("t") == 0


class TestSQLitePersistence:

    def test_data_survives_reopen(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "ledger.db"
            storage = SQLiteStorage(db_path)
            storage.save("loans", "L1", {"id": "L1", "balance": "10.00"})
            storage.close()

            reopened = SQLiteStorage(db_path)
            assert reopened.load("loans", "L1") == {"id": "L1", "balance": "10.00"}
            reopened.close()

    def test_transaction_holds_write_lock_across_connections(self, tmp_path):
        """A second connection cannot commit between a transaction's read and its write"""
        db_path = tmp_path / "ledger.db"
        first = SQLiteStorage(db_path)
        second = SQLiteStorage(db_path, timeout=0.1)
        first.save("loans", "L1", {"id": "L1", "version": 0})

        with first.atomic():
            assert first.load("loans", "L1")["version"] == 0
            with pytest.raises(sqlite3.OperationalError):
                with second.atomic():
                    second.save("loans", "L1", {"id": "L1", "version": 99})
            assert second.load("loans", "L1")["version"] == 0
            first.save("loans", "L1", {"id": "L1", "version": 1})

        with second.atomic():
            assert second.load("loans", "L1")["version"] == 1
            second.save("loans", "L1", {"id": "L1", "version": 2})

        assert first.load("loans", "L1")["version"] == 2
        first.close()
        second.close()


class TestCreateStorage:

    def test_backends(self):
        assert isinstance(create_storage("memory"), InMemoryStorage)
        sqlite = create_storage("sqlite", ":memory:")
        assert isinstance(sqlite, SQLiteStorage)
        assert isinstance(sqlite, StorageInterface)
        sqlite.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            create_storage("postgres")
