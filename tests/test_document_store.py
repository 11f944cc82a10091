"""Tests for the document store backends and transaction semantics."""

from __future__ import annotations

import pytest

from lms_core.config.schema import StorageConfig
from lms_core.errors import TransactionConflict, TransactionOrderError
from lms_core.storage import JsonlDocumentStore, MemoryDocumentStore, create_document_store
from lms_core.storage.normalize import normalize_user


def test_set_merge_and_query(store):
    store.set("courses", "a", {"title": "A", "meta": {"level": 1}, "enrollment_count": 3})
    store.set("courses", "b", {"title": "B", "category_id": "x", "enrollment_count": 9})
    store.set("courses", "a", {"meta": {"tags": ["new"]}}, merge=True)

    assert store.get("courses", "a")["meta"] == {"level": 1, "tags": ["new"]}
    assert [doc["id"] for doc in store.query("courses", order_by="enrollment_count", descending=True)] == ["b", "a"]
    assert [doc["id"] for doc in store.query("courses", where={"category_id": "x"})] == ["b"]
    assert store.query("courses", limit=1)[0]["id"] == "a"


def test_update_requires_existing_document(store):
    with pytest.raises(KeyError):
        store.update("users", "ghost", {"balance": 1})


def test_transaction_writes_are_atomic_on_error(store):
    store.set("users", "u", {"balance": 5})

    def body(reader, writer):
        reader.get("users", "u")
        writer.update("users", "u", {"balance": 10})
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        store.with_transaction(body)
    assert store.get("users", "u")["balance"] == 5


def test_read_after_write_is_rejected(store):
    def body(reader, writer):
        writer.set("users", "u", {"balance": 1})
        reader.get("users", "u")

    with pytest.raises(TransactionOrderError):
        store.with_transaction(body)
    assert store.get("users", "u") is None


def test_conflicting_commit_is_retried(store):
    store.set("counters", "c", {"value": 0})
    calls = []

    def body(reader, writer):
        current = reader.get("counters", "c")["value"]
        calls.append(current)
        if len(calls) == 1:
            # a concurrent writer sneaks in between read and commit
            store.set("counters", "c", {"value": 100})
        writer.set("counters", "c", {"value": current + 1})
        return current + 1

    assert store.with_transaction(body) == 101
    assert calls == [0, 100]
    assert store.get("counters", "c")["value"] == 101


def test_persistent_conflict_gives_up():
    store = MemoryDocumentStore(max_attempts=2)
    store.set("counters", "c", {"value": 0})

    def body(reader, writer):
        reader.get("counters", "c")
        store.set("counters", "c", {"value": 1})
        writer.set("counters", "c", {"value": 2})

    with pytest.raises(TransactionConflict):
        store.with_transaction(body)


def test_repeated_read_keeps_first_version(store):
    store.set("counters", "c", {"value": 0})
    calls = []

    def body(reader, writer):
        current = reader.get("counters", "c")["value"]
        calls.append(current)
        if len(calls) == 1:
            store.set("counters", "c", {"value": 100})
        reader.get("counters", "c")
        writer.set("counters", "c", {"value": current + 1})
        return current + 1

    assert store.with_transaction(body) == 101
    assert calls == [0, 100]


def test_failed_persist_leaves_store_unchanged(tmp_path, monkeypatch):
    store = JsonlDocumentStore(tmp_path)
    store.set("courses", "c0", {"title": "kept"})

    def disk_full(collections):
        raise OSError("disk full")

    monkeypatch.setattr(store, "_persist", disk_full)

    def body(reader, writer):
        reader.get("courses", "c1")
        writer.set("courses", "c1", {"title": "x"})
        writer.update("courses", "c0", {"title": "changed"})

    with pytest.raises(OSError):
        store.with_transaction(body)
    assert store.get("courses", "c1") is None
    assert store.get("courses", "c0") == {"title": "kept"}

    monkeypatch.undo()
    assert JsonlDocumentStore(tmp_path).get("courses", "c1") is None
    store.set("courses", "c1", {"title": "y"})
    assert JsonlDocumentStore(tmp_path).get("courses", "c1") == {"title": "y"}


def test_jsonl_store_round_trip(tmp_path):
    first = JsonlDocumentStore(tmp_path)
    first.set("users", "u1", {"email": "a@example.org"})
    first.set("users", "u2", {"email": "b@example.org"})
    first.delete("users", "u2")

    assert (tmp_path / "users.jsonl").exists()
    reopened = JsonlDocumentStore(tmp_path)
    assert reopened.get("users", "u1") == {"email": "a@example.org"}
    assert reopened.get("users", "u2") is None


def test_factory_selects_backend(tmp_path):
    assert isinstance(create_document_store(StorageConfig(backend="memory")), MemoryDocumentStore)
    store = create_document_store(StorageConfig(backend="jsonl", data_dir=tmp_path / "store"))
    assert isinstance(store, JsonlDocumentStore)


def test_normalize_user_prefers_canonical_names():
    normalized = normalize_user({"FirstName": "Old", "first_name": "New", "UserBalance": 12, "extra": 1})
    assert normalized == {"first_name": "New", "balance": 12, "extra": 1}
