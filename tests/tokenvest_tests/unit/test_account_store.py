"""
Unit tests for AccountStore: create-once semantics, compare-and-swap writes
JSON persistence and stores sharing one data directory.
"""

import json
import os

import pytest

from tokenvest.core.account_store import ACCOUNTS_FILE, LOCK_FILE, AccountStore, StoredAccount
from tokenvest.core.vesting_exceptions import (
    ConcurrentModificationError,
    CorruptedDataError,
    DuplicateAccountError,
    RecordNotFoundError,
    StorageError,
)


class TestInMemoryStore:
    def test_create_starts_at_version_one(self):
        store = AccountStore()
        account = store.create("addr", "kind", {"x": 1})
        assert account == StoredAccount(address="addr", kind="kind", data={"x": 1}, version=1)
        assert store.exists("addr")
        assert len(store) == 1

    def test_create_twice_rejected(self):
        store = AccountStore()
        store.create("addr", "kind", {"x": 1})
        with pytest.raises(DuplicateAccountError) as excinfo:
            store.create("addr", "kind", {"x": 2})
        assert excinfo.value.address == "addr"
        assert store.read("addr").data == {"x": 1}

    def test_missing_account(self):
        store = AccountStore()
        assert store.get("nope") is None
        with pytest.raises(RecordNotFoundError):
            store.read("nope")

    def test_snapshots_are_detached(self):
        store = AccountStore()
        store.create("addr", "kind", {"x": 1})
        snapshot = store.read("addr")
        snapshot.data["x"] = 99
        assert store.read("addr").data == {"x": 1}

    def test_write_if_unchanged_bumps_version(self):
        store = AccountStore()
        store.create("addr", "kind", {"x": 1})
        updated = store.write_if_unchanged("addr", 1, {"x": 2})
        assert updated.version == 2
        assert updated.kind == "kind"
        assert store.read("addr").data == {"x": 2}

    def test_stale_version_rejected(self):
        store = AccountStore()
        store.create("addr", "kind", {"x": 1})
        store.write_if_unchanged("addr", 1, {"x": 2})
        with pytest.raises(ConcurrentModificationError) as excinfo:
            store.write_if_unchanged("addr", 1, {"x": 3})
        assert excinfo.value.details["actual_version"] == 2
        assert store.read("addr").data == {"x": 2}

    def test_write_to_missing_account(self):
        store = AccountStore()
        with pytest.raises(RecordNotFoundError):
            store.write_if_unchanged("nope", 1, {})

    def test_items_filters_by_kind(self):
        store = AccountStore()
        store.create("a", "program", {})
        store.create("b", "schedule", {})
        store.create("c", "schedule", {})
        assert sorted(account.address for account in store.items("schedule")) == ["b", "c"]
        assert len(list(store.items())) == 3


class TestPersistence:
    def test_round_trip_through_data_dir(self, tmp_path):
        store = AccountStore(str(tmp_path))
        store.create("addr", "kind", {"balance": 10**30})
        store.write_if_unchanged("addr", 1, {"balance": 5})

        reloaded = AccountStore(str(tmp_path))
        account = reloaded.read("addr")
        assert account.data == {"balance": 5}
        assert account.version == 2

    def test_file_is_plain_json(self, tmp_path):
        AccountStore(str(tmp_path)).create("addr", "kind", {"x": 1})
        with open(tmp_path / ACCOUNTS_FILE, encoding="utf-8") as f:
            payload = json.load(f)
        assert payload["accounts"]["addr"] == {"kind": "kind", "data": {"x": 1}, "version": 1}

    def test_no_temp_files_left_behind(self, tmp_path):
        store = AccountStore(str(tmp_path))
        store.create("addr", "kind", {})
        assert sorted(os.listdir(tmp_path)) == [ACCOUNTS_FILE, LOCK_FILE]

    def test_creates_missing_data_dir(self, tmp_path):
        data_dir = tmp_path / "nested" / "dir"
        AccountStore(str(data_dir)).create("addr", "kind", {})
        assert (data_dir / ACCOUNTS_FILE).exists()

    @pytest.mark.parametrize("content", ["not json", "[]", '{"other": {}}', '{"accounts": []}'])
    def test_corrupt_file_raises(self, tmp_path, content):
        (tmp_path / ACCOUNTS_FILE).write_text(content, encoding="utf-8")
        with pytest.raises(CorruptedDataError):
            AccountStore(str(tmp_path))

    def test_failed_save_rolls_back_memory(self, tmp_path, monkeypatch):
        store = AccountStore(str(tmp_path))
        store.create("addr", "kind", {"x": 1})

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", broken_replace)

        with pytest.raises(StorageError):
            store.write_if_unchanged("addr", 1, {"x": 2})
        with pytest.raises(StorageError):
            store.create("other", "kind", {})

        assert store.read("addr") == StoredAccount("addr", "kind", {"x": 1}, 1)
        assert not store.exists("other")
        assert sorted(os.listdir(tmp_path)) == [ACCOUNTS_FILE, LOCK_FILE]

    def test_failed_delete_keeps_account(self, tmp_path, monkeypatch):
        store = AccountStore(str(tmp_path))
        store.create("addr", "kind", {"x": 1})

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", broken_replace)

        with pytest.raises(StorageError):
            store.delete("addr", 1)
        assert store.read("addr").version == 1


class TestDelete:
    def test_delete_removes_account(self):
        store = AccountStore()
        store.create("addr", "kind", {})
        store.delete("addr", 1)
        assert not store.exists("addr")
        store.create("addr", "kind", {"x": 2})

    def test_delete_requires_current_version(self):
        store = AccountStore()
        store.create("addr", "kind", {})
        store.write_if_unchanged("addr", 1, {"x": 1})
        with pytest.raises(ConcurrentModificationError):
            store.delete("addr", 1)
        assert store.exists("addr")

    def test_delete_missing_account(self):
        with pytest.raises(RecordNotFoundError):
            AccountStore().delete("nope", 1)


class TestSharedDataDir:
    """Two stores opened on one directory behave like two processes."""

    def test_writes_are_visible_to_the_other_store(self, tmp_path):
        first = AccountStore(str(tmp_path))
        second = AccountStore(str(tmp_path))

        first.create("addr", "kind", {"x": 1})
        assert second.read("addr").data == {"x": 1}

        second.write_if_unchanged("addr", 1, {"x": 2})
        assert first.read("addr") == StoredAccount("addr", "kind", {"x": 2}, 2)

    def test_stale_version_rejected_across_stores(self, tmp_path):
        first = AccountStore(str(tmp_path))
        second = AccountStore(str(tmp_path))
        first.create("addr", "kind", {"balance": 1000})
        assert second.read("addr").version == 1

        first.write_if_unchanged("addr", 1, {"balance": 0})
        with pytest.raises(ConcurrentModificationError):
            second.write_if_unchanged("addr", 1, {"balance": 0})

        assert AccountStore(str(tmp_path)).read("addr").version == 2

    def test_create_checks_persisted_accounts(self, tmp_path):
        first = AccountStore(str(tmp_path))
        second = AccountStore(str(tmp_path))
        first.create("addr", "kind", {"owner": "first"})
        with pytest.raises(DuplicateAccountError):
            second.create("addr", "kind", {"owner": "second"})
        assert first.read("addr").data == {"owner": "first"}

    def test_lock_is_reentrant(self, tmp_path):
        store = AccountStore(str(tmp_path))
        with store.lock:
            store.create("addr", "kind", {})
            with store.lock:
                store.write_if_unchanged("addr", 1, {"x": 1})
        assert AccountStore(str(tmp_path)).read("addr").version == 2
