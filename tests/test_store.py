"""Tests for the record store: transactions, records and filesets."""

import os
import stat

import pytest

from tripline.errors import (
    CorruptRecordError,
    FilesetExistsError,
    NestedTransactionError,
    PathNotFoundError,
    RecordExistsError,
    ReservedFilesetError,
    TransactionForbiddenError,
    TransactionRequiredError,
    UnknownFilesetError,
    WriteTransactionRequiredError,
)
from tripline.kernel.record import BaselineRecord
from tripline.kernel.store import RecordStore

from conftest import tamper


def _record(size: str = "1") -> BaselineRecord:
    return BaselineRecord(is_dir=False, checks=["size"], data={"size": size})


class TestTransactions:
    """Transaction discipline of the store handle."""

    def test_transaction_state(self, store):
        assert not store.in_transaction
        assert not store.writable
        store.begin(write=False)
        assert store.in_transaction
        assert not store.writable
        store.rollback()
        store.begin(write=True)
        assert store.writable
        store.commit()
        assert not store.in_transaction
        assert not store.writable

    def test_nested_begin_fails(self, store):
        store.begin(write=False)
        with pytest.raises(NestedTransactionError):
            store.begin(write=True)

    def test_operations_require_transaction(self, store):
        with pytest.raises(TransactionRequiredError):
            store.list_filesets()
        with pytest.raises(TransactionRequiredError):
            store.query_records("default", "")
        with pytest.raises(TransactionRequiredError):
            store.add_record("/x", _record(), "default")
        with pytest.raises(TransactionRequiredError):
            store.commit()
        with pytest.raises(TransactionRequiredError):
            store.rollback()

    def test_mutation_requires_write_transaction(self, store):
        store.begin(write=False)
        with pytest.raises(WriteTransactionRequiredError):
            store.add_record("/x", _record(), "default")
        with pytest.raises(WriteTransactionRequiredError):
            store.delete_record("/x", "default", skip_missing=True)
        with pytest.raises(WriteTransactionRequiredError):
            store.delete_fileset("default")
        with pytest.raises(WriteTransactionRequiredError):
            store.copy_fileset("default", "other")

    def test_commit_and_rollback_release_the_handle(self, store):
        store.begin(write=True)
        store.commit()
        assert not store.in_transaction
        store.begin(write=False)
        store.rollback()
        assert not store.in_transaction

    def test_close_with_open_transaction_is_forbidden(self, store):
        store.begin(write=False)
        with pytest.raises(TransactionForbiddenError):
            store.close()
        store.rollback()
        store.close()

    def test_rollback_discards_changes(self, store):
        store.begin(write=True)
        store.add_record("/x", _record(), "default")
        store.rollback()
        with store.transaction():
            assert store.list_filesets() == []

    def test_commit_persists_across_handles(self, db_path):
        with RecordStore(db_path) as s:
            with s.transaction(write=True):
                s.add_record("/x", _record(), "default")
        with RecordStore(db_path) as s:
            with s.transaction():
                assert s.has_record("/x", "default")

    def test_transaction_context_rolls_back_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction(write=True):
                store.add_record("/x", _record(), "default")
                raise RuntimeError("boom")
        assert not store.in_transaction
        with store.transaction():
            assert not store.fileset_exists("default")

    def test_new_database_is_private(self, db_path):
        RecordStore(db_path).close()
        assert stat.S_IMODE(os.stat(db_path).st_mode) == 0o600


class TestRecords:
    """Adding, querying and deleting records."""

    def test_add_creates_fileset(self, store):
        with store.transaction(write=True):
            store.add_record("/x", _record(), "fs")
            assert store.list_filesets() == ["fs"]
            assert store.has_record("/x", "fs")
            assert not store.has_record("/y", "fs")

    def test_has_record_unknown_fileset(self, store):
        with store.transaction():
            with pytest.raises(UnknownFilesetError):
                store.has_record("/x", "missing")

    def test_duplicate_without_overwrite_fails(self, store):
        with store.transaction(write=True):
            store.add_record("/x", _record("1"), "fs")
            with pytest.raises(RecordExistsError):
                store.add_record("/x", _record("2"), "fs")
            assert store.list_records("fs")[0].record.data == {"size": "1"}

    def test_overwrite_replaces(self, store):
        with store.transaction(write=True):
            store.add_record("/x", _record("1"), "fs")
            store.add_record("/x", _record("2"), "fs", overwrite=True)
            entries = store.list_records("fs")
        assert len(entries) == 1
        assert entries[0].record.data == {"size": "2"}

    def test_delete_missing_path(self, store):
        with store.transaction(write=True):
            store.add_record("/x", _record(), "fs")
            with pytest.raises(PathNotFoundError):
                store.delete_record("/y", "fs")
            with pytest.raises(UnknownFilesetError):
                store.delete_record("/y", "missing")

    def test_delete_with_skip_is_idempotent(self, store):
        with store.transaction(write=True):
            store.add_record("/x", _record(), "fs")
            before = store.query_raw("fs")
            store.delete_record("/y", "fs", skip_missing=True)
            store.delete_record("/y", "missing", skip_missing=True)
            assert store.query_raw("fs") == before
            store.delete_record("/x", "fs", skip_missing=True)
            store.delete_record("/x", "fs", skip_missing=True)
            assert store.query_raw("fs") == []

    def test_query_by_prefix_in_key_order(self, store):
        with store.transaction(write=True):
            for path in ["/b/2", "/a", "/b", "/b/1", "/c", "/ba"]:
                store.add_record(path, _record(), "fs")
            assert [e.path for e in store.query_records("fs", "/b")] == ["/b", "/b/1", "/b/2", "/ba"]
            assert [e.path for e in store.query_records("fs", "/b/")] == ["/b/1", "/b/2"]
            assert [e.path for e in store.query_records("fs", "/z")] == []
            assert [e.path for e in store.query_records("fs", "")] == ["/a", "/b", "/b/1", "/b/2", "/ba", "/c"]

    def test_key_order_is_byte_order(self, store):
        # "é" (0xc3 0xa9) sorts after "z" in UTF-8 byte order
        with store.transaction(write=True):
            for path in ["/é", "/z", "/Z", "/a"]:
                store.add_record(path, _record(), "fs")
            assert [p for p, _ in store.query_raw("fs")] == ["/Z", "/a", "/z", "/é"]

    def test_undecodable_path_round_trips(self, store):
        path = os.fsdecode(b"/data/bad\xff.txt")
        with store.transaction(write=True):
            store.add_record(path, _record(), "fs")
            store.add_record("/data/good.txt", _record(), "fs")
            assert store.has_record(path, "fs")
            prefix = os.fsdecode(b"/data/bad\xff")
            assert [p for p, _ in store.query_raw("fs", prefix)] == [path]
            assert [e.path for e in store.list_records("fs")] == [path, "/data/good.txt"]
            store.delete_record(path, "fs")
            assert not store.has_record(path, "fs")

    def test_undecodable_fileset_name_rejected(self, store):
        with store.transaction(write=True):
            with pytest.raises(ReservedFilesetError, match="valid UTF-8"):
                store.add_record("/x", _record(), os.fsdecode(b"fs\xff"))

    def test_query_unknown_fileset(self, store):
        with store.transaction():
            with pytest.raises(UnknownFilesetError):
                store.query_records("missing", "")

    def test_stored_value_is_canonical_json(self, store):
        with store.transaction(write=True):
            store.add_record("/x", _record("42"), "fs")
            assert store.query_raw("fs") == [
                ("/x", b'{"checks":["size"],"data":{"size":"42"},"isDir":false}')
            ]

    def test_corrupt_value_fails_decoding(self, store, db_path):
        with store.transaction(write=True):
            store.add_record("/x", _record(), "fs")
        tamper(db_path, "fs", "/x", b"not json")
        with store.transaction():
            with pytest.raises(CorruptRecordError):
                store.list_records("fs")
            assert store.query_raw("fs") == [("/x", b"not json")]


class TestFilesets:
    """Fileset level operations."""

    def test_reserved_names_rejected(self, store):
        with store.transaction(write=True):
            with pytest.raises(ReservedFilesetError):
                store.add_record("/x", _record(), "_signatures")
            with pytest.raises(ReservedFilesetError):
                store.add_record("/x", _record(), "")
            store.add_record("/x", _record(), "fs")
            with pytest.raises(ReservedFilesetError):
                store.copy_fileset("fs", "_copy")
            assert store.list_filesets() == ["fs"]

    def test_delete_fileset_cascades(self, store):
        with store.transaction(write=True):
            store.add_record("/x", _record(), "fs")
            store.add_record("/y", _record(), "fs")
            store.delete_fileset("fs")
            assert store.list_filesets() == []
            with pytest.raises(UnknownFilesetError):
                store.list_records("fs")
            with pytest.raises(UnknownFilesetError):
                store.delete_fileset("fs")

    def test_copy_fileset(self, store):
        with store.transaction(write=True):
            store.add_record("/x", _record("1"), "src")
            store.add_record("/y", _record("2"), "src")
            store.copy_fileset("src", "dst")
            assert store.query_raw("dst") == store.query_raw("src")
            assert store.list_filesets() == ["dst", "src"]

    def test_copy_is_independent_of_source(self, store):
        with store.transaction(write=True):
            store.add_record("/x", _record("1"), "src")
            store.copy_fileset("src", "dst")
            snapshot = store.query_raw("dst")
            store.add_record("/x", _record("9"), "src", overwrite=True)
            store.add_record("/z", _record(), "src")
            store.delete_fileset("src")
            assert store.query_raw("dst") == snapshot

    def test_copy_errors(self, store):
        with store.transaction(write=True):
            store.add_record("/x", _record(), "src")
            store.add_record("/x", _record(), "dst")
            with pytest.raises(UnknownFilesetError):
                store.copy_fileset("missing", "new")
            with pytest.raises(FilesetExistsError):
                store.copy_fileset("src", "dst")

    def test_copy_empty_fileset(self, store):
        with store.transaction(write=True):
            store.add_record("/x", _record(), "src")
            store.delete_record("/x", "src")
            store.copy_fileset("src", "dst")
            assert store.list_records("dst") == []


class TestSignatureStore:
    """The signature namespace next to the filesets."""

    def test_signatures_are_not_filesets(self, store):
        with store.transaction(write=True):
            store.signatures.put("fs", b"blob")
            assert store.list_filesets() == []
            assert store.signatures.get("fs") == b"blob"
            assert store.signatures.names() == ["fs"]

    def test_signature_operations(self, store):
        with store.transaction(write=True):
            assert store.signatures.is_empty()
            assert store.signatures.get("fs") is None
            store.signatures.put("fs", b"one")
            store.signatures.put("fs", b"two")
            assert store.signatures.get("fs") == b"two"
            assert store.signatures.delete("fs")
            assert not store.signatures.delete("fs")
            assert store.signatures.is_empty()

    def test_signature_store_shares_transaction(self, store):
        with pytest.raises(TransactionRequiredError):
            store.signatures.get("fs")
        with store.transaction():
            with pytest.raises(WriteTransactionRequiredError):
                store.signatures.put("fs", b"blob")
