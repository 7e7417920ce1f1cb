"""Tests for the local filesystem object store."""

import pytest

import pandas as pd

from cdacopy.lib.errors import SchemaMismatchError, StorageError
from cdacopy.lib.storage import LocalObjectStore, get_object_store, join_uri
from cdacopy.lib.storage.base import is_timestamp_name
from tests.conftest import rows, write_partition


class TestJoinUri:
    def test_single_slashes(self):
        assert join_uri("s3://bucket/policy/", "/fp1") == "s3://bucket/policy/fp1"
        assert join_uri("/exports", "policy", "fp1/") == "/exports/policy/fp1/"


class TestIsTimestampName:
    def test_ascii_digits_only(self):
        assert is_timestamp_name("1700000000000")
        assert not is_timestamp_name("²")
        assert not is_timestamp_name("١٢٣")
        assert not is_timestamp_name("")
        assert not is_timestamp_name("12a")


class TestLocalObjectStore:
    def test_list_partitions(self, export_root, local_store):
        table_dir = export_root / "policy"
        for ts in (200, 100, 1000):
            write_partition(table_dir, "fp1", ts, rows(1))

        listings = local_store.list_partitions(str(table_dir) + "/", "fp1")
        assert [p.name for p in listings] == ["100", "200", "1000"]
        assert listings[0].uri == f"{table_dir}/fp1/100/"

    def test_list_partitions_with_bound(self, export_root, local_store):
        table_dir = export_root / "policy"
        for ts in (100, 150, 151):
            write_partition(table_dir, "fp1", ts, rows(1))

        listings = local_store.list_partitions(str(table_dir), "fp1", lower_bound=151)
        assert [p.name for p in listings] == ["151"]

    def test_missing_directory_lists_nothing(self, export_root, local_store):
        assert local_store.list_partitions(str(export_root / "policy"), "fp1") == []

    def test_read_partition_concatenates_objects(self, export_root, local_store):
        """Every data object is read; marker files are ignored."""
        table_dir = export_root / "policy"
        path = write_partition(table_dir, "fp1", 100, rows(2), "part-0.parquet")
        write_partition(table_dir, "fp1", 100, rows(3, start=2), "part-1.parquet")
        (path.parent / "_SUCCESS").write_text("", encoding="utf-8")

        frame = local_store.read_partition(f"{table_dir}/fp1/100/")
        assert sorted(frame["id"].tolist()) == [0, 1, 2, 3, 4]

    def test_mixed_column_sets_rejected(self, export_root, local_store):
        """Objects of one partition must share a column set; gaps are not filled with nulls."""
        table_dir = export_root / "policy"
        write_partition(table_dir, "fp1", 100, pd.DataFrame({"id": [1], "name": ["a"]}), "a.parquet")
        write_partition(table_dir, "fp1", 100, pd.DataFrame({"id": [2], "amount": [9.5]}), "b.parquet")

        with pytest.raises(SchemaMismatchError) as exc_info:
            local_store.read_partition(f"{table_dir}/fp1/100/")
        assert exc_info.value.details["missing_columns"] == ["name"]
        assert exc_info.value.details["unexpected_columns"] == ["amount"]

    def test_column_order_may_differ(self, export_root, local_store):
        table_dir = export_root / "policy"
        write_partition(table_dir, "fp1", 100, pd.DataFrame({"id": [1], "name": ["a"]}), "a.parquet")
        write_partition(table_dir, "fp1", 100, pd.DataFrame({"name": ["b"], "id": [2]}), "b.parquet")

        frame = local_store.read_partition(f"{table_dir}/fp1/100/")
        assert list(frame.columns) == ["id", "name"]
        assert frame.to_dict("records") == [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]

    def test_empty_partition(self, export_root, local_store):
        (export_root / "policy" / "fp1" / "100").mkdir(parents=True)
        with pytest.raises(StorageError, match="no Parquet"):
            local_store.read_partition(f"{export_root}/policy/fp1/100/")

    def test_corrupt_parquet(self, export_root, local_store):
        partition = export_root / "policy" / "fp1" / "100"
        partition.mkdir(parents=True)
        (partition / "part-0.parquet").write_bytes(b"not parquet")
        with pytest.raises(StorageError, match="decode"):
            local_store.read_partition(f"{partition}/")

    def test_read_text_and_file_scheme(self, tmp_path, local_store):
        path = tmp_path / "manifest.json"
        path.write_text("{}", encoding="utf-8")
        assert local_store.read_text(f"file://{path}") == "{}"

    def test_read_missing(self, tmp_path, local_store):
        with pytest.raises(StorageError):
            local_store.read_bytes(str(tmp_path / "missing"))


def test_get_object_store_local_ignores_retry():
    store = get_object_store("./exports/", retry=None)
    assert isinstance(store, LocalObjectStore)
    assert "retry" not in store.options
