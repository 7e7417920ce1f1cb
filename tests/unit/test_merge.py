"""Tests for batch merging and internal column pruning."""

import pandas as pd
import pytest

from cdacopy.lib.errors import SchemaMismatchError
from cdacopy.lib.merge import drop_internal_columns, merge_batches
from tests.conftest import rows


class TestDropInternalColumns:
    def test_keeps_change_tracking_columns(self):
        cleaned = drop_internal_columns(rows(2))
        assert list(cleaned.columns) == ["id", "name", "gwcbi___seqval_hex", "gwcbi___operation"]

    def test_prefix_match_is_case_insensitive(self):
        frame = pd.DataFrame({"id": [1], "GWCBI___LSN": [5]})
        assert list(drop_internal_columns(frame).columns) == ["id"]

    def test_no_internal_columns_returns_same_frame(self):
        frame = pd.DataFrame({"id": [1]})
        assert drop_internal_columns(frame) is frame


class TestMergeBatches:
    def test_row_count_is_sum_of_inputs(self):
        batches = [rows(10), rows(25, start=10), rows(7, start=35)]
        merged = merge_batches("policy", "fp1", 300, batches)

        assert merged.row_count == 42
        assert merged.partition_count == 3
        assert merged.manifest_timestamp == 300
        assert merged.data["id"].tolist() == list(range(42))

    def test_columns_aligned_by_name(self):
        """Column order of later batches does not matter."""
        first = pd.DataFrame({"id": [1], "name": ["a"]})
        second = pd.DataFrame({"name": ["b"], "id": [2]})
        merged = merge_batches("policy", "fp1", 300, [first, second])

        assert merged.columns == ["id", "name"]
        assert merged.data.to_dict("records") == [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]

    def test_single_batch(self):
        merged = merge_batches("policy", "fp1", 300, [rows(3)])
        assert merged.row_count == 3
        assert list(merged.data.index) == [0, 1, 2]

    def test_column_mismatch_fails(self):
        first = pd.DataFrame({"id": [1], "name": ["a"]})
        second = pd.DataFrame({"id": [2], "amount": [9.5]})
        with pytest.raises(SchemaMismatchError) as exc_info:
            merge_batches("policy", "fp1", 300, [first, second])

        error = exc_info.value
        assert error.table == "policy"
        assert error.fingerprint == "fp1"
        assert error.details["missing_columns"] == ["name"]
        assert error.details["unexpected_columns"] == ["amount"]

    def test_no_batches(self):
        with pytest.raises(ValueError):
            merge_batches("policy", "fp1", 300, [])
