"""Tests for partition enumeration, safety filtering and grouping."""

from typing import Dict, List

import pytest

from cdacopy.lib.errors import InvalidPartitionName
from cdacopy.lib.locations import (
    CopyJob,
    PartitionLocation,
    enumerate_partitions,
    filter_safe_partitions,
    group_into_jobs,
    is_safe_to_copy,
    parse_partition_timestamp,
    resumption_lower_bound,
)
from cdacopy.lib.storage.base import ObjectStore
from tests.conftest import make_entry


class DirectoryStore(ObjectStore):
    """Object store serving a fixed directory listing per prefix."""

    def __init__(self, directories: Dict[str, List[str]]):
        super().__init__()
        self.directories = directories

    @property
    def scheme(self) -> str:
        return "memory"

    def list_directories(self, prefix_uri: str) -> List[str]:
        return list(self.directories.get(prefix_uri, []))

    def list_objects(self, prefix_uri: str) -> List[str]:
        return []

    def read_bytes(self, uri: str) -> bytes:
        raise FileNotFoundError(uri)


def location(ts: int, table: str = "policy", fingerprint: str = "fp1") -> PartitionLocation:
    return PartitionLocation(table, fingerprint, ts, f"/exports/{table}/{fingerprint}/{ts}/")


class TestParsePartitionTimestamp:
    def test_digits(self):
        assert parse_partition_timestamp("1700000000000") == 1700000000000
        assert parse_partition_timestamp("0") == 0

    @pytest.mark.parametrize("name", ["", "tmp", "12a", "-5", "1.5", " 12", "_SUCCESS"])
    def test_rejects_non_decimal(self, name):
        with pytest.raises(InvalidPartitionName):
            parse_partition_timestamp(name)


class TestResumptionLowerBound:
    def test_never_processed(self):
        assert resumption_lower_bound(None) is None

    def test_one_past_savepoint(self):
        assert resumption_lower_bound(150) == 151


class TestEnumeratePartitions:
    def test_lists_everything_without_savepoint(self):
        store = DirectoryStore({"/exports/policy/fp1/": ["200", "100", "150"]})
        partitions = enumerate_partitions(store, make_entry(), "fp1", None)
        assert [p.timestamp for p in partitions] == [100, 150, 200]
        assert partitions[0].uri == "/exports/policy/fp1/100/"

    def test_savepoint_timestamp_is_excluded(self):
        """A partition stamped exactly at the savepoint was already copied."""
        store = DirectoryStore({"/exports/policy/fp1/": ["100", "150", "151", "200"]})
        partitions = enumerate_partitions(store, make_entry(), "fp1", 150)
        assert [p.timestamp for p in partitions] == [151, 200]

    def test_bound_is_numeric_not_lexicographic(self):
        """"99" sorts after "1000" as text but is older as a timestamp."""
        store = DirectoryStore({"/exports/policy/fp1/": ["99", "1000"]})
        partitions = enumerate_partitions(store, make_entry(), "fp1", 500)
        assert [p.timestamp for p in partitions] == [1000]

    def test_invalid_name_raises(self):
        store = DirectoryStore({"/exports/policy/fp1/": ["100", "tmp"]})
        with pytest.raises(InvalidPartitionName) as exc_info:
            enumerate_partitions(store, make_entry(), "fp1", None)
        assert exc_info.value.table == "policy"
        assert exc_info.value.fingerprint == "fp1"

    def test_missing_fingerprint_directory(self):
        store = DirectoryStore({})
        assert enumerate_partitions(store, make_entry(), "fp1", None) == []

    def test_unicode_digit_name_raises_invalid_partition(self):
        """A superscript digit is not a timestamp, with or without a savepoint."""
        store = DirectoryStore({"/exports/policy/fp1/": ["100", "²"]})
        for last_processed in (None, 50):
            with pytest.raises(InvalidPartitionName) as exc_info:
                enumerate_partitions(store, make_entry(), "fp1", last_processed)
            assert exc_info.value.name == "²"


class TestSafetyFilter:
    def test_boundaries(self):
        """Partitions at the declared-complete timestamp are kept; later ones wait."""
        manifest = {"policy": make_entry(last=300)}
        assert is_safe_to_copy(location(300), manifest)
        assert not is_safe_to_copy(location(301), manifest)
        assert is_safe_to_copy(location(1), manifest)

    def test_filter(self):
        manifest = {"policy": make_entry(last=300)}
        kept = filter_safe_partitions([location(100), location(300), location(301), location(400)], manifest)
        assert [p.timestamp for p in kept] == [100, 300]


class TestGroupIntoJobs:
    def test_one_job_per_table_and_fingerprint(self):
        partitions = [
            location(100, "policy", "fp1"),
            location(200, "policy", "fp1"),
            location(250, "policy", "fp2"),
            location(100, "claim", "fp9"),
        ]
        jobs = group_into_jobs(partitions)

        assert list(jobs) == [("policy", "fp1"), ("policy", "fp2"), ("claim", "fp9")]
        assert jobs[("policy", "fp1")].partitions == frozenset(partitions[:2])
        assert sum(len(j.partitions) for j in jobs.values()) == len(partitions)

    def test_no_partitions_no_jobs(self):
        assert group_into_jobs([]) == {}

    def test_job_ordering_and_range(self):
        job = CopyJob("policy", "fp1", frozenset({location(300), location(100), location(200)}))
        assert [p.timestamp for p in job.ordered_partitions()] == [100, 200, 300]
        assert job.timestamp_range == (100, 300)
        assert job.key == ("policy", "fp1")
