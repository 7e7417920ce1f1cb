"""Partition discovery: enumerate, filter by safety window, group into jobs.

Planning is a sequence of small functions, each testable on its own:

1. ``resumption_lower_bound`` - first timestamp not yet processed.
2. ``enumerate_partitions`` - list partitions of one (table, fingerprint)
   at or after that bound, parsing every directory name as a timestamp.
3. ``is_safe_to_copy`` / ``filter_safe_partitions`` - drop partitions newer
   than the manifest's declared-complete timestamp.
4. ``group_into_jobs`` - one CopyJob per (table, fingerprint).
"""

from __future__ import annotations

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from cdacopy.lib.errors import InvalidPartitionName
from cdacopy.lib.manifest import Manifest, ManifestEntry
from cdacopy.lib.storage.base import ObjectStore

logger = logging.getLogger(__name__)

__all__ = [
    "CopyJob",
    "JobKey",
    "PartitionLocation",
    "enumerate_partitions",
    "filter_safe_partitions",
    "group_into_jobs",
    "is_safe_to_copy",
    "parse_partition_timestamp",
    "resumption_lower_bound",
]

JobKey = Tuple[str, str]

_TIMESTAMP_NAME = re.compile(r"[0-9]+")


@dataclass(frozen=True, order=True)
class PartitionLocation:
    """One timestamp-named partition directory under a fingerprint path."""

    table: str
    fingerprint: str
    timestamp: int
    uri: str


@dataclass(frozen=True)
class CopyJob:
    """All partitions to copy for one (table, fingerprint) pair."""

    table: str
    fingerprint: str
    partitions: FrozenSet[PartitionLocation]

    @property
    def key(self) -> JobKey:
        return (self.table, self.fingerprint)

    def ordered_partitions(self) -> List[PartitionLocation]:
        return sorted(self.partitions)

    @property
    def timestamp_range(self) -> Optional[Tuple[int, int]]:
        if not self.partitions:
            return None
        timestamps = [p.timestamp for p in self.partitions]
        return (min(timestamps), max(timestamps))


def resumption_lower_bound(last_processed: Optional[int]) -> Optional[int]:
    """First timestamp to list: one past the savepoint, or None to list everything."""
    if last_processed is None:
        return None
    return last_processed + 1


def parse_partition_timestamp(name: str, *, uri: Optional[str] = None, table: Optional[str] = None,
                              fingerprint: Optional[str] = None) -> int:
    """Parse a partition directory name as a non-negative decimal timestamp.

    Raises:
        InvalidPartitionName: If the name is anything other than ASCII digits
    """
    if not _TIMESTAMP_NAME.fullmatch(name):
        raise InvalidPartitionName(name, uri=uri, table=table, fingerprint=fingerprint)
    return int(name)


def enumerate_partitions(
    store: ObjectStore,
    entry: ManifestEntry,
    fingerprint: str,
    last_processed: Optional[int],
) -> List[PartitionLocation]:
    """List candidate partitions for one (table, fingerprint) after the savepoint.

    Raises:
        InvalidPartitionName: If a listed directory name is not a timestamp
        StorageError: If listing fails
    """
    lower_bound = resumption_lower_bound(last_processed)
    logger.debug(
        "Last savepoint for '%s' is %s; listing fingerprint '%s' from %s",
        entry.table,
        last_processed,
        fingerprint,
        lower_bound,
    )

    locations: List[PartitionLocation] = []
    for listing in store.list_partitions(entry.base_path, fingerprint, lower_bound):
        timestamp = parse_partition_timestamp(
            listing.name, uri=listing.uri, table=entry.table, fingerprint=fingerprint
        )
        if lower_bound is not None and timestamp < lower_bound:
            continue
        locations.append(PartitionLocation(entry.table, fingerprint, timestamp, listing.uri))
    return locations


def is_safe_to_copy(partition: PartitionLocation, manifest: Manifest) -> bool:
    """Keep a partition only if the producer has declared it complete."""
    limit = manifest[partition.table].last_successful_write_timestamp
    include = partition.timestamp <= limit
    if not include:
        logger.debug(
            "Deferring partition %d of '%s': later than the manifest last successful write timestamp %d",
            partition.timestamp,
            partition.table,
            limit,
        )
    return include


def filter_safe_partitions(
    partitions: Iterable[PartitionLocation],
    manifest: Manifest,
) -> List[PartitionLocation]:
    return [p for p in partitions if is_safe_to_copy(p, manifest)]


def group_into_jobs(partitions: Iterable[PartitionLocation]) -> Dict[JobKey, CopyJob]:
    """Group partitions into one CopyJob per (table, fingerprint), in first-seen order."""
    grouped: "OrderedDict[JobKey, List[PartitionLocation]]" = OrderedDict()
    for partition in partitions:
        grouped.setdefault((partition.table, partition.fingerprint), []).append(partition)

    return OrderedDict(
        (key, CopyJob(table=key[0], fingerprint=key[1], partitions=frozenset(items)))
        for key, items in grouped.items()
    )
