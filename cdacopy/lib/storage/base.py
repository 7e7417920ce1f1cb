"""Abstract base class for object stores.

Defines the interface the copier needs from the place the producer exports
to: one-level "directory" listing, recursive object listing, and reads.
Partition listing and partition reads are built on top of those primitives
here so every backend shares the same semantics.
"""

from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from cdacopy.lib.errors import SchemaMismatchError, StorageError

logger = logging.getLogger(__name__)

__all__ = ["ObjectStore", "PartitionListing", "is_timestamp_name", "join_uri"]

PARQUET_SUFFIX = ".parquet"


@dataclass(frozen=True)
class PartitionListing:
    """A partition directory name and its full URI (always ending in "/")."""

    name: str
    uri: str


def join_uri(base: str, *parts: str) -> str:
    """Join URI segments with single slashes, keeping a trailing slash if the last part has one."""
    result = base
    for part in parts:
        result = f"{result.rstrip('/')}/{part.lstrip('/')}"
    return result


def is_timestamp_name(name: str) -> bool:
    """True for names made only of ASCII digits; str.isdigit alone also accepts superscripts."""
    return name.isascii() and name.isdigit()


def _partition_sort_key(listing: PartitionListing):
    if is_timestamp_name(listing.name):
        return (0, int(listing.name), listing.name)
    return (1, 0, listing.name)


class ObjectStore(ABC):
    """Abstract base class for object stores.

    Subclasses implement the four primitives; ``list_partitions`` and
    ``read_partition`` are shared.
    """

    def __init__(self, **options: Any) -> None:
        self.options = options

    @property
    @abstractmethod
    def scheme(self) -> str:
        """Return the URI scheme for this backend (e.g., 'local', 's3')."""

    @abstractmethod
    def list_directories(self, prefix_uri: str) -> List[str]:
        """List immediate child "directory" names under a prefix (non-recursive).

        Args:
            prefix_uri: URI of the parent directory (ending in "/")

        Returns:
            Child directory names, without slashes
        """

    @abstractmethod
    def list_objects(self, prefix_uri: str) -> List[str]:
        """List every object URI under a prefix, recursively."""

    @abstractmethod
    def read_bytes(self, uri: str) -> bytes:
        """Read an object's contents."""

    def read_text(self, uri: str, encoding: str = "utf-8") -> str:
        """Read an object's contents as text."""
        return self.read_bytes(uri).decode(encoding)

    def list_partitions(
        self,
        base_uri: str,
        fingerprint: str,
        lower_bound: Optional[int] = None,
    ) -> List[PartitionListing]:
        """List partition directories under ``base_uri/fingerprint/``.

        Names that parse as decimal integers below ``lower_bound`` are
        skipped. The comparison is numeric, not lexicographic, so timestamps
        of different widths compare correctly. Names that do not parse are
        passed through for the caller to reject.

        Args:
            base_uri: Table data path from the manifest
            fingerprint: Schema fingerprint sub-directory
            lower_bound: Smallest timestamp to include, or None for all

        Returns:
            Listings ordered by timestamp
        """
        prefix = join_uri(base_uri, fingerprint) + "/"
        listings: List[PartitionListing] = []

        for name in self.list_directories(prefix):
            if lower_bound is not None and is_timestamp_name(name) and int(name) < lower_bound:
                continue
            listings.append(PartitionListing(name=name, uri=join_uri(prefix, name) + "/"))

        logger.debug("Listed %d partition(s) under %s (lower bound %s)", len(listings), prefix, lower_bound)
        return sorted(listings, key=_partition_sort_key)

    def read_partition(self, uri: str) -> pd.DataFrame:
        """Read every Parquet object under a partition into one DataFrame.

        Every object must carry the same column set; column order may differ.

        Raises:
            StorageError: If the partition holds no Parquet objects or one
                cannot be decoded or combined
            SchemaMismatchError: If two objects have different column sets
        """
        data_files = sorted(
            u for u in self.list_objects(uri)
            if u.endswith(PARQUET_SUFFIX) and not u.rsplit("/", 1)[-1].startswith(("_", "."))
        )
        if not data_files:
            raise StorageError("Partition contains no Parquet data files", uri=uri)

        tables: List[pa.Table] = []
        for file_uri in data_files:
            payload = self.read_bytes(file_uri)
            try:
                tables.append(pq.read_table(io.BytesIO(payload)))
            except (pa.ArrowException, OSError) as e:
                raise StorageError("Could not decode Parquet object", uri=file_uri, cause=e) from e

        if len(tables) == 1:
            return tables[0].to_pandas()

        reference = tables[0].schema.names
        for file_uri, table in zip(data_files[1:], tables[1:]):
            if set(table.schema.names) != set(reference):
                raise SchemaMismatchError(
                    "Parquet objects of one partition have different column sets",
                    expected=reference,
                    actual=table.schema.names,
                    details={"uri": file_uri},
                )

        try:
            combined = pa.concat_tables([t.select(reference) for t in tables], promote_options="default")
        except pa.ArrowException as e:
            raise StorageError("Could not combine Parquet objects", uri=uri, cause=e) from e
        return combined.to_pandas()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"
