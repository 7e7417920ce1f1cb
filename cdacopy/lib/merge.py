"""Batch merging for one copy job.

All partitions of a job share table and fingerprint, hence schema. Merging
is a union by column name: rows are appended, columns are aligned by name
(so arrival order does not matter), and a column-set mismatch between two
partitions fails the job instead of producing a partial merge.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import FrozenSet, List, Sequence

import pandas as pd

from cdacopy.lib.errors import SchemaMismatchError

logger = logging.getLogger(__name__)

__all__ = [
    "INTERNAL_COLUMN_PREFIX",
    "RELEVANT_INTERNAL_COLUMNS",
    "MergedBatch",
    "drop_internal_columns",
    "merge_batches",
]

INTERNAL_COLUMN_PREFIX = "gwcbi___"
RELEVANT_INTERNAL_COLUMNS: FrozenSet[str] = frozenset({"gwcbi___seqval_hex", "gwcbi___operation"})


@dataclass
class MergedBatch:
    """All rows fetched for one job, tagged for the output sink.

    ``manifest_timestamp`` is the manifest's last successful write timestamp
    for the table, not any partition's own timestamp; it is the value
    committed as the table's new savepoint.
    """

    table: str
    fingerprint: str
    manifest_timestamp: int
    data: pd.DataFrame
    partition_count: int = 1

    @property
    def row_count(self) -> int:
        return len(self.data)

    @property
    def columns(self) -> List[str]:
        return [str(c) for c in self.data.columns]


def drop_internal_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Drop producer-internal columns, keeping the change-tracking ones.

    Internal columns are those whose lower-cased name starts with
    ``gwcbi___``; ``gwcbi___seqval_hex`` and ``gwcbi___operation`` are kept.
    """
    drop = [
        c for c in df.columns
        if str(c).lower().startswith(INTERNAL_COLUMN_PREFIX) and c not in RELEVANT_INTERNAL_COLUMNS
    ]
    if not drop:
        return df
    return df.drop(columns=drop)


def merge_batches(
    table: str,
    fingerprint: str,
    manifest_timestamp: int,
    batches: Sequence[pd.DataFrame],
) -> MergedBatch:
    """Union every partition batch of one job into a MergedBatch.

    Raises:
        ValueError: If there are no batches
        SchemaMismatchError: If two batches have different column sets
    """
    if not batches:
        raise ValueError(f"No batches to merge for {table}/{fingerprint}")

    reference = list(batches[0].columns)
    reference_set = set(reference)
    for batch in batches[1:]:
        if set(batch.columns) != reference_set:
            raise SchemaMismatchError(
                "Partitions of one fingerprint have different column sets",
                table=table,
                fingerprint=fingerprint,
                expected=[str(c) for c in reference],
                actual=[str(c) for c in batch.columns],
            )

    logger.info("Reducing '%s' with %d data frame(s)", table, len(batches))
    if len(batches) == 1:
        data = batches[0].reset_index(drop=True)
    else:
        data = pd.concat([batch[reference] for batch in batches], ignore_index=True)

    return MergedBatch(
        table=table,
        fingerprint=fingerprint,
        manifest_timestamp=manifest_timestamp,
        data=data,
        partition_count=len(batches),
    )
