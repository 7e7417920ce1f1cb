"""Fingerprint windows: which schema versions still hold unprocessed data.

Each fingerprint in a table's schema history owns the half-open interval
from its own start timestamp to the next fingerprint's start; the newest
fingerprint's interval is unbounded. A fingerprint still holds unprocessed
records when its interval ends after the table's savepoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping, Optional

from cdacopy.lib.manifest import ManifestEntry

__all__ = [
    "NEVER_PROCESSED",
    "FingerprintInterval",
    "fingerprint_intervals",
    "fingerprints_with_unprocessed_records",
]

NEVER_PROCESSED = -1


@dataclass(frozen=True)
class FingerprintInterval:
    """``[start, end)`` for one fingerprint; ``end`` is None when unbounded."""

    fingerprint: str
    start: int
    end: Optional[int] = None

    @property
    def is_unbounded(self) -> bool:
        return self.end is None

    def ends_after(self, timestamp: int) -> bool:
        return self.end is None or self.end > timestamp


def fingerprint_intervals(schema_history: Mapping[str, int]) -> List[FingerprintInterval]:
    """Derive contiguous, non-overlapping intervals from a schema history.

    Fingerprints are ordered by start timestamp (ties broken by fingerprint
    so the result is deterministic).

    Raises:
        ValueError: If the schema history is empty
    """
    if not schema_history:
        raise ValueError("schema history must not be empty")

    ordered = sorted(schema_history.items(), key=lambda item: (item[1], item[0]))
    intervals: List[FingerprintInterval] = []
    for (fingerprint, start), (_, next_start) in zip(ordered, ordered[1:]):
        intervals.append(FingerprintInterval(fingerprint, start, next_start))

    last_fingerprint, last_start = ordered[-1]
    intervals.append(FingerprintInterval(last_fingerprint, last_start, None))
    return intervals


def fingerprints_with_unprocessed_records(
    entry: ManifestEntry,
    last_processed: Optional[int],
) -> List[str]:
    """Fingerprints whose interval ends after the table's savepoint.

    Args:
        entry: The table's manifest entry
        last_processed: The table's savepoint, or None if never processed

    Returns:
        Qualifying fingerprints, oldest first
    """
    watermark = NEVER_PROCESSED if last_processed is None else last_processed
    return [
        interval.fingerprint
        for interval in fingerprint_intervals(entry.schema_history)
        if interval.ends_after(watermark)
    ]
