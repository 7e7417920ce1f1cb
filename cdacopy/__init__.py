"""Incremental copier for change-data-capture export snapshots.

Copies timestamp-partitioned exports, described by a producer manifest, from
an object store to an output location, resuming from per-table savepoints.
"""

__version__ = "1.0.0"
