"""Local filesystem object store.

Treats a directory tree as an object store, for local mirrors of an export
and for tests.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from cdacopy.lib.errors import StorageError
from cdacopy.lib.storage.base import ObjectStore

logger = logging.getLogger(__name__)

__all__ = ["LocalObjectStore"]


def _to_path(uri: str) -> Path:
    if uri.startswith("file://"):
        uri = uri[len("file://"):]
    return Path(uri)


class LocalObjectStore(ObjectStore):
    """Local filesystem object store.

    Example:
        >>> store = LocalObjectStore()
        >>> store.list_partitions("/exports/policy/", "a1b2")
        [PartitionListing(name='1700000000000', uri='/exports/policy/a1b2/1700000000000/')]
    """

    @property
    def scheme(self) -> str:
        return "local"

    def list_directories(self, prefix_uri: str) -> List[str]:
        path = _to_path(prefix_uri)
        if not path.exists():
            return []
        try:
            return sorted(item.name for item in path.iterdir() if item.is_dir())
        except OSError as e:
            raise StorageError("Failed to list directory", uri=prefix_uri, cause=e) from e

    def list_objects(self, prefix_uri: str) -> List[str]:
        path = _to_path(prefix_uri)
        if not path.exists():
            return []
        try:
            return sorted(str(item) for item in path.rglob("*") if item.is_file())
        except OSError as e:
            raise StorageError("Failed to list objects", uri=prefix_uri, cause=e) from e

    def read_bytes(self, uri: str) -> bytes:
        try:
            return _to_path(uri).read_bytes()
        except OSError as e:
            raise StorageError("Failed to read object", uri=uri, cause=e) from e
