"""Object store abstraction for the copier.

Provides a unified interface for listing and reading exported partitions
from different backends: local filesystem and AWS S3.

Usage:
    from cdacopy.lib.storage import get_object_store

    # Local mirror of an export
    store = get_object_store("./exports/")

    # AWS S3
    store = get_object_store("s3://my-cda-bucket/")
"""

from typing import Any

from cdacopy.lib.storage.base import ObjectStore, PartitionListing, join_uri
from cdacopy.lib.storage.local import LocalObjectStore
from cdacopy.lib.storage.s3 import S3ObjectStore, parse_s3_uri

__all__ = [
    "ObjectStore",
    "PartitionListing",
    "LocalObjectStore",
    "S3ObjectStore",
    "get_object_store",
    "join_uri",
    "parse_s3_uri",
]


def get_object_store(uri: str, **options: Any) -> ObjectStore:
    """Get the appropriate object store for a URI.

    Args:
        uri: Source location (local path or ``s3://`` URI)
        **options: Backend-specific options (credentials, region, retry, etc.)

    Returns:
        ObjectStore instance for the detected backend

    Examples:
        >>> get_object_store("./exports/")
        LocalObjectStore()
        >>> get_object_store("s3://my-cda-bucket/")
        S3ObjectStore(region=None)
    """
    if uri.startswith("s3://"):
        return S3ObjectStore(**options)
    options.pop("retry", None)
    return LocalObjectStore(**options)
