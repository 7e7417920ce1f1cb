"""Manifest model and provider.

The producer publishes one JSON document describing every exported table:

```json
{
  "policy": {
    "dataFilesPath": "s3://cda-bucket/policy/",
    "lastSuccessfulWriteTimestamp": "1700000300000",
    "totalProcessedRecordsCount": 1200,
    "schemaHistory": {"a1b2": "1700000000000", "c3d4": "1700000200000"}
  }
}
```

The manifest is read once per run and is read-only to the rest of the copier.
Any problem with it is fatal: no job starts from a manifest that cannot be
trusted.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional

from cdacopy.lib.errors import CopyError, ManifestError
from cdacopy.lib.storage.base import ObjectStore, is_timestamp_name

logger = logging.getLogger(__name__)

__all__ = ["Manifest", "ManifestEntry", "ManifestReader", "filter_tables", "parse_manifest"]


@dataclass(frozen=True)
class ManifestEntry:
    """One table's export state."""

    table: str
    base_path: str
    schema_history: Mapping[str, int]
    last_successful_write_timestamp: int
    total_processed_records_count: Optional[int] = field(default=None, compare=False)


Manifest = Dict[str, ManifestEntry]


def _parse_timestamp(value: Any, *, table: str, field_name: str, uri: Optional[str]) -> int:
    if isinstance(value, bool):
        raise ManifestError(f"{field_name} is not a timestamp", uri=uri, table=table, details={"value": value})
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and is_timestamp_name(value.strip()):
        number = int(value.strip())
    else:
        raise ManifestError(f"{field_name} is not a timestamp", uri=uri, table=table, details={"value": value})
    return number


def _parse_entry(table: str, raw: Any, uri: Optional[str]) -> ManifestEntry:
    if not isinstance(raw, dict):
        raise ManifestError("Manifest entry is not an object", uri=uri, table=table)

    base_path = raw.get("dataFilesPath")
    if not base_path or not isinstance(base_path, str):
        raise ManifestError("Manifest entry has no dataFilesPath", uri=uri, table=table)
    if not base_path.endswith("/"):
        base_path += "/"

    if "lastSuccessfulWriteTimestamp" not in raw:
        raise ManifestError("Manifest entry has no lastSuccessfulWriteTimestamp", uri=uri, table=table)
    last_write = _parse_timestamp(
        raw["lastSuccessfulWriteTimestamp"],
        table=table,
        field_name="lastSuccessfulWriteTimestamp",
        uri=uri,
    )

    history_raw = raw.get("schemaHistory")
    if not isinstance(history_raw, dict) or not history_raw:
        raise ManifestError("Manifest entry has an empty schemaHistory", uri=uri, table=table)
    schema_history = {
        str(fingerprint): _parse_timestamp(
            ts, table=table, field_name=f"schemaHistory[{fingerprint}]", uri=uri
        )
        for fingerprint, ts in history_raw.items()
    }

    count = raw.get("totalProcessedRecordsCount")
    return ManifestEntry(
        table=table,
        base_path=base_path,
        schema_history=schema_history,
        last_successful_write_timestamp=last_write,
        total_processed_records_count=int(count) if isinstance(count, int) else None,
    )


def parse_manifest(text: str, uri: Optional[str] = None) -> Manifest:
    """Parse a manifest document into entries keyed by table name.

    Raises:
        ManifestError: If the document is not JSON or an entry is malformed
    """
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise ManifestError("Manifest is not valid JSON", uri=uri, cause=e) from e

    if not isinstance(document, dict):
        raise ManifestError("Manifest must be a JSON object keyed by table name", uri=uri)

    return {table: _parse_entry(table, raw, uri) for table, raw in document.items()}


def filter_tables(manifest: Manifest, tables_to_include: Iterable[str]) -> Manifest:
    """Restrict a manifest to the named tables; an empty selection keeps all."""
    wanted = list(tables_to_include)
    if not wanted:
        return manifest

    missing = [t for t in wanted if t not in manifest]
    for table in missing:
        logger.warning("Table '%s' is configured in tables_to_include but absent from the manifest", table)

    return {table: entry for table, entry in manifest.items() if table in set(wanted)}


class ManifestReader:
    """Manifest provider backed by an object store."""

    def __init__(self, store: ObjectStore, manifest_uri: str):
        self.store = store
        self.manifest_uri = manifest_uri

    def get_manifest(self) -> Manifest:
        """Read and parse the manifest.

        Raises:
            ManifestError: If the manifest cannot be read or parsed
        """
        logger.info("Reading manifest from %s", self.manifest_uri)
        try:
            text = self.store.read_text(self.manifest_uri)
        except (CopyError, OSError, UnicodeDecodeError) as e:
            raise ManifestError("Manifest could not be read", uri=self.manifest_uri, cause=e) from e

        manifest = parse_manifest(text, uri=self.manifest_uri)
        logger.info("Manifest has %d table(s): %s", len(manifest), ", ".join(sorted(manifest)))
        return manifest
