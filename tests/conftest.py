"""Pytest configuration and fixtures."""

import json
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
import pytest

from cdacopy.lib.config_loader import OutputSettings
from cdacopy.lib.manifest import ManifestEntry
from cdacopy.lib.savepoints import SavepointStore
from cdacopy.lib.storage import LocalObjectStore
from cdacopy.lib.writer import FileOutputWriter


def write_partition(
    table_dir: Path,
    fingerprint: str,
    timestamp: Any,
    frame: pd.DataFrame,
    file_name: str = "part-00000.parquet",
) -> Path:
    """Write one Parquet object into ``table_dir/fingerprint/timestamp/``."""
    partition_dir = table_dir / fingerprint / str(timestamp)
    partition_dir.mkdir(parents=True, exist_ok=True)
    path = partition_dir / file_name
    pq.write_table(pa.Table.from_pandas(frame, preserve_index=False), path)
    return path


def rows(count: int, start: int = 0) -> pd.DataFrame:
    """A small frame shaped like a CDA export, including internal columns."""
    ids = list(range(start, start + count))
    return pd.DataFrame(
        {
            "id": ids,
            "name": [f"row-{i}" for i in ids],
            "gwcbi___seqval_hex": [f"{i:08x}" for i in ids],
            "gwcbi___operation": [2] * count,
            "gwcbi___connector_ts_ms": [1700000000000 + i for i in ids],
        }
    )


def manifest_document(
    export_root: Path,
    tables: Dict[str, Dict[str, Any]],
) -> Dict[str, Any]:
    """Build a manifest document from ``{table: {"last": ts, "history": {...}}}``."""
    document = {}
    for table, export in tables.items():
        document[table] = {
            "dataFilesPath": str(export_root / table) + "/",
            "lastSuccessfulWriteTimestamp": str(export["last"]),
            "totalProcessedRecordsCount": export.get("count", 0),
            "schemaHistory": {fp: str(ts) for fp, ts in export["history"].items()},
        }
    return document


def write_manifest(export_root: Path, tables: Dict[str, Dict[str, Any]]) -> Path:
    path = export_root / "manifest.json"
    export_root.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(manifest_document(export_root, tables)), encoding="utf-8")
    return path


def make_entry(
    table: str = "policy",
    history: Optional[Dict[str, int]] = None,
    last: int = 300,
    base_path: str = "/exports/policy/",
) -> ManifestEntry:
    return ManifestEntry(
        table=table,
        base_path=base_path,
        schema_history=history or {"fp1": 100},
        last_successful_write_timestamp=last,
    )


@pytest.fixture
def export_root(tmp_path: Path) -> Path:
    root = tmp_path / "export"
    root.mkdir()
    return root


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "output"


@pytest.fixture
def savepoints_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "savepoints"
    directory.mkdir()
    return directory


@pytest.fixture
def savepoints(savepoints_dir: Path) -> SavepointStore:
    return SavepointStore(savepoints_dir)


@pytest.fixture
def local_store() -> LocalObjectStore:
    return LocalObjectStore()


@pytest.fixture
def csv_writer(output_dir: Path) -> FileOutputWriter:
    return FileOutputWriter(OutputSettings(path=str(output_dir)))


@pytest.fixture
def config_dict(export_root: Path, output_dir: Path, savepoints_dir: Path) -> Dict[str, Any]:
    return {
        "source": {"path": str(export_root), "manifest_key": "manifest.json"},
        "output": {"path": str(output_dir), "file_format": "csv"},
        "savepoints": {"path": str(savepoints_dir)},
        "performance": {"jobs_in_parallel": 2, "threads_per_job": 2},
        "retry": {"max_attempts": 1, "backoff_seconds": 0},
    }
