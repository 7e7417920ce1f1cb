"""Output sink: writes merged batches to the local filesystem.

Layout:
    <output>/<table>/<fingerprint>/<table>_<manifestTimestamp>.csv
    <output>/<table>/<fingerprint>/<manifestTimestamp>/<table>.csv   (timestamp directory mode)

File names derive from the manifest timestamp, so re-running a job that
failed after writing overwrites its earlier output instead of duplicating it.
Every data file is written to a temporary name and renamed into place.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
import pyarrow as pa
import yaml

from cdacopy.lib.config_loader import FileFormat, OutputSettings
from cdacopy.lib.errors import OutputValidationError
from cdacopy.lib.merge import MergedBatch

logger = logging.getLogger(__name__)

__all__ = ["FileOutputWriter", "OutputWriter", "WriteResult", "SCHEMA_FILE_NAME"]

SCHEMA_FILE_NAME = "_schema.yaml"

_EXTENSIONS = {
    FileFormat.CSV: ".csv",
    FileFormat.PARQUET: ".parquet",
}


@dataclass
class WriteResult:
    """Result of writing one merged batch."""

    success: bool
    path: str
    files_written: List[str] = field(default_factory=list)
    rows_written: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "path": self.path,
            "files_written": self.files_written,
            "rows_written": self.rows_written,
            "error": self.error,
        }


class OutputWriter(ABC):
    """Output sink interface.

    ``write`` must be safe to call again for the same batch on a later run.
    """

    @abstractmethod
    def validate(self) -> None:
        """Check the sink is usable before any job starts.

        Raises:
            OutputValidationError: If it is not
        """

    @abstractmethod
    def write(self, batch: MergedBatch) -> WriteResult:
        """Persist a merged batch and report whether it was accepted."""

    def describe(self) -> str:
        return self.__class__.__name__


class FileOutputWriter(OutputWriter):
    """Writes CSV or Parquet files plus a schema description per batch."""

    def __init__(self, settings: OutputSettings):
        self.settings = settings
        self.root = Path(settings.path)

    def describe(self) -> str:
        s = self.settings
        return (
            f"{s.file_format.value} files under {self.root} "
            f"(column names: {s.include_column_names}, "
            f"max rows per file: {s.max_rows_per_file or 'unlimited'}, "
            f"timestamp directories: {s.save_into_timestamp_directory})"
        )

    def validate(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OutputValidationError(
                "Output location cannot be created",
                path=str(self.root),
                details={"cause": str(e)},
            ) from e

        if not self.root.is_dir():
            raise OutputValidationError("Output location is not a directory", path=str(self.root))
        if not os.access(self.root, os.W_OK):
            raise OutputValidationError("Output location is not writable", path=str(self.root))

    def target_directory(self, batch: MergedBatch) -> Path:
        directory = self.root / batch.table / batch.fingerprint
        if self.settings.save_into_timestamp_directory:
            directory = directory / str(batch.manifest_timestamp)
        return directory

    def file_stem(self, batch: MergedBatch) -> str:
        if self.settings.save_into_timestamp_directory:
            return batch.table
        return f"{batch.table}_{batch.manifest_timestamp}"

    def _chunks(self, data: pd.DataFrame) -> List[pd.DataFrame]:
        limit = self.settings.max_rows_per_file
        if limit <= 0 or len(data) <= limit:
            return [data]
        return [data.iloc[start:start + limit] for start in range(0, len(data), limit)]

    def _write_frame(self, frame: pd.DataFrame, path: Path) -> None:
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            if self.settings.file_format == FileFormat.PARQUET:
                frame.to_parquet(tmp_path, index=False, engine="pyarrow")
            else:
                frame.to_csv(tmp_path, index=False, header=self.settings.include_column_names)
            os.replace(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    def _write_schema(self, batch: MergedBatch, directory: Path) -> Path:
        schema = {
            "table": batch.table,
            "fingerprint": batch.fingerprint,
            "manifest_timestamp": batch.manifest_timestamp,
            "columns": [
                {"name": str(name), "dtype": str(dtype)}
                for name, dtype in batch.data.dtypes.items()
            ],
        }
        path = directory / SCHEMA_FILE_NAME
        path.write_text(yaml.safe_dump(schema, sort_keys=False), encoding="utf-8")
        return path

    def write(self, batch: MergedBatch) -> WriteResult:
        directory = self.target_directory(batch)
        extension = _EXTENSIONS[self.settings.file_format]
        stem = self.file_stem(batch)

        try:
            directory.mkdir(parents=True, exist_ok=True)

            # Drop output left by an earlier attempt so a retry cannot leave extra parts.
            stale_files = [directory / f"{stem}{extension}"]
            stale_files.extend(directory.glob(f"{stem}_part[0-9][0-9][0-9][0-9][0-9]{extension}"))
            for stale in stale_files:
                if stale.exists():
                    stale.unlink()

            chunks = self._chunks(batch.data)
            files: List[str] = []
            for index, chunk in enumerate(chunks):
                name = f"{stem}{extension}" if len(chunks) == 1 else f"{stem}_part{index:05d}{extension}"
                path = directory / name
                self._write_frame(chunk, path)
                files.append(str(path))

            self._write_schema(batch, directory)
        except (OSError, ValueError, pa.ArrowException) as e:
            logger.error("Failed to write '%s' to %s: %s", batch.table, directory, e)
            return WriteResult(success=False, path=str(directory), error=str(e))

        logger.debug("Wrote %d file(s) for '%s' to %s", len(files), batch.table, directory)
        return WriteResult(
            success=True,
            path=str(directory),
            files_written=files,
            rows_written=batch.row_count,
        )
