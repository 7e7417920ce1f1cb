"""Savepoint (watermark) persistence.

A savepoint records, per table, the manifest timestamp through which the
table's data has been durably copied. Savepoints live in one JSON document,
``savepoints.json``, inside the configured savepoints directory:

```json
{
  "policy": "1700000300000",
  "claim": "1700000250000"
}
```

Writes are atomic (temp file + rename) and serialized by a lock, because jobs
for different tables commit from different worker threads. A commit never
moves a table's savepoint backwards: the stored value is the maximum ever
committed.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Union

from cdacopy.lib.errors import SavepointError

logger = logging.getLogger(__name__)

__all__ = ["SAVEPOINTS_FILE_NAME", "SavepointStore"]

SAVEPOINTS_FILE_NAME = "savepoints.json"


class SavepointStore:
    """Watermark store backed by a local ``savepoints.json`` file.

    Example:
        >>> store = SavepointStore("./savepoints")
        >>> store.get("policy") is None
        True
        >>> store.set("policy", 1700000300000)
        1700000300000
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.path = self.directory / SAVEPOINTS_FILE_NAME
        self._lock = threading.Lock()
        self._validate_location()
        self._savepoints: Dict[str, int] = self._load()

    def _validate_location(self) -> None:
        if not self.directory.exists():
            raise SavepointError(
                "Savepoints directory does not exist",
                path=str(self.directory),
                suggestion="Create the directory or fix savepoints.path.",
            )
        if not self.directory.is_dir():
            raise SavepointError("Savepoints path is not a directory", path=str(self.directory))
        if not os.access(self.directory, os.W_OK):
            raise SavepointError("Savepoints directory is not writable", path=str(self.directory))

    def _load(self) -> Dict[str, int]:
        if not self.path.exists():
            logger.info("No savepoints found at %s; every table starts from the beginning", self.path)
            return {}

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise SavepointError("Savepoints file could not be read", path=str(self.path), cause=e) from e

        if not isinstance(data, dict):
            raise SavepointError("Savepoints file must contain a JSON object", path=str(self.path))

        savepoints: Dict[str, int] = {}
        for table, value in data.items():
            try:
                savepoints[table] = int(value)
            except (TypeError, ValueError) as e:
                raise SavepointError(
                    "Savepoint is not an integer timestamp",
                    path=str(self.path),
                    table=table,
                    cause=e,
                ) from e

        logger.debug("Loaded %d savepoint(s) from %s", len(savepoints), self.path)
        return savepoints

    def get(self, table: str) -> Optional[int]:
        """Return the table's last processed timestamp, or None if never processed."""
        with self._lock:
            return self._savepoints.get(table)

    def set(self, table: str, timestamp: int) -> int:
        """Advance the table's savepoint and persist it.

        The stored value becomes ``max(current, timestamp)``; an older
        timestamp is ignored (and logged).

        Returns:
            The savepoint now stored for the table

        Raises:
            SavepointError: If the savepoints file cannot be written
        """
        with self._lock:
            current = self._savepoints.get(table)
            if current is not None and timestamp <= current:
                if timestamp < current:
                    logger.warning(
                        "Not moving savepoint for '%s' back from %d to %d",
                        table,
                        current,
                        timestamp,
                    )
                return current

            updated = dict(self._savepoints)
            updated[table] = timestamp
            self._write(updated)
            self._savepoints = updated

        logger.info("Saved savepoint for '%s': %d", table, timestamp)
        return timestamp

    def all(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._savepoints)

    def _write(self, savepoints: Dict[str, int]) -> None:
        document = {table: str(ts) for table, ts in sorted(savepoints.items())}
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=".savepoints-", suffix=".tmp", dir=self.directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise SavepointError("Savepoints file could not be written", path=str(self.path), cause=e) from e
