"""YAML configuration loader for the CDA copier.

Example YAML (cda_copy.yaml):
    source:
      bucket_name: my-cda-bucket
      manifest_key: manifest.json
    output:
      path: ./cda_output
      file_format: csv
      include_column_names: true
    savepoints:
      path: ./savepoints
    performance:
      jobs_in_parallel: 4
      threads_per_job: 8

Usage:
    # Command line
    cda-copy --config ./cda_copy.yaml

    # Python API
    from cdacopy.lib.config_loader import load_config
    config = load_config("./cda_copy.yaml")
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from cdacopy.lib.env import expand_config
from cdacopy.lib.errors import ConfigurationError
from cdacopy.lib.resilience import RetryConfig
from cdacopy.lib.storage.base import is_timestamp_name

logger = logging.getLogger(__name__)

__all__ = [
    "ClientConfig",
    "FileFormat",
    "OutputSettings",
    "PerformanceTuning",
    "SourceLocation",
    "load_config",
    "parse_config",
]

DEFAULT_MANIFEST_KEY = "manifest.json"
DEFAULT_JOBS_IN_PARALLEL = 4
DEFAULT_THREADS_PER_JOB = 8


class FileFormat(Enum):
    """Output file format."""

    CSV = "csv"
    PARQUET = "parquet"


FILE_FORMAT_MAP = {
    "csv": FileFormat.CSV,
    "parquet": FileFormat.PARQUET,
}


@dataclass(frozen=True)
class SourceLocation:
    """Where the producer publishes the manifest and data files.

    Exactly one of ``bucket_name`` (S3) or ``path`` (local directory) is set.
    """

    manifest_key: str = DEFAULT_MANIFEST_KEY
    bucket_name: Optional[str] = None
    path: Optional[str] = None

    @property
    def base_uri(self) -> str:
        if self.bucket_name:
            return f"s3://{self.bucket_name}/"
        return self.path.rstrip("/") + "/"

    @property
    def manifest_uri(self) -> str:
        return self.base_uri + self.manifest_key.lstrip("/")


@dataclass(frozen=True)
class OutputSettings:
    """Output sink settings."""

    path: str
    file_format: FileFormat = FileFormat.CSV
    include_column_names: bool = True
    max_rows_per_file: int = 0
    save_into_timestamp_directory: bool = False
    tables_to_include: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PerformanceTuning:
    """Concurrency limits: ``jobs_in_parallel`` (J) and ``threads_per_job`` (F)."""

    jobs_in_parallel: int = DEFAULT_JOBS_IN_PARALLEL
    threads_per_job: int = DEFAULT_THREADS_PER_JOB


@dataclass(frozen=True)
class ClientConfig:
    """Complete client configuration."""

    source: SourceLocation
    output: OutputSettings
    savepoints_path: str
    performance: PerformanceTuning = field(default_factory=PerformanceTuning)
    storage_options: Dict[str, Any] = field(default_factory=dict)
    retry: RetryConfig = field(default_factory=RetryConfig.default)


def _resolve_path(path: str, config_dir: Path) -> str:
    """Resolve relative paths based on config file location.

    Paths starting with "./" or "../" are resolved relative to the YAML file.
    Absolute paths and cloud URIs are unchanged.
    """
    if not path:
        return path

    if path.startswith(("s3://", "abfs://", "http://", "https://")):
        return path

    if os.path.isabs(path):
        return path

    if path.startswith("./") or path.startswith("../"):
        return str(config_dir / path)

    return path


def _as_bool(section: Dict[str, Any], key: str, default: bool, issues: List[str], prefix: str) -> bool:
    value = section.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    issues.append(f"{prefix}.{key} must be a boolean (got {value!r})")
    return default


def _as_positive_int(section: Dict[str, Any], key: str, default: int, issues: List[str], prefix: str) -> int:
    value = section.get(key, default)
    try:
        number = int(value)
    except (TypeError, ValueError):
        issues.append(f"{prefix}.{key} must be a positive integer (got {value!r})")
        return default
    if isinstance(value, bool) or number <= 0 or str(number) != str(value).strip():
        issues.append(f"{prefix}.{key} must be a positive integer (got {value!r})")
        return default
    return number


def _as_non_negative_int(section: Dict[str, Any], key: str, default: int, issues: List[str], prefix: str) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not is_timestamp_name(str(value).strip()):
        issues.append(f"{prefix}.{key} must be a non-negative integer (got {value!r})")
        return default
    return int(value)


def _parse_source(config: Dict[str, Any], config_dir: Path, issues: List[str]) -> SourceLocation:
    source = config.get("source") or {}
    bucket_name = source.get("bucket_name")
    path = source.get("path")
    manifest_key = source.get("manifest_key", DEFAULT_MANIFEST_KEY)

    if bucket_name and path:
        issues.append("source.bucket_name and source.path are mutually exclusive")
    elif not bucket_name and not path:
        issues.append("source.bucket_name (or source.path) is required")

    if path:
        path = _resolve_path(str(path), config_dir)
    if not manifest_key:
        issues.append("source.manifest_key must not be empty")

    return SourceLocation(
        manifest_key=str(manifest_key or DEFAULT_MANIFEST_KEY),
        bucket_name=bucket_name,
        path=path or (None if bucket_name else "."),
    )


def _parse_output(config: Dict[str, Any], config_dir: Path, issues: List[str]) -> OutputSettings:
    output = config.get("output") or {}

    path = output.get("path")
    if not path:
        issues.append("output.path is required")
        path = ""

    format_str = str(output.get("file_format", "csv")).lower()
    file_format = FILE_FORMAT_MAP.get(format_str)
    if file_format is None:
        valid = ", ".join(sorted(FILE_FORMAT_MAP.keys()))
        issues.append(
            f"Invalid output.file_format '{output.get('file_format')}'. Valid options: {valid}"
        )
        file_format = FileFormat.CSV

    tables = output.get("tables_to_include") or []
    if isinstance(tables, str):
        tables = [t.strip() for t in tables.split(",") if t.strip()]
    if not isinstance(tables, list):
        issues.append("output.tables_to_include must be a list of table names")
        tables = []

    return OutputSettings(
        path=_resolve_path(str(path), config_dir),
        file_format=file_format,
        include_column_names=_as_bool(output, "include_column_names", True, issues, "output"),
        max_rows_per_file=_as_non_negative_int(output, "max_rows_per_file", 0, issues, "output"),
        save_into_timestamp_directory=_as_bool(
            output, "save_into_timestamp_directory", False, issues, "output"
        ),
        tables_to_include=[str(t) for t in tables],
    )


def _parse_retry(config: Dict[str, Any], issues: List[str]) -> RetryConfig:
    retry = config.get("retry") or {}
    max_attempts = _as_positive_int(retry, "max_attempts", 3, issues, "retry")
    backoff = retry.get("backoff_seconds", 1.0)
    try:
        backoff_seconds = float(backoff)
        if backoff_seconds < 0:
            raise ValueError(backoff)
    except (TypeError, ValueError):
        issues.append(f"retry.backoff_seconds must be a non-negative number (got {backoff!r})")
        backoff_seconds = 1.0
    return RetryConfig(max_attempts=max_attempts, backoff_seconds=backoff_seconds)


def parse_config(
    config: Dict[str, Any],
    config_dir: Optional[Path] = None,
) -> ClientConfig:
    """Build a ClientConfig from a parsed YAML dictionary.

    Every issue is collected before raising, so one run reports all of them.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    if not isinstance(config, dict):
        raise ConfigurationError("Configuration must be a YAML mapping")

    config_dir = config_dir or Path.cwd()
    config, issues = expand_config(config)

    source = _parse_source(config, config_dir, issues)
    output = _parse_output(config, config_dir, issues)

    savepoints = config.get("savepoints") or {}
    savepoints_path = savepoints.get("path")
    if not savepoints_path:
        issues.append("savepoints.path is required")
        savepoints_path = ""

    performance_cfg = config.get("performance") or {}
    performance = PerformanceTuning(
        jobs_in_parallel=_as_positive_int(
            performance_cfg, "jobs_in_parallel", DEFAULT_JOBS_IN_PARALLEL, issues, "performance"
        ),
        threads_per_job=_as_positive_int(
            performance_cfg, "threads_per_job", DEFAULT_THREADS_PER_JOB, issues, "performance"
        ),
    )

    retry = _parse_retry(config, issues)

    storage_options = config.get("storage") or {}
    if not isinstance(storage_options, dict):
        issues.append("storage must be a mapping of object-store options")
        storage_options = {}

    if issues:
        raise ConfigurationError("Invalid configuration", issues=issues)

    return ClientConfig(
        source=source,
        output=output,
        savepoints_path=_resolve_path(str(savepoints_path), config_dir),
        performance=performance,
        storage_options={k: v for k, v in storage_options.items() if v is not None},
        retry=retry,
    )


def load_config(path: Union[str, Path]) -> ClientConfig:
    """Load and validate a YAML configuration file.

    Raises:
        ConfigurationError: If the file is missing, unparsable, or invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}",
            suggestion="Pass --config with the path to your YAML configuration.",
        )

    try:
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in {config_path}",
            details={"cause": str(e)},
        ) from e

    logger.debug("Loaded configuration from %s", config_path)
    return parse_config(raw or {}, config_dir=config_path.parent.resolve())
