"""Copier library modules.

This package contains the core abstractions and utilities for incrementally
copying CDA export snapshots.
"""

from cdacopy.lib.config_loader import (
    ClientConfig,
    FileFormat,
    OutputSettings,
    PerformanceTuning,
    SourceLocation,
    load_config,
    parse_config,
)
from cdacopy.lib.copier import CopyPlan, RunSummary, TableCopier
from cdacopy.lib.env import expand_config, expand_env_vars, load_env_file
from cdacopy.lib.errors import (
    ConfigurationError,
    CopyError,
    InvalidPartitionName,
    ManifestError,
    OutputValidationError,
    OutputWriteError,
    SavepointError,
    SchemaMismatchError,
    StorageError,
)
from cdacopy.lib.locations import (
    CopyJob,
    PartitionLocation,
    enumerate_partitions,
    filter_safe_partitions,
    group_into_jobs,
)
from cdacopy.lib.manifest import Manifest, ManifestEntry, ManifestReader, parse_manifest
from cdacopy.lib.merge import MergedBatch, drop_internal_columns, merge_batches
from cdacopy.lib.observability import JobMetrics, RunMetrics, setup_logging
from cdacopy.lib.resilience import RetryConfig, retry_operation
from cdacopy.lib.savepoints import SavepointStore
from cdacopy.lib.scheduler import JobResult, JobScheduler, JobState
from cdacopy.lib.storage import LocalObjectStore, ObjectStore, S3ObjectStore, get_object_store
from cdacopy.lib.windows import fingerprint_intervals, fingerprints_with_unprocessed_records
from cdacopy.lib.writer import FileOutputWriter, OutputWriter, WriteResult

__all__ = [
    # Configuration
    "ClientConfig",
    "FileFormat",
    "OutputSettings",
    "PerformanceTuning",
    "SourceLocation",
    "load_config",
    "parse_config",
    # Environment
    "expand_env_vars",
    "expand_config",
    "load_env_file",
    # Errors
    "ConfigurationError",
    "CopyError",
    "InvalidPartitionName",
    "ManifestError",
    "OutputValidationError",
    "OutputWriteError",
    "SavepointError",
    "SchemaMismatchError",
    "StorageError",
    # Manifest and savepoints
    "Manifest",
    "ManifestEntry",
    "ManifestReader",
    "parse_manifest",
    "SavepointStore",
    # Planning
    "CopyJob",
    "PartitionLocation",
    "enumerate_partitions",
    "filter_safe_partitions",
    "fingerprint_intervals",
    "fingerprints_with_unprocessed_records",
    "group_into_jobs",
    # Execution
    "CopyPlan",
    "JobResult",
    "JobScheduler",
    "JobState",
    "MergedBatch",
    "RunSummary",
    "TableCopier",
    "drop_internal_columns",
    "merge_batches",
    # Storage and output
    "FileOutputWriter",
    "LocalObjectStore",
    "ObjectStore",
    "OutputWriter",
    "S3ObjectStore",
    "WriteResult",
    "get_object_store",
    # Observability and resilience
    "JobMetrics",
    "RetryConfig",
    "RunMetrics",
    "retry_operation",
    "setup_logging",
]
