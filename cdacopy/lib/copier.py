"""Incremental copy of CDA export snapshots.

One run is one pass over the manifest:

1. For every table, find the fingerprints that still hold unprocessed data.
2. List their partitions after the table's savepoint and keep only those the
   producer has declared complete.
3. Group partitions into one job per (table, fingerprint).
4. Run the jobs under the scheduler's limits. Each job fetches its
   partitions in parallel, merges them, writes the merged batch, and only
   then advances the table's savepoint to the manifest timestamp.

A failed job leaves its savepoint untouched, so the next run selects exactly
the same window again. Job failures are logged and counted; they never fail
the run.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from cdacopy.lib.config_loader import ClientConfig, PerformanceTuning
from cdacopy.lib.errors import CopyError, OutputWriteError
from cdacopy.lib.locations import (
    CopyJob,
    JobKey,
    PartitionLocation,
    enumerate_partitions,
    filter_safe_partitions,
    group_into_jobs,
)
from cdacopy.lib.manifest import Manifest, ManifestReader, filter_tables
from cdacopy.lib.merge import drop_internal_columns, merge_batches
from cdacopy.lib.observability import RunMetrics, get_job_logger
from cdacopy.lib.savepoints import SavepointStore
from cdacopy.lib.scheduler import JobResult, JobScheduler, JobState
from cdacopy.lib.storage import ObjectStore, get_object_store
from cdacopy.lib.windows import fingerprints_with_unprocessed_records
from cdacopy.lib.writer import FileOutputWriter, OutputWriter

logger = logging.getLogger(__name__)

__all__ = ["CopyPlan", "RunSummary", "TableCopier"]


@dataclass
class CopyPlan:
    """Jobs derived from one manifest, plus pairs that failed while planning."""

    jobs: Dict[JobKey, CopyJob] = field(default_factory=dict)
    failures: List[JobResult] = field(default_factory=list)
    skipped: List[JobKey] = field(default_factory=list)

    @property
    def total_jobs(self) -> int:
        return len(self.jobs) + len(self.failures)

    def describe(self) -> List[Dict[str, Any]]:
        rows = []
        for job in self.jobs.values():
            first, last = job.timestamp_range or (None, None)
            rows.append({
                "table": job.table,
                "fingerprint": job.fingerprint,
                "partitions": len(job.partitions),
                "first_timestamp": first,
                "last_timestamp": last,
            })
        return rows


@dataclass
class RunSummary:
    """Outcome of one run: total jobs attempted vs. completed."""

    total_jobs: int
    completed_jobs: int
    failed_jobs: int
    elapsed_seconds: float
    skipped_pairs: int = 0
    results: List[JobResult] = field(default_factory=list)
    plan: Optional[CopyPlan] = None
    dry_run: bool = False

    @property
    def failed(self) -> List[JobResult]:
        return [r for r in self.results if r.state == JobState.FAILED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_jobs": self.total_jobs,
            "completed_jobs": self.completed_jobs,
            "failed_jobs": self.failed_jobs,
            "skipped_pairs": self.skipped_pairs,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "dry_run": self.dry_run,
            "jobs": [r.to_dict() for r in self.results],
        }


class TableCopier:
    """Wires manifest, savepoints, object store and output sink into one run.

    Example:
        copier = TableCopier.from_config(load_config("cda_copy.yaml"))
        summary = copier.run()
        print(f"{summary.completed_jobs} of {summary.total_jobs} jobs completed")
    """

    def __init__(
        self,
        store: ObjectStore,
        manifest_reader: ManifestReader,
        savepoints: SavepointStore,
        writer: OutputWriter,
        performance: Optional[PerformanceTuning] = None,
        tables_to_include: Sequence[str] = (),
    ):
        self.store = store
        self.manifest_reader = manifest_reader
        self.savepoints = savepoints
        self.writer = writer
        self.performance = performance or PerformanceTuning()
        self.tables_to_include = list(tables_to_include)
        self.scheduler = JobScheduler(
            jobs_in_parallel=self.performance.jobs_in_parallel,
            threads_per_job=self.performance.threads_per_job,
        )

    @classmethod
    def from_config(cls, config: ClientConfig) -> "TableCopier":
        """Build a copier from configuration.

        Raises:
            SavepointError: If the savepoints location is unusable
        """
        store = get_object_store(config.source.base_uri, retry=config.retry, **config.storage_options)
        return cls(
            store=store,
            manifest_reader=ManifestReader(store, config.source.manifest_uri),
            savepoints=SavepointStore(config.savepoints_path),
            writer=FileOutputWriter(config.output),
            performance=config.performance,
            tables_to_include=config.output.tables_to_include,
        )

    def run(self, *, dry_run: bool = False) -> RunSummary:
        """Run one pass over the manifest and block until every job finishes.

        Raises:
            OutputValidationError: If the output sink fails validation
            ManifestError: If the manifest cannot be read or parsed
        """
        started = time.time()
        metrics = RunMetrics()

        self.writer.validate()
        manifest = filter_tables(self.manifest_reader.get_manifest(), self.tables_to_include)

        logger.info(
            "Starting CDA copy from %s: %d table(s) [%s]; writing %s; %d job(s) in parallel, %d thread(s) per job",
            self.manifest_reader.manifest_uri,
            len(manifest),
            ", ".join(sorted(manifest)),
            self.writer.describe(),
            self.performance.jobs_in_parallel,
            self.performance.threads_per_job,
        )

        logger.info("Calculating all the partitions to fetch, based on the manifest timestamps")
        plan = self.plan(manifest)
        metrics.set_total(plan.total_jobs)
        metrics.set_skipped(len(plan.skipped))

        if dry_run:
            for row in plan.describe():
                logger.info(
                    "Planned '%s' fingerprint '%s': %d partition(s) from %s to %s",
                    row["table"],
                    row["fingerprint"],
                    row["partitions"],
                    row["first_timestamp"],
                    row["last_timestamp"],
                )
            return RunSummary(
                total_jobs=plan.total_jobs,
                completed_jobs=0,
                failed_jobs=len(plan.failures),
                elapsed_seconds=time.time() - started,
                skipped_pairs=len(plan.skipped),
                results=list(plan.failures),
                plan=plan,
                dry_run=True,
            )

        for failure in plan.failures:
            metrics.job_finished(failure.metrics, succeeded=False)

        results = self.scheduler.run(
            plan.jobs.values(),
            lambda job, result, pool: self.copy_job(job, result, pool, manifest),
            metrics=metrics,
        )
        results = list(plan.failures) + results
        metrics.finish()

        summary = RunSummary(
            total_jobs=plan.total_jobs,
            completed_jobs=sum(1 for r in results if r.succeeded),
            failed_jobs=sum(1 for r in results if r.state == JobState.FAILED),
            elapsed_seconds=time.time() - started,
            skipped_pairs=len(plan.skipped),
            results=results,
            plan=plan,
        )
        logger.info(
            "All tables done: %d of %d job(s) completed, %d failed, %d skipped with no new data, "
            "%d row(s) written; took %.1f seconds",
            summary.completed_jobs,
            summary.total_jobs,
            summary.failed_jobs,
            summary.skipped_pairs,
            metrics.rows_written,
            summary.elapsed_seconds,
        )
        return summary

    def plan(self, manifest: Manifest) -> CopyPlan:
        """Turn the manifest and current savepoints into copy jobs.

        A listing failure or an invalid partition name fails only the
        (table, fingerprint) pair being listed.
        """
        plan = CopyPlan()
        selected: List[PartitionLocation] = []

        for table, entry in manifest.items():
            last_processed = self.savepoints.get(table)
            fingerprints = fingerprints_with_unprocessed_records(entry, last_processed)
            logger.debug("'%s' has unprocessed fingerprint(s): %s", table, fingerprints)

            for fingerprint in fingerprints:
                try:
                    candidates = enumerate_partitions(self.store, entry, fingerprint, last_processed)
                except (CopyError, ValueError) as e:
                    logger.error("Could not list partitions of '%s' fingerprint '%s': %s", table, fingerprint, e)
                    failure = JobResult(table=table, fingerprint=fingerprint)
                    failure.fail(e)
                    plan.failures.append(failure)
                    continue

                safe = filter_safe_partitions(candidates, manifest)
                if not safe:
                    logger.info("Skipping '%s' with fingerprint '%s', no new data found", table, fingerprint)
                    plan.skipped.append((table, fingerprint))
                selected.extend(safe)

        plan.jobs = group_into_jobs(selected)
        logger.info(
            "Planned %d copy job(s) over %d partition(s)",
            len(plan.jobs),
            len(selected),
        )
        return plan

    def fetch_partition(self, partition: PartitionLocation) -> pd.DataFrame:
        logger.info("Reading '%s' from %s", partition.table, partition.uri)
        return drop_internal_columns(self.store.read_partition(partition.uri))

    def copy_job(
        self,
        job: CopyJob,
        result: JobResult,
        fetch_pool: ThreadPoolExecutor,
        manifest: Manifest,
    ) -> None:
        """Fetch, merge, write and commit one (table, fingerprint) job.

        Raises:
            CopyError: Any job-local failure; the savepoint is not touched
        """
        log = get_job_logger(__name__, table=job.table, fingerprint=job.fingerprint)
        metrics = result.metrics
        manifest_timestamp = manifest[job.table].last_successful_write_timestamp

        result.advance(JobState.FETCHING)
        with metrics.time_phase("fetch"):
            batches = list(fetch_pool.map(self.fetch_partition, job.ordered_partitions()))
        metrics.record("partitions", len(batches))
        log.info(
            "Downloaded %d partition(s) for '%s' fingerprint '%s', took %.3f seconds",
            len(batches),
            job.table,
            job.fingerprint,
            metrics.phase_duration("fetch"),
        )

        result.advance(JobState.MERGING)
        with metrics.time_phase("merge"):
            merged = merge_batches(job.table, job.fingerprint, manifest_timestamp, batches)
        metrics.record("rows", merged.row_count)

        result.advance(JobState.WRITING)
        with metrics.time_phase("write"):
            written = self.writer.write(merged)
        if not written.success:
            raise OutputWriteError(
                "Output sink rejected the batch",
                path=written.path,
                table=job.table,
                fingerprint=job.fingerprint,
                details={"error": written.error},
            )
        result.rows_written = written.rows_written
        log.info(
            "Wrote %d row(s) for '%s' fingerprint '%s' to %s, took %.3f seconds",
            written.rows_written,
            job.table,
            job.fingerprint,
            written.path,
            metrics.phase_duration("write"),
        )

        result.advance(JobState.COMMITTING_WATERMARK)
        with metrics.time_phase("commit"):
            self.savepoints.set(job.table, manifest_timestamp)

        result.advance(JobState.DONE)
        log.info(
            "Processed '%s' with fingerprint '%s', took %.3f seconds",
            job.table,
            job.fingerprint,
            metrics.total_duration,
        )
