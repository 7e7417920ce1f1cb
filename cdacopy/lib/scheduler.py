"""Bounded-concurrency execution of copy jobs.

Two pools bound the work of a run:

- A job pool of ``jobs_in_parallel`` workers. Jobs are admitted in FIFO order
  and each occupies one worker from start to terminal state, so no more than
  ``jobs_in_parallel`` jobs run at any instant.
- A fetch pool of ``threads_per_job`` workers, created for one job and shut
  down when that job ends, whatever the outcome.

``JobScheduler.run`` returns only after every admitted job is ``DONE`` or
``FAILED``. A job's exception is recorded on its ``JobResult`` and never
escapes the scheduler.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from cdacopy.lib.locations import CopyJob
from cdacopy.lib.observability import JobMetrics, RunMetrics

logger = logging.getLogger(__name__)

__all__ = ["JobExecutor", "JobResult", "JobScheduler", "JobState", "InvalidTransition"]


class JobState(Enum):
    """Lifecycle of one copy job."""

    PENDING = "pending"
    FETCHING = "fetching"
    MERGING = "merging"
    WRITING = "writing"
    COMMITTING_WATERMARK = "committing_watermark"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.DONE, JobState.FAILED)


_NEXT_STATE: Dict[JobState, JobState] = {
    JobState.PENDING: JobState.FETCHING,
    JobState.FETCHING: JobState.MERGING,
    JobState.MERGING: JobState.WRITING,
    JobState.WRITING: JobState.COMMITTING_WATERMARK,
    JobState.COMMITTING_WATERMARK: JobState.DONE,
}


class InvalidTransition(RuntimeError):
    """A job was moved to a state its current state cannot reach."""


@dataclass
class JobResult:
    """State and outcome of one (table, fingerprint) job."""

    table: str
    fingerprint: str
    state: JobState = JobState.PENDING
    failed_in: Optional[JobState] = None
    error: Optional[BaseException] = None
    partitions: int = 0
    rows_written: int = 0
    metrics: JobMetrics = field(init=False)

    def __post_init__(self) -> None:
        self.metrics = JobMetrics(self.table, self.fingerprint)

    @classmethod
    def for_job(cls, job: CopyJob) -> "JobResult":
        return cls(table=job.table, fingerprint=job.fingerprint, partitions=len(job.partitions))

    @property
    def succeeded(self) -> bool:
        return self.state == JobState.DONE

    def advance(self, state: JobState) -> None:
        """Move to the next non-failure state."""
        expected = _NEXT_STATE.get(self.state)
        if state != expected:
            raise InvalidTransition(f"{self.table}/{self.fingerprint}: {self.state.value} -> {state.value}")
        self.state = state

    def fail(self, error: BaseException) -> None:
        """Move to FAILED, remembering where the failure happened."""
        if self.state.is_terminal:
            raise InvalidTransition(f"{self.table}/{self.fingerprint}: {self.state.value} -> failed")
        self.failed_in = self.state
        self.error = error
        self.state = JobState.FAILED

    def to_dict(self) -> Dict[str, object]:
        return {
            "table": self.table,
            "fingerprint": self.fingerprint,
            "state": self.state.value,
            "failed_in": self.failed_in.value if self.failed_in else None,
            "error": str(self.error) if self.error else None,
            "partitions": self.partitions,
            "rows_written": self.rows_written,
        }


JobExecutor = Callable[[CopyJob, JobResult, ThreadPoolExecutor], None]


class JobScheduler:
    """Runs copy jobs under a job limit and a per-job fetch limit.

    Example:
        scheduler = JobScheduler(jobs_in_parallel=4, threads_per_job=8)
        results = scheduler.run(jobs, copier.copy_job)
    """

    def __init__(self, jobs_in_parallel: int, threads_per_job: int):
        if jobs_in_parallel <= 0:
            raise ValueError("jobs_in_parallel must be positive")
        if threads_per_job <= 0:
            raise ValueError("threads_per_job must be positive")
        self.jobs_in_parallel = jobs_in_parallel
        self.threads_per_job = threads_per_job

    def run(
        self,
        jobs: Iterable[CopyJob],
        execute: JobExecutor,
        metrics: Optional[RunMetrics] = None,
    ) -> List[JobResult]:
        """Execute every job and block until all reach a terminal state.

        Args:
            jobs: Jobs to run, admitted in iteration order
            execute: Performs one job, advancing its JobResult; raising
                fails only that job
            metrics: Optional run metrics updated as jobs finish

        Returns:
            One JobResult per job, in completion order
        """
        pending = list(jobs)
        metrics = metrics or RunMetrics()
        if metrics.total_jobs < len(pending):
            metrics.set_total(len(pending))

        logger.info(
            "Starting %d copy job(s) with %d job(s) in parallel and %d fetch thread(s) per job",
            len(pending),
            self.jobs_in_parallel,
            self.threads_per_job,
        )

        results: List[JobResult] = []
        with ThreadPoolExecutor(max_workers=self.jobs_in_parallel, thread_name_prefix="copy-job") as executor:
            future_to_job = {}
            for job in pending:
                logger.info("Copy job is pending for '%s' with fingerprint '%s'", job.table, job.fingerprint)
                future_to_job[executor.submit(self._run_job, job, execute, metrics)] = job

            for future in as_completed(future_to_job):
                results.append(future.result())

        logger.info("All copy jobs have been completed")
        return results

    def _run_job(self, job: CopyJob, execute: JobExecutor, metrics: RunMetrics) -> JobResult:
        result = JobResult.for_job(job)
        fetch_pool = ThreadPoolExecutor(
            max_workers=self.threads_per_job,
            thread_name_prefix=f"fetch-{job.table}-{job.fingerprint}",
        )
        try:
            logger.info("Copy job is starting for '%s' for fingerprint '%s'", job.table, job.fingerprint)
            execute(job, result, fetch_pool)
            if not result.state.is_terminal:
                raise InvalidTransition(
                    f"{job.table}/{job.fingerprint}: job returned in state {result.state.value}"
                )
        except Exception as e:
            logger.error(
                "Copy job failed for '%s' with fingerprint '%s' while %s: %s",
                job.table,
                job.fingerprint,
                result.state.value,
                e,
                exc_info=True,
            )
            if not result.state.is_terminal:
                result.fail(e)
        finally:
            fetch_pool.shutdown(wait=True, cancel_futures=True)
            finished = metrics.job_finished(result.metrics, succeeded=result.succeeded)
            logger.info(
                "Copy job is complete for '%s' for fingerprint '%s' (%s); completed: %d of %d",
                job.table,
                job.fingerprint,
                result.state.value,
                finished,
                metrics.total_jobs,
            )
        return result

