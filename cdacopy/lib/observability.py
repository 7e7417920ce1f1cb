"""Observability utilities for copy runs.

Combines metrics collection with structured logging helpers so a run can
capture both per-job timings and JSON-friendly logs from the same module.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional

logger = logging.getLogger(__name__)

__all__ = [
    "PhaseTimer",
    "JobMetrics",
    "RunMetrics",
    "JSONFormatter",
    "JobLogger",
    "get_job_logger",
    "setup_logging",
]


@dataclass
class PhaseTimer:
    """Timer tracking a named job phase."""

    name: str
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    def stop(self) -> float:
        """Stop the timer and return the duration (seconds)."""
        self.end_time = time.time()
        return self.duration

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        end = self.end_time or time.time()
        return end - self.start_time

    @property
    def running(self) -> bool:
        """Whether the timer is still running."""
        return self.end_time is None


class JobMetrics:
    """Metrics for a single (table, fingerprint) copy job.

    Example:
        metrics = JobMetrics(table="policy", fingerprint="a1b2")

        with metrics.time_phase("fetch"):
            batches = fetch_all()
        metrics.record("partitions", len(batches))

        summary = metrics.summary()
    """

    def __init__(self, table: str, fingerprint: str):
        self.table = table
        self.fingerprint = fingerprint

        self._start_time = time.time()
        self._end_time: Optional[float] = None
        self._phases: List[PhaseTimer] = []
        self._counters: Dict[str, Any] = {}

    @contextmanager
    def time_phase(self, name: str) -> Generator[PhaseTimer, None, None]:
        """Context manager that tracks a phase duration."""
        timer = PhaseTimer(name=name)
        self._phases.append(timer)
        try:
            yield timer
        finally:
            timer.stop()

    def record(self, name: str, value: Any) -> None:
        """Record a counter value (last write wins)."""
        self._counters[name] = value

    def finish(self) -> None:
        """Mark the job as complete."""
        if self._end_time is None:
            self._end_time = time.time()

    @property
    def total_duration(self) -> float:
        """Total duration in seconds."""
        end = self._end_time or time.time()
        return end - self._start_time

    def phase_duration(self, name: str) -> Optional[float]:
        """Duration of the most recent phase with the given name."""
        for phase in reversed(self._phases):
            if phase.name == name:
                return phase.duration
        return None

    def summary(self) -> Dict[str, Any]:
        """Return a summary dictionary of the tracked metrics."""
        return {
            "table": self.table,
            "fingerprint": self.fingerprint,
            "total_seconds": round(self.total_duration, 3),
            "phases": {p.name: round(p.duration, 3) for p in self._phases},
            "counters": dict(self._counters),
        }


class RunMetrics:
    """Aggregate counts for one manifest pass.

    Counter updates are guarded by a lock because jobs report from worker
    threads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._start_time = time.time()
        self._end_time: Optional[float] = None
        self.total_jobs = 0
        self.completed_jobs = 0
        self.failed_jobs = 0
        self.rows_written = 0
        self.skipped_pairs = 0
        self._jobs: List[JobMetrics] = []

    def set_total(self, total_jobs: int) -> None:
        with self._lock:
            self.total_jobs = total_jobs

    def set_skipped(self, skipped_pairs: int) -> None:
        """Record (table, fingerprint) pairs that had no new data."""
        with self._lock:
            self.skipped_pairs = skipped_pairs

    def job_finished(self, metrics: JobMetrics, *, succeeded: bool) -> int:
        """Record a terminal job and return how many jobs have finished so far."""
        metrics.finish()
        with self._lock:
            self._jobs.append(metrics)
            if succeeded:
                self.completed_jobs += 1
                self.rows_written += int(metrics.summary()["counters"].get("rows", 0))
            else:
                self.failed_jobs += 1
            return self.completed_jobs + self.failed_jobs

    def finish(self) -> None:
        if self._end_time is None:
            self._end_time = time.time()

    @property
    def elapsed_seconds(self) -> float:
        end = self._end_time or time.time()
        return end - self._start_time

    def summary(self) -> Dict[str, Any]:
        """Summarize the run."""
        with self._lock:
            return {
                "total_jobs": self.total_jobs,
                "completed_jobs": self.completed_jobs,
                "failed_jobs": self.failed_jobs,
                "rows_written": self.rows_written,
                "skipped_pairs": self.skipped_pairs,
                "elapsed_seconds": round(self.elapsed_seconds, 3),
                "jobs": [m.summary() for m in self._jobs],
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }


class JSONFormatter(logging.Formatter):
    """Formatter that renders log records as JSON.

    Useful for log aggregation systems like ELK, Splunk, or CloudWatch.

    Example output:
        {"timestamp": "2025-01-15T10:30:00.123Z", "level": "INFO",
         "logger": "cdacopy.lib.copier", "message": "Copy job is complete"}
    """

    def __init__(
        self,
        include_fields: Optional[List[str]] = None,
        exclude_fields: Optional[List[str]] = None,
    ):
        super().__init__()
        self.include_fields = include_fields or []
        self.exclude_fields = exclude_fields or []

    def format(self, record: logging.LogRecord) -> str:
        """Format a record as JSON."""
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        for field_name in self.include_fields:
            if hasattr(record, field_name):
                payload[field_name] = getattr(record, field_name)

        extra_attrs = {
            k: v
            for k, v in record.__dict__.items()
            if k not in _STANDARD_RECORD_ATTRS
            and k not in ("message", "asctime")
            and k not in self.exclude_fields
        }
        if extra_attrs:
            payload["extra"] = extra_attrs

        return json.dumps(payload, default=str)


_STANDARD_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
)


class JobLogger:
    """Logger with automatic table/fingerprint context.

    Example:
        log = get_job_logger(__name__, table="policy", fingerprint="a1b2")
        log.info("Reading %d partitions", 3)  # context attached as extra
    """

    def __init__(self, name: str, **context: Any):
        self._logger = logging.getLogger(name)
        self._context: Dict[str, Any] = dict(context)

    @property
    def context(self) -> Dict[str, Any]:
        return dict(self._context)

    def _log(self, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
        extra = kwargs.pop("extra", {})
        extra.update(self._context)
        self._logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        kwargs["exc_info"] = True
        self._log(logging.ERROR, msg, *args, **kwargs)


def get_job_logger(name: str, **context: Any) -> JobLogger:
    """Return a JobLogger for the given module name and job context."""
    return JobLogger(name, **context)


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure the root logger with optional JSON formatting.

    Args:
        verbose: Enable debug-level logging
        json_format: Use JSON output format (for log aggregation)
        log_file: Optional file path to write logs to
    """
    level = logging.DEBUG if verbose else logging.INFO

    formatter = JSONFormatter() if json_format else logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Suppress noisy loggers
    for noisy in ("botocore", "boto3", "s3transfer", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
