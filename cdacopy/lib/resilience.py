"""Retry utilities for object-store calls.

Retries are call-level only: a single listing or read is retried on
transient failures (throttling, 5xx, dropped connections). A copy job that
fails is never re-run within the same run.

Implementation: Uses tenacity library internally for battle-tested retry logic.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import tenacity
from botocore.exceptions import BotoCoreError, ClientError
from tenacity.wait import wait_base

logger = logging.getLogger(__name__)

__all__ = ["RetryConfig", "is_transient_error", "retry_operation"]

THROTTLING_CODES = frozenset({"SlowDown", "RequestLimitExceeded", "Throttling", "ThrottlingException"})


def is_transient_error(exc: BaseException) -> bool:
    """Determine if an exception should trigger a retry."""
    if isinstance(exc, BotoCoreError):
        return True
    if isinstance(exc, ClientError):
        response = getattr(exc, "response", {}) or {}
        try:
            status = int(response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0))
        except (TypeError, ValueError):
            status = 0
        code = response.get("Error", {}).get("Code")
        return status == 429 or status >= 500 or code in THROTTLING_CODES
    return isinstance(exc, (ConnectionError, TimeoutError))


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        exponential: bool = True,
        jitter: bool = True,
    ):
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.exponential = exponential
        self.jitter = jitter

    @classmethod
    def none(cls) -> "RetryConfig":
        """No retry - fail immediately."""
        return cls(max_attempts=1)

    @classmethod
    def default(cls) -> "RetryConfig":
        """Default retry: 3 attempts with exponential backoff."""
        return cls()

    def wait_strategy(self) -> wait_base:
        wait: wait_base
        if self.exponential:
            wait = tenacity.wait_exponential(
                multiplier=self.backoff_seconds, min=self.backoff_seconds
            )
        else:
            wait = tenacity.wait_fixed(self.backoff_seconds)

        if self.jitter:
            wait = wait + tenacity.wait_random(0, self.backoff_seconds * 0.5)
        return wait

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RetryConfig):
            return NotImplemented
        return (
            self.max_attempts == other.max_attempts
            and self.backoff_seconds == other.backoff_seconds
            and self.exponential == other.exponential
            and self.jitter == other.jitter
        )

    def __repr__(self) -> str:
        return (
            f"RetryConfig(max_attempts={self.max_attempts}, "
            f"backoff_seconds={self.backoff_seconds})"
        )


def retry_operation(
    operation: Callable[[], Any],
    config: RetryConfig,
    operation_name: str = "operation",
    retry_if: Callable[[BaseException], bool] = is_transient_error,
) -> Any:
    """Execute an operation with retry logic.

    Args:
        operation: Callable to execute
        config: Retry configuration
        operation_name: Name for logging
        retry_if: Predicate selecting which exceptions are retried

    Returns:
        Result of the operation

    Example:
        body = retry_operation(
            lambda: client.get_object(Bucket=bucket, Key=key),
            RetryConfig.default(),
            f"get s3://{bucket}/{key}",
        )
    """

    def before_sleep_handler(retry_state: tenacity.RetryCallState) -> None:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "%s attempt %d/%d failed: %s. Retrying in %.1fs...",
            operation_name,
            retry_state.attempt_number,
            config.max_attempts,
            exception,
            retry_state.next_action.sleep if retry_state.next_action else 0,
        )

    retryer = tenacity.Retrying(
        stop=tenacity.stop_after_attempt(config.max_attempts),
        wait=config.wait_strategy(),
        retry=tenacity.retry_if_exception(retry_if),
        before_sleep=before_sleep_handler,
        reraise=True,
    )

    return retryer(operation)

