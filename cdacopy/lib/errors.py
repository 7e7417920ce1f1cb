"""Structured exception hierarchy for the copier.

Provides specific exception types for the failure modes of a copy run,
with table/fingerprint context for debugging and troubleshooting.

Two families exist:

- Fatal errors (``ConfigurationError``, ``ManifestError``,
  ``OutputValidationError``) abort the run before any job starts.
- Job-local errors (``StorageError``, ``InvalidPartitionName``,
  ``SchemaMismatchError``, ``OutputWriteError``, ``SavepointError`` raised
  during a commit) fail only the job they occur in.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

__all__ = [
    "CopyError",
    "ConfigurationError",
    "ManifestError",
    "OutputValidationError",
    "SavepointError",
    "StorageError",
    "InvalidPartitionName",
    "SchemaMismatchError",
    "OutputWriteError",
]


class CopyError(Exception):
    """Base exception for all copier errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        table: Optional[str] = None,
        fingerprint: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.table = table
        self.fingerprint = fingerprint
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if table or fingerprint:
            context = f"{table or '?'}/{fingerprint or '*'}"
            parts.insert(0, f"[{context}]")

        if details:
            detail_lines = [f"  {k}: {v}" for k, v in details.items()]
            parts.append("\nDetails:")
            parts.extend(detail_lines)

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "table": self.table,
            "fingerprint": self.fingerprint,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class ConfigurationError(CopyError):
    """Error in client configuration.

    Raised when configuration is invalid or incomplete.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        issues: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value
        self.issues = issues or []

        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        if issues:
            details["issue_count"] = len(issues)
            issue_lines = "\n".join(f"  - {issue}" for issue in issues)
            message = f"{message}\n\nIssues found:\n{issue_lines}"

        super().__init__(message, details=details, **kwargs)


class ManifestError(CopyError):
    """Manifest could not be read or is malformed."""

    def __init__(
        self,
        message: str,
        *,
        uri: Optional[str] = None,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.uri = uri
        self.cause = cause

        details = kwargs.pop("details", {})
        if uri:
            details["uri"] = uri
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            location = "source.bucket_name" if uri and uri.startswith("s3://") else "source.path"
            suggestion = (
                f"Check {location} and source.manifest_key, and that the "
                "producer has published a complete manifest."
            )

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class OutputValidationError(CopyError):
    """Output sink failed validation before the run started."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.path = path

        details = kwargs.pop("details", {})
        if path:
            details["path"] = path

        super().__init__(message, details=details, **kwargs)


class SavepointError(CopyError):
    """Savepoints location is unusable or a savepoint write failed."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.path = path
        self.cause = cause

        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)


class StorageError(CopyError):
    """Listing or reading from the object store failed."""

    def __init__(
        self,
        message: str,
        *,
        uri: Optional[str] = None,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.uri = uri
        self.cause = cause

        details = kwargs.pop("details", {})
        if uri:
            details["uri"] = uri
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)


class InvalidPartitionName(CopyError):
    """A partition directory name is not a non-negative decimal timestamp.

    The store layout is inconsistent with the export protocol; no fallback
    timestamp is guessed.
    """

    def __init__(
        self,
        name: str,
        *,
        uri: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.name = name
        self.uri = uri

        details = kwargs.pop("details", {})
        details["partition_name"] = name
        if uri:
            details["uri"] = uri

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = (
                "Remove or rename the directory; only timestamp-named "
                "directories may live under a fingerprint path."
            )

        super().__init__(
            f"Invalid partition directory name '{name}'",
            details=details,
            suggestion=suggestion,
            **kwargs,
        )


class SchemaMismatchError(CopyError):
    """Batches fetched for one job do not share an identical column set."""

    def __init__(
        self,
        message: str,
        *,
        expected: Optional[List[str]] = None,
        actual: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> None:
        self.expected = expected or []
        self.actual = actual or []

        details = kwargs.pop("details", {})
        missing = sorted(set(self.expected) - set(self.actual))
        unexpected = sorted(set(self.actual) - set(self.expected))
        if missing:
            details["missing_columns"] = missing
        if unexpected:
            details["unexpected_columns"] = unexpected

        super().__init__(message, details=details, **kwargs)


class OutputWriteError(CopyError):
    """The output sink rejected a merged batch."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.path = path
        self.cause = cause

        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)
