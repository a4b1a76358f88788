"""Custom exception hierarchy for the recap scraper.

Provides structured exceptions with error context and correction hints so that
failures can be logged per item without aborting a whole ingestion run.
"""

from typing import Any


class RecapError(Exception):
    """Base exception for all recap scraper errors.

    Attributes:
        message: Human-readable error message.
        error_data: Structured error information for logging.
        suggestion: Hint for how to resolve the error.
    """

    def __init__(
        self,
        message: str,
        error_data: dict[str, Any] | None = None,
        suggestion: str | None = None,
    ):
        """Initialize the recap error.

        Args:
            message: Human-readable error message.
            error_data: Structured context (URLs, IDs, fields, etc.).
            suggestion: Actionable correction hint.
        """
        super().__init__(message)
        self.message = message
        self.error_data = error_data or {}
        self.suggestion = suggestion

    def __str__(self) -> str:
        """Return formatted error message with suggestion if available."""
        base = self.message
        if self.suggestion:
            return f"{base}\nSuggestion: {self.suggestion}"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to structured dictionary for logging.

        Returns:
            Dictionary with error type, message, data, and suggestion.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_data": self.error_data,
            "suggestion": self.suggestion,
        }


class NetworkError(RecapError):
    """HTTP/connection failures that may be retryable.

    Examples:
        - Connection timeout
        - HTTP 500/502/503 errors
        - DNS resolution failures
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        retryable: bool = True,
        error_data: dict[str, Any] | None = None,
        suggestion: str | None = None,
    ):
        """Initialize network error.

        Args:
            message: Human-readable error message.
            url: The URL that failed.
            status_code: HTTP status code if applicable.
            retryable: Whether retrying might succeed.
            error_data: Additional context.
            suggestion: How to resolve the error.
        """
        data = error_data or {}
        data.update({"url": url, "status_code": status_code, "retryable": retryable})

        default_suggestion = suggestion or (
            "Check network connectivity and retry the request. "
            "If the error persists, the server may be temporarily unavailable."
            if retryable
            else "This error is not retryable. Check the URL and request parameters."
        )

        super().__init__(message, data, default_suggestion)
        self.url = url
        self.status_code = status_code
        self.retryable = retryable


class StructureError(RecapError):
    """Recap markup does not contain an expected substructure.

    Examples:
        - Missing division header cell
        - Missing score table
        - A row whose caption scores do not line up with the caption labels
    """

    def __init__(
        self,
        message: str,
        division: str | None = None,
        selector: str | None = None,
        html_snippet: str | None = None,
        error_data: dict[str, Any] | None = None,
        suggestion: str | None = None,
    ):
        """Initialize structure error.

        Args:
            message: Human-readable error message.
            division: Division being parsed (if already known).
            selector: CSS selector that failed.
            html_snippet: Relevant HTML snippet (truncated).
            error_data: Additional context.
            suggestion: How to resolve the error.
        """
        data = error_data or {}
        data.update(
            {
                "division": division,
                "selector": selector,
                "html_snippet": html_snippet[:500] if html_snippet else None,
            }
        )

        default_suggestion = suggestion or (
            f"The recap layout may have changed. "
            f"Check the selector '{selector}' against the source page."
            if selector
            else "The recap layout may have changed. Review the parser implementation."
        )

        super().__init__(message, data, default_suggestion)
        self.division = division
        self.selector = selector


class ParseJobError(RecapError):
    """A worker reported a failure for one parse job."""

    def __init__(self, message: str, job_id: str | None = None, url: str | None = None):
        super().__init__(
            message,
            {"job_id": job_id, "url": url},
            "The page could not be fetched or parsed. "
            "A direct, pool-less parse may still succeed.",
        )
        self.job_id = job_id
        self.url = url


class WorkerError(RecapError):
    """A worker process terminated outside the message protocol."""

    def __init__(
        self, message: str, slot: int | None = None, exit_code: int | None = None
    ):
        super().__init__(
            message,
            {"slot": slot, "exit_code": exit_code},
            "The pool respawns the worker automatically. Resubmit the job.",
        )
        self.slot = slot
        self.exit_code = exit_code


class PoolShutdownError(RecapError):
    """A job was submitted to, or still pending in, a closing pool."""

    def __init__(self, message: str = "Pool shutting down", job_id: str | None = None):
        super().__init__(message, {"job_id": job_id})
        self.job_id = job_id


class StoreWriteError(RecapError):
    """A single document write to the store failed."""

    def __init__(
        self,
        message: str,
        collection: str | None = None,
        doc_id: str | None = None,
        operation: str | None = None,
        error_data: dict[str, Any] | None = None,
    ):
        data = error_data or {}
        data.update({"collection": collection, "doc_id": doc_id, "operation": operation})
        super().__init__(
            message,
            data,
            "The write was skipped. Re-running ingestion will retry it.",
        )
        self.collection = collection
        self.doc_id = doc_id
        self.operation = operation


class ConfigurationError(RecapError):
    """Invalid configuration or CLI arguments.

    Examples:
        - Invalid source specification
        - Unknown keys in the settings file
        - Non-positive pool size
    """

    def __init__(
        self,
        message: str,
        parameter: str | None = None,
        expected_format: str | None = None,
        example: str | None = None,
        error_data: dict[str, Any] | None = None,
        suggestion: str | None = None,
    ):
        """Initialize configuration error.

        Args:
            message: Human-readable error message.
            parameter: Parameter name that's invalid.
            expected_format: Expected format for the parameter.
            example: Example of valid value.
            error_data: Additional context.
            suggestion: How to resolve the error.
        """
        data = error_data or {}
        data.update(
            {
                "parameter": parameter,
                "expected_format": expected_format,
                "example": example,
            }
        )

        default_suggestion = suggestion or (
            f"Parameter '{parameter}' must be in format: {expected_format}. "
            f"Example: {example}"
            if parameter and expected_format and example
            else "Check the command-line arguments and configuration."
        )

        super().__init__(message, data, default_suggestion)
        self.parameter = parameter
        self.expected_format = expected_format
        self.example = example
