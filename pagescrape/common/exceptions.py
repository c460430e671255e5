"""Exception types for extraction errors.

This module defines the exception hierarchy used across backends, the crawl
loop and the service facade:

- ConfigurationError: the request or strategy choice is invalid. Fatal.
- TransientException and subclasses: network, timeout or retryable HTTP
  failures. Retried, then recorded on the result.
- FetchRejectedException: a fetch that retrying cannot fix (4xx, malformed
  URL). Recorded and ends the crawl loop early.
- ElementExtractionException: one element could not be extracted. Recorded
  as a warning.
- DataFormatAssumptionException: extracted records failed validation.
"""

from typing import Any

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class ConfigurationError(Exception):
    """Raised when a request or strategy choice is invalid.

    Configuration errors are never retried and never trigger fallback. They
    are the only errors that escape ParsingService.parse() before a crawl
    starts.

    Attributes:
        problems: Every violated rule, in the order they were found.
    """

    def __init__(self, problems: list[str] | str) -> None:
        """Initialize the exception.

        Args:
            problems: A single message or a list of violated rules.
        """
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        self.message = "; ".join(self.problems)
        super().__init__(self.message)


class ScrapeAssumptionException(Exception):
    """Base class for extraction assumption violations.

    Backends make assumptions about page structure and data formats. When
    these are violated they raise a contextual exception that is recorded
    on the result instead of aborting the job.
    """

    def __init__(
        self,
        message: str,
        request_url: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable description of the violation.
            request_url: The URL of the page that triggered this error.
            context: Optional dict of additional context (selector, index).
        """
        self.message = message
        self.request_url = request_url
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with context.

        Returns:
            Formatted error message string.
        """
        parts = [self.message]
        parts.append(f"URL: {self.request_url}")

        if self.context:
            parts.append("Context:")
            for key, value in self.context.items():
                parts.append(f"  {key}: {value}")

        return "\n".join(parts)


class ElementExtractionException(ScrapeAssumptionException):
    """Raised when a single matched element cannot be turned into a record.

    Attributes:
        selector: The item selector that matched the element.
        index: Position of the element among the matches.
    """

    def __init__(
        self,
        selector: str,
        index: int,
        reason: str,
        request_url: str,
    ) -> None:
        self.selector = selector
        self.index = index
        message = (
            f"Failed to extract element {index} for '{selector}': {reason}"
        )
        super().__init__(
            message, request_url, {"selector": selector, "index": index}
        )


class DataFormatAssumptionException(ScrapeAssumptionException):
    """Raised when extracted records don't match the expected schema.

    The validator collects these per item; the service records their
    messages on the result and only marks it invalid when more than half of
    the items fail.
    """

    def __init__(
        self,
        errors: list[dict[str, Any]],
        failed_doc: dict[str, Any],
        model_name: str,
        request_url: str,
    ) -> None:
        """Initialize the exception.

        Args:
            errors: List of field errors, each with ``loc`` and ``msg``.
            failed_doc: The record that failed validation.
            model_name: Name of the schema the record was validated against.
            request_url: The URL the record was extracted from.
        """
        self.errors = errors
        self.failed_doc = failed_doc
        self.model_name = model_name

        error_summary = ", ".join(
            f"{err['loc'][0]}: {err['msg']}" for err in errors
        )

        message = (
            f"Data validation failed for model '{model_name}': {error_summary}"
        )

        context = {
            "model": model_name,
            "error_count": len(errors),
        }

        super().__init__(message, request_url, context)


# =============================================================================
# Fetch failures
# =============================================================================


class TransientException(Exception):
    """Base class for transient errors that might resolve on retry.

    Transient exceptions represent temporary failures like network issues,
    retryable server responses, or timeouts. RetryPolicy retries them; once
    attempts are exhausted the crawl loop records them on the result and the
    orchestrator may escalate to a fallback backend.
    """

    pass


class HTMLResponseAssumptionException(TransientException):
    """Raised when an HTTP response has a retryable error status.

    Attributes:
        status_code: The actual HTTP status code received.
        expected_codes: List of status codes that were expected.
        url: The URL that returned the unexpected status.
        message: Human-readable error message.
    """

    def __init__(
        self,
        status_code: int,
        expected_codes: list[int],
        url: str,
    ) -> None:
        """Initialize the exception.

        Args:
            status_code: The actual status code received.
            expected_codes: List of expected status codes.
            url: The URL of the request.
        """
        self.status_code = status_code
        self.expected_codes = expected_codes
        self.url = url

        expected_str = ", ".join(str(code) for code in expected_codes)
        self.message = (
            f"HTTP {status_code} from {url} (expected one of: {expected_str})"
        )
        super().__init__(self.message)


class RequestTimeoutException(TransientException):
    """Raised when a fetch or navigation times out.

    Attributes:
        url: The URL that timed out.
        timeout_seconds: The timeout duration in seconds.
        message: Human-readable error message.
    """

    def __init__(self, url: str, timeout_seconds: float) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.message = f"Request to {url} timed out after {timeout_seconds}s"
        super().__init__(self.message)


class FetchRejectedException(Exception):
    """Raised when a fetch fails in a way retrying cannot fix.

    Client errors other than 408/429, non-retryable server statuses, and
    malformed URLs end up here. The crawl loop records the error, keeps the
    partial result, and stops paginating.

    Attributes:
        url: The URL that was rejected.
        status_code: The HTTP status, or None when no response was received.
    """

    def __init__(
        self, url: str, reason: str, status_code: int | None = None
    ) -> None:
        self.url = url
        self.status_code = status_code
        self.message = f"Fetch of {url} rejected: {reason}"
        super().__init__(self.message)
