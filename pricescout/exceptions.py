"""Custom exception hierarchy for PriceScout.

This module defines domain-specific exceptions that provide semantic clarity
and enable targeted error handling throughout the application. Each exception
includes contextual information to aid debugging and observability.

Design Rationale:
    - Per-target scrape failures are returned as data (ScrapeResult), so
      exceptions here are reserved for conditions a caller must act on
    - Include context (URL, selector, target) in exception messages
    - Run-fatal conditions (browser cannot launch) are distinguishable from
      recoverable ones (browser process died mid-run)
"""

from datetime import UTC, datetime
from typing import Any


class PriceScoutError(Exception):
    """Base exception for all PriceScout errors.

    All custom exceptions inherit from this base, enabling blanket catches
    for application-specific errors while distinguishing from system errors.

    Attributes:
        message: Human-readable error description.
        context: Optional dictionary with additional debugging information.
        timestamp: UTC timestamp when the exception was raised.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.message = message
        self.context = context or {}
        self.timestamp = datetime.now(UTC)
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format exception message with context for logging."""
        base = f"[{self.timestamp.isoformat()}] {self.message}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{base} | Context: {context_str}"
        return base


class BrowserLaunchError(PriceScoutError):
    """Raised when the browser process cannot be started.

    Fatal for the remainder of a run: the orchestrator stops scraping
    browser targets and returns a failed summary of what it completed.
    """

    def __init__(self, reason: str, browser_type: str = "chromium") -> None:
        super().__init__(
            message=f"Failed to launch {browser_type} browser: {reason}",
            context={"browser_type": browser_type, "reason": reason},
        )


class BrowserDisconnectedError(PriceScoutError):
    """Raised when the shared browser dies while a target is in flight.

    Recoverable: the orchestrator relaunches once and retries the target.
    """

    def __init__(self, target_id: int | str | None = None, reason: str = "") -> None:
        super().__init__(
            message=f"Browser disconnected during scrape: {reason or 'process not connected'}",
            context={"target_id": target_id, "reason": reason},
        )
        self.target_id = target_id


class NavigationError(PriceScoutError):
    """Raised when page navigation fails.

    This may indicate network issues, invalid URLs, or blocked requests.
    Includes the target URL for debugging.
    """

    def __init__(self, url: str, reason: str, status_code: int | None = None) -> None:
        super().__init__(
            message=f"Navigation to '{url}' failed: {reason}",
            context={"url": url, "reason": reason, "status_code": status_code},
        )
        self.url = url
        self.reason = reason


class DiscoveryError(PriceScoutError):
    """Raised inside the factsheet discovery flow for an unusable search result.

    Caught by the discovery step itself and converted into a failure
    reason; it never reaches the orchestrator.
    """

    def __init__(self, step: str, reason: str) -> None:
        super().__init__(
            message=f"Factsheet discovery failed at {step}: {reason}",
            context={"step": step, "reason": reason},
        )
        self.step = step
        self.reason = reason


class CurrencyFetchError(PriceScoutError):
    """Raised when the exchange rate API returns an unusable response."""

    def __init__(self, url: str, reason: str, status_code: int | None = None) -> None:
        super().__init__(
            message=f"Exchange rate request to '{url}' failed: {reason}",
            context={"url": url, "reason": reason, "status_code": status_code},
        )
        self.reason = reason


class StorageError(PriceScoutError):
    """Raised when the scrape store cannot be read or written."""

    def __init__(self, operation: str, reason: str, path: str | None = None) -> None:
        super().__init__(
            message=f"Storage operation '{operation}' failed: {reason}",
            context={"operation": operation, "reason": reason, "path": path},
        )


class ReportGenerationError(PriceScoutError):
    """Raised when report generation fails.

    Common causes include insufficient data, I/O errors, or
    template rendering failures.
    """

    def __init__(self, report_type: str, reason: str, output_path: str | None = None) -> None:
        super().__init__(
            message=f"Failed to generate {report_type} report: {reason}",
            context={"report_type": report_type, "reason": reason, "output_path": output_path},
        )


class LoggingInitializationError(PriceScoutError):
    """Raised when the logging system fails to initialize.

    This is a startup-blocking error - the application cannot proceed
    without a functioning logging infrastructure.
    """

    def __init__(self, log_dir: str, reason: str) -> None:
        super().__init__(
            message=f"Failed to initialize logging at '{log_dir}': {reason}",
            context={"log_dir": log_dir, "reason": reason},
        )
