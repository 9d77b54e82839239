"""Single-target value extraction with a fallback chain.

This module provides the abstract base for scrapers that fetch exactly one
value for one target. Concrete subclasses only decide how raw element text
becomes a number (prices carry a unit, benchmark levels do not); the base
class owns the rest:

    resolve -> navigate -> wait for selector -> read text -> parse
        -> (on failure) GBP/GBX alternate URL
        -> (on failure) secondary-provider factsheet discovery
        -> persist value / write-back -> record one attempt

Design Rationale:
    Failures are classified into error codes rather than raised, so one bad
    target never stops a run. The only exception that escapes a scrape is
    BrowserDisconnectedError: a dead shared browser is the orchestrator's
    problem, and the attempt is recorded when the orchestrator retries.

    Each URL tried gets a fresh stealth context that is closed before the
    next one opens.
"""

from abc import ABC, abstractmethod
from typing import ClassVar, NamedTuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from config.settings import GlobalConfig, get_config
from pricescout.browser import StealthSessionManager
from pricescout.exceptions import BrowserDisconnectedError, NavigationError
from pricescout.fallback import FactsheetDiscovery
from pricescout.logger import get_logger
from pricescout.models import (
    ConfigSource,
    ErrorCode,
    ResolvedScrapeConfig,
    ScrapeAttempt,
    ScrapeOptions,
    ScrapeResult,
    ScrapeTarget,
    TargetType,
    WaitStrategy,
)
from pricescout.public_id import detect_public_id_type
from pricescout.resolver import TargetResolver
from pricescout.storage import AttemptRecorder, ScrapeStore

log = get_logger(__name__)

NO_URL_MESSAGE = "No URL configured"
NO_SELECTOR_MESSAGE = "No CSS selector configured and URL does not match any known site"


class ParsedValue(NamedTuple):
    value: float | None
    unit_is_minor: bool
    normalized: float | None


class ExtractionOutcome(NamedTuple):
    """Result of trying one resolved URL."""

    success: bool
    url: str | None
    raw_value: str = ""
    parsed: ParsedValue | None = None
    error: str = ""
    error_code: ErrorCode | None = None


def classify_navigation_error(message: str) -> ErrorCode:
    """Map an engine navigation error message to an error code."""
    if "timeout" in message.lower():
        return ErrorCode.NAVIGATION_TIMEOUT
    if "net::ERR_" in message:
        return ErrorCode.NETWORK_ERROR
    return ErrorCode.BROWSER_ERROR


class BaseValueScraper(ABC):
    """Abstract base for single-value scrapers.

    Attributes:
        config: GlobalConfig instance for timeouts.
        sessions: Shared StealthSessionManager; the browser must be launched.
        resolver: TargetResolver for primary and alternate configs.
        store: ScrapeStore receiving values and write-backs.
        discovery: Optional FactsheetDiscovery for the last fallback step.
        recorder: Best-effort attempt history writer.

    Example:
        class GoldScraper(BaseValueScraper):
            target_type = TargetType.BENCHMARK

            def parse(self, raw_text, resolved):
                ...
    """

    target_type: ClassVar[TargetType]

    def __init__(
        self,
        sessions: StealthSessionManager,
        resolver: TargetResolver,
        store: ScrapeStore,
        discovery: FactsheetDiscovery | None = None,
        config: GlobalConfig | None = None,
    ) -> None:
        self.config = config or get_config()
        self.sessions = sessions
        self.resolver = resolver
        self.store = store
        self.discovery = discovery
        self.recorder = AttemptRecorder(store)

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable scraper name for logs."""
        ...

    @abstractmethod
    def parse(self, raw_text: str, resolved: ResolvedScrapeConfig) -> ParsedValue:
        """Turn element text into a value.

        Args:
            raw_text: Stripped text content of the matched element.
            resolved: Config the text came from (carries site unit policy).

        Returns:
            ParsedValue whose ``value`` is None when the text is not numeric.
        """
        ...

    async def scrape(
        self,
        target: ScrapeTarget,
        options: ScrapeOptions | None = None,
    ) -> ScrapeResult:
        """Scrape one target through the full fallback chain.

        Exactly one attempt is recorded per call, unless the browser dies,
        in which case BrowserDisconnectedError is raised and nothing is
        recorded.

        Args:
            target: Target to scrape; its type must match ``target_type``.
            options: Trigger, attempt number and shared scrape time.

        Returns:
            ScrapeResult describing the value or the failure chain.

        Raises:
            BrowserDisconnectedError: If the shared browser is no longer alive.
        """
        options = options or ScrapeOptions()
        resolved = self.resolver.resolve(target)

        result = ScrapeResult(
            target_type=target.target_type,
            target_id=target.id,
            description=target.description,
            url=resolved.url,
            selector=resolved.selector,
            currency_code=target.currency_code,
        )

        if not resolved.url:
            result.error = NO_URL_MESSAGE
            result.error_code = ErrorCode.NO_URL
            self._record(result, options)
            return result

        if not resolved.selector:
            result.error = NO_SELECTOR_MESSAGE
            result.error_code = ErrorCode.NO_SELECTOR
            self._record(result, options)
            return result

        log.info(
            "Scraping target",
            scraper=self.name,
            target_id=target.id,
            url=resolved.url,
            url_source=resolved.url_source.value,
            selector_source=resolved.selector_source.value,
            attempt_number=options.attempt_number,
        )

        outcome = await self._extract(target, resolved)
        error_chain = outcome.error
        final = outcome
        write_back = None

        if not outcome.success:
            alternate = self.resolver.alternate(target, resolved)
            if alternate is not None:
                log.info("Trying alternate currency URL", target_id=target.id, url=alternate.url)
                alternate_outcome = await self._extract(target, alternate)
                if alternate_outcome.success:
                    final = alternate_outcome
                    result.fallback_used = True
                else:
                    error_chain += f" | Alternate URL: {alternate_outcome.error}"

        if not final.success and self._discovery_applies(target, resolved):
            discovered = await self.discovery.discover(target)
            if discovered.succeeded:
                discovered_outcome = await self._extract(target, discovered.resolved)
                if discovered_outcome.success:
                    final = discovered_outcome
                    result.fallback_used = True
                    write_back = discovered.write_back
                else:
                    error_chain += f" | Fallback: {discovered_outcome.error}"
            else:
                error_chain += f" | Fallback: {discovered.error}"

        result.url = final.url
        result.raw_value = final.raw_value
        if final.parsed is not None:
            result.parsed_value = final.parsed.value
            result.unit_is_minor = final.parsed.unit_is_minor
            result.normalized_value = final.parsed.normalized

        if final.success:
            result.success = True
            result.write_back = write_back
            self._persist(result, options)
        else:
            result.error = error_chain
            result.error_code = outcome.error_code

        self._record(result, options)

        log.info(
            "Target scraped" if result.success else "Target scrape failed",
            scraper=self.name,
            target_id=target.id,
            success=result.success,
            normalized_value=result.normalized_value,
            error_code=result.error_code.value if result.error_code else None,
            fallback_used=result.fallback_used,
        )
        return result

    def failed_result(
        self,
        target: ScrapeTarget,
        options: ScrapeOptions,
        error_code: ErrorCode,
        message: str,
    ) -> ScrapeResult:
        """Build and record a failure decided outside the extraction path."""
        result = ScrapeResult(
            target_type=target.target_type,
            target_id=target.id,
            description=target.description,
            currency_code=target.currency_code,
            error=message,
            error_code=error_code,
        )
        self._record(result, options)
        return result

    def _discovery_applies(self, target: ScrapeTarget, resolved: ResolvedScrapeConfig) -> bool:
        return (
            self.discovery is not None
            and resolved.url_source == ConfigSource.PUBLIC_ID
            and detect_public_id_type(target.public_id) == "isin"
        )

    def selector_timeout(self, url: str, wait_strategy: WaitStrategy | None) -> int:
        options = self.sessions.navigation_options(url, wait_strategy)
        if options["wait_until"] == WaitStrategy.NETWORK_IDLE.value:
            return self.config.network_idle_selector_timeout_ms
        return self.config.selector_timeout_ms

    async def _extract(
        self,
        target: ScrapeTarget,
        resolved: ResolvedScrapeConfig,
    ) -> ExtractionOutcome:
        """Navigate to one resolved URL and read the value.

        Raises:
            BrowserDisconnectedError: If a failure coincides with a dead browser.
        """
        url = resolved.url
        override = (
            WaitStrategy.NETWORK_IDLE
            if resolved.wait_strategy == WaitStrategy.NETWORK_IDLE
            else None
        )
        navigation_ok = False
        page_title = ""
        context = None

        try:
            context = await self.sessions.new_session(url)
            page = await self.sessions.new_page(context)

            await self.sessions.navigate(page, url, wait_strategy=override)
            navigation_ok = True
            page_title = await self._page_title(page)

            element = await page.wait_for_selector(
                resolved.selector,
                timeout=self.selector_timeout(url, override),
            )
            if element is None:
                return ExtractionOutcome(
                    success=False,
                    url=url,
                    error=f"Navigation OK. Selector not found on page. Page title: {page_title}",
                    error_code=ErrorCode.SELECTOR_NOT_FOUND,
                )

            raw_value = ((await element.text_content()) or "").strip()
            parsed = self.parse(raw_value, resolved)
            if parsed.value is None:
                return ExtractionOutcome(
                    success=False,
                    url=url,
                    raw_value=raw_value,
                    parsed=parsed,
                    error=f"Could not parse value from text: {raw_value}. Page title: {page_title}",
                    error_code=ErrorCode.PARSE_ERROR,
                )

            return ExtractionOutcome(
                success=True,
                url=url,
                raw_value=raw_value,
                parsed=parsed,
            )

        except NavigationError as exc:
            self._raise_if_disconnected(target, exc.reason)
            return ExtractionOutcome(
                success=False,
                url=url,
                error=f"Navigation failed: {exc.reason}",
                error_code=classify_navigation_error(exc.reason),
            )

        except PlaywrightError as exc:
            self._raise_if_disconnected(target, exc.message)
            if navigation_ok:
                return ExtractionOutcome(
                    success=False,
                    url=url,
                    error=(
                        f"Navigation OK (page: {page_title or 'unknown'}). "
                        f"Selector failed: {exc.message}"
                    ),
                    error_code=ErrorCode.SELECTOR_TIMEOUT,
                )
            return ExtractionOutcome(
                success=False,
                url=url,
                error=f"Navigation failed: {exc.message}",
                error_code=classify_navigation_error(exc.message),
            )

        finally:
            if context is not None:
                try:
                    await context.close()
                except Exception as exc:
                    log.debug("Error closing context", error=str(exc))

    async def _page_title(self, page: Page) -> str:
        try:
            return await page.title()
        except PlaywrightError:
            return "(could not get title)"

    def _raise_if_disconnected(self, target: ScrapeTarget, reason: str) -> None:
        if not self.sessions.is_alive():
            log.error("Browser disconnected mid-target", target_id=target.id, reason=reason)
            raise BrowserDisconnectedError(target.id, reason)

    def _persist(self, result: ScrapeResult, options: ScrapeOptions) -> None:
        if not options.persists:
            log.debug("Sandbox run, value not stored", target_id=result.target_id)
            return

        self.store.upsert_observed_value(
            result.target_type,
            result.target_id,
            options.observed_date,
            options.observed_time,
            result.normalized_value,
        )

        if result.write_back is not None:
            command = result.write_back
            self.store.write_back_discovered_url(
                command.target_type,
                command.target_id,
                command.url,
                command.selector,
            )

    def _record(self, result: ScrapeResult, options: ScrapeOptions) -> None:
        self.recorder.record(
            ScrapeAttempt(
                target_type=result.target_type,
                target_id=result.target_id,
                started_by=options.started_by,
                attempt_number=options.attempt_number,
                success=result.success,
                error_code=None if result.success else result.error_code,
                error_message=None if result.success else result.error,
            )
        )
