"""Secondary-provider discovery of factsheet URLs.

When a fund's generated tearsheet URL fails in both GBP and GBX, the fund
may still be listed by Fidelity UK. Discovery runs three steps:

    1. Open the provider's search page for the ISIN.
    2. Wait for the nested results frame and read the first factsheet
       link from inside it.
    3. Resolve a selector for the factsheet URL from the site table.

The outcome carries the resolved config and a WriteBackCommand; extraction
from the discovered page and applying the write-back are left to the caller.
Expected failures are reported in ``DiscoveryOutcome.error`` rather than
raised.
"""

from urllib.parse import urljoin

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from pydantic import BaseModel

from config.settings import GlobalConfig, get_config
from pricescout.browser import StealthSessionManager
from pricescout.exceptions import (
    BrowserDisconnectedError,
    DiscoveryError,
    NavigationError,
)
from pricescout.logger import get_logger
from pricescout.models import (
    ConfigSource,
    ResolvedScrapeConfig,
    ScrapeTarget,
    WriteBackCommand,
)
from pricescout.public_id import build_fidelity_search_url
from pricescout.sites import SiteRegistry

log = get_logger(__name__)


class DiscoveryOutcome(BaseModel):
    """Result of a discovery attempt.

    Attributes:
        resolved: Config to extract from, when discovery found one.
        write_back: URL to persist onto the target if extraction succeeds.
        error: Why discovery failed, empty on success.
    """

    resolved: ResolvedScrapeConfig | None = None
    write_back: WriteBackCommand | None = None
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.resolved is not None


class FactsheetDiscovery:
    """Find a target's factsheet URL through the secondary provider's search."""

    def __init__(
        self,
        sessions: StealthSessionManager,
        sites: SiteRegistry,
        config: GlobalConfig | None = None,
    ) -> None:
        self.config = config or get_config()
        self.sessions = sessions
        self.sites = sites

    async def discover(self, target: ScrapeTarget) -> DiscoveryOutcome:
        """Run the search and resolve the discovered factsheet.

        Raises:
            BrowserDisconnectedError: If the browser died during discovery.
        """
        search_url = build_fidelity_search_url(target.public_id, self.config.fidelity_search_url)
        if search_url is None:
            return DiscoveryOutcome(error="Public ID is not an ISIN, no secondary search available")

        log.info(
            "Starting factsheet discovery",
            target_type=target.target_type.value,
            target_id=target.id,
            search_url=search_url,
        )

        context = None
        try:
            context = await self.sessions.new_session(search_url)
            page = await self.sessions.new_page(context)

            try:
                await self.sessions.navigate(page, search_url)
            except NavigationError as exc:
                raise DiscoveryError("search", f"Search page failed: {exc.reason}") from exc

            href = await self._first_factsheet_link(page)
            factsheet_url = urljoin(search_url, href)

            resolved = self._resolve_factsheet(factsheet_url)

        except DiscoveryError as exc:
            log.warning(
                "Factsheet discovery failed",
                target_id=target.id,
                step=exc.step,
                reason=exc.reason,
            )
            return DiscoveryOutcome(error=exc.reason)

        except PlaywrightError as exc:
            if not self.sessions.is_alive():
                raise BrowserDisconnectedError(target.id, exc.message) from exc
            return DiscoveryOutcome(error=f"Search failed: {exc.message}")

        finally:
            if context is not None:
                try:
                    await context.close()
                except Exception as exc:
                    log.warning("Error closing discovery context", error=str(exc))

        log.info(
            "Factsheet discovered",
            target_id=target.id,
            url=resolved.url,
            site_name=resolved.site_name,
        )
        return DiscoveryOutcome(
            resolved=resolved,
            write_back=WriteBackCommand(
                target_type=target.target_type,
                target_id=target.id,
                url=resolved.url,
                selector=None,
            ),
        )

    async def _first_factsheet_link(self, page: Page) -> str:
        timeout = self.config.discovery_timeout_ms

        try:
            frame_element = await page.wait_for_selector(
                self.config.discovery_frame_selector, timeout=timeout
            )
        except PlaywrightError as exc:
            if not self.sessions.is_alive():
                raise
            raise DiscoveryError("results frame", "Search results frame did not appear") from exc

        frame = await frame_element.content_frame() if frame_element is not None else None
        if frame is None:
            raise DiscoveryError("results frame", "Search results frame has no content")

        try:
            link = await frame.wait_for_selector(
                self.config.discovery_link_selector, timeout=timeout
            )
        except PlaywrightError as exc:
            if not self.sessions.is_alive():
                raise
            raise DiscoveryError(
                "factsheet link", "No factsheet link found in search results"
            ) from exc

        href = await link.get_attribute("href") if link is not None else None
        if not href:
            raise DiscoveryError("factsheet link", "Factsheet link has no href")
        return href

    def _resolve_factsheet(self, url: str) -> ResolvedScrapeConfig:
        match = self.sites.get_selector(url, None)
        if match.selector is None:
            raise DiscoveryError("selector", f"No known selector for discovered URL {url}")

        return ResolvedScrapeConfig(
            url=url,
            selector=match.selector,
            wait_strategy=match.wait_strategy,
            url_source=ConfigSource.DISCOVERED,
            selector_source=ConfigSource.SITE_CONFIG,
            site_name=match.site_name,
            assume_minor_unit=match.assume_minor_unit,
        )
