"""Stealth browser sessions for financial sites with anti-bot defences.

This module wraps Playwright's Chromium with the measures needed to load
quote pages that block obvious automation:
- Launch flag that hides the AutomationControlled blink feature
- Per-context user agent drawn from a pool, with matching Sec-CH-UA headers
- en-GB locale and Accept-Language, a plausible Referer per host
- Consent cookies pre-seeded for sites that show consent interstitials
- Init script patching navigator, permissions and WebGL fingerprints

Design Rationale:
    One browser process is shared by every target of a run; each target
    gets its own context so cookies, UA and Referer never leak between
    sites. The manager owns the process and the Playwright driver; callers
    own the contexts and pages they are handed and must close them.

Navigation:
    Hosts listed in ``network_idle_domains`` render their values only once
    client-side scripts finish, so they wait for network quiescence with a
    longer timeout. Everything else waits for DOMContentLoaded.
"""

import random
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Self

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    Response,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError

from config.settings import GlobalConfig, get_config
from pricescout.delay import extract_domain
from pricescout.exceptions import BrowserLaunchError, NavigationError
from pricescout.logger import get_logger
from pricescout.models import UserAgentProfile, WaitStrategy

log = get_logger(__name__)

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
]

VIEWPORT = {"width": 1920, "height": 1080}
LOCALE = "en-GB"
TIMEZONE = "Europe/London"
ACCEPT_LANGUAGE = "en-GB,en;q=0.9"

STEALTH_JS = """
Object.defineProperty(navigator, 'webdriver', {
    get: () => false,
});

Object.defineProperty(navigator, 'plugins', {
    get: () => [
        { name: 'PDF Viewer', filename: 'internal-pdf-viewer', description: 'Portable Document Format' },
        { name: 'Chrome PDF Viewer', filename: 'internal-pdf-viewer', description: 'Portable Document Format' },
        { name: 'Chromium PDF Viewer', filename: 'internal-pdf-viewer', description: 'Portable Document Format' },
    ],
});

Object.defineProperty(navigator, 'languages', {
    get: () => ['en-GB', 'en'],
});

if (!window.chrome) {
    window.chrome = {};
}
if (!window.chrome.runtime) {
    window.chrome.runtime = {};
}

if (window.navigator.permissions && window.navigator.permissions.query) {
    const originalQuery = window.navigator.permissions.query.bind(window.navigator.permissions);
    window.navigator.permissions.query = (parameters) => (
        parameters && parameters.name === 'notifications'
            ? Promise.resolve({
                state: Notification.permission === 'denied' ? 'default' : Notification.permission,
            })
            : originalQuery(parameters)
    );
}

const patchWebGL = (proto) => {
    if (!proto) {
        return;
    }
    const getParameter = proto.getParameter;
    proto.getParameter = function (parameter) {
        if (parameter === 0x9245) {
            return 'Google Inc. (Intel)';
        }
        if (parameter === 0x9246) {
            return 'ANGLE (Intel, Intel(R) UHD Graphics 630, OpenGL 4.5)';
        }
        return getParameter.call(this, parameter);
    };
};
patchWebGL(window.WebGLRenderingContext && window.WebGLRenderingContext.prototype);
patchWebGL(window.WebGL2RenderingContext && window.WebGL2RenderingContext.prototype);
"""


def client_hint_headers(profile: UserAgentProfile) -> dict[str, str]:
    """Sec-CH-UA headers consistent with a Chrome user agent."""
    major = profile.major_version
    return {
        "Sec-CH-UA": f'"Chromium";v="{major}", "Not A(Brand";v="99", "Google Chrome";v="{major}"',
        "Sec-CH-UA-Mobile": "?0",
        "Sec-CH-UA-Platform": profile.platform,
    }


class StealthSessionManager:
    """Owns one Chromium process and hands out stealth contexts and pages.

    Attributes:
        config: GlobalConfig instance for runtime configuration.
        _playwright: Playwright driver (started on first launch).
        _browser: Shared browser process.

    Example:
        async with StealthSessionManager.create() as sessions:
            context = await sessions.new_session(url)
            try:
                page = await sessions.new_page(context)
                await sessions.navigate(page, url)
            finally:
                await context.close()
    """

    def __init__(
        self,
        config: GlobalConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the manager without launching anything.

        Args:
            config: Optional GlobalConfig. Uses singleton if not provided.
            rng: Random source for user-agent selection.
        """
        self.config = config or get_config()
        self._rng = rng or random.Random()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self.launch_count = 0

    @classmethod
    @asynccontextmanager
    async def create(
        cls, config: GlobalConfig | None = None
    ) -> AsyncGenerator[Self, None]:
        """Launch a browser for the duration of the block.

        Raises:
            BrowserLaunchError: If the browser cannot be started.
        """
        instance = cls(config)
        try:
            await instance.launch()
            yield instance
        finally:
            await instance.close()

    async def launch(self) -> Browser:
        """Start the driver and browser if they are not already running.

        Returns:
            The shared Browser.

        Raises:
            BrowserLaunchError: If the engine cannot start.
        """
        if self._browser is not None and self.is_alive():
            return self._browser

        log.info("Launching browser", headless=self.config.headless)

        try:
            if self._playwright is None:
                self._playwright = await async_playwright().start()

            self._browser = await self._playwright.chromium.launch(
                headless=self.config.headless,
                args=LAUNCH_ARGS,
            )
        except Exception as exc:
            await self.close()
            raise BrowserLaunchError(reason=str(exc), browser_type="chromium") from exc

        self.launch_count += 1
        log.info("Browser launched", launch_count=self.launch_count)
        return self._browser

    async def relaunch(self) -> Browser:
        """Replace a dead or unhealthy browser process with a fresh one."""
        log.warning("Relaunching browser", launch_count=self.launch_count)
        await self._close_browser()
        return await self.launch()

    def is_alive(self) -> bool:
        """Whether the browser process is launched and still connected."""
        if self._browser is None:
            return False
        try:
            return bool(self._browser.is_connected())
        except PlaywrightError:
            return False

    def select_user_agent(self) -> UserAgentProfile:
        return self._rng.choice(self.config.user_agent_profiles)

    def referer_for(self, url: str | None) -> str:
        """Referer header to present when arriving at ``url``."""
        return self.config.referer_map.get(extract_domain(url), self.config.default_referer)

    def build_context_options(self, target_url: str | None) -> dict[str, Any]:
        """Keyword arguments for ``Browser.new_context`` for one target."""
        profile = self.select_user_agent()
        headers = {
            "Accept-Language": ACCEPT_LANGUAGE,
            **client_hint_headers(profile),
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "cross-site",
            "Sec-Fetch-User": "?1",
            "Upgrade-Insecure-Requests": "1",
            "Referer": self.referer_for(target_url),
        }
        return {
            "user_agent": profile.user_agent,
            "locale": LOCALE,
            "timezone_id": TIMEZONE,
            "viewport": dict(VIEWPORT),
            "extra_http_headers": headers,
        }

    async def new_session(self, target_url: str | None = None) -> BrowserContext:
        """Create a stealth context for one target.

        Args:
            target_url: URL about to be scraped; selects the Referer.

        Returns:
            A BrowserContext the caller must close.

        Raises:
            BrowserLaunchError: If no browser has been launched.
        """
        if self._browser is None:
            raise BrowserLaunchError(reason="Browser not launched", browser_type="chromium")

        options = self.build_context_options(target_url)
        context = await self._browser.new_context(**options)

        cookies = [cookie.model_dump() for cookie in self.config.consent_cookies]
        if cookies:
            await context.add_cookies(cookies)

        log.debug(
            "Stealth context created",
            target_url=target_url,
            referer=options["extra_http_headers"]["Referer"],
            user_agent=options["user_agent"][:50] + "...",
        )
        return context

    async def new_page(self, context: BrowserContext) -> Page:
        """Open a page with the fingerprint patches installed."""
        page = await context.new_page()
        await page.add_init_script(STEALTH_JS)
        return page

    def requires_network_idle(self, url: str | None) -> bool:
        if not url:
            return False
        lowered = url.lower()
        return any(domain.lower() in lowered for domain in self.config.network_idle_domains)

    def navigation_options(
        self,
        url: str | None,
        wait_strategy: WaitStrategy | None = None,
        timeout_ms: int | None = None,
    ) -> dict[str, Any]:
        """Resolve ``wait_until`` and ``timeout`` for a navigation.

        An explicit ``networkidle`` request gets the extended timeout even
        for hosts outside ``network_idle_domains``.
        """
        if wait_strategy is None:
            wait_strategy = (
                WaitStrategy.NETWORK_IDLE
                if self.requires_network_idle(url)
                else WaitStrategy.DOM_CONTENT_LOADED
            )

        if timeout_ms is None:
            timeout_ms = (
                self.config.network_idle_timeout_ms
                if wait_strategy == WaitStrategy.NETWORK_IDLE
                else self.config.navigation_timeout_ms
            )

        return {"wait_until": wait_strategy.value, "timeout": timeout_ms}

    async def navigate(
        self,
        page: Page,
        url: str,
        wait_strategy: WaitStrategy | None = None,
        timeout_ms: int | None = None,
    ) -> Response | None:
        """Navigate with the per-site wait strategy.

        HTTP error statuses do not raise: blocked pages still have a title
        worth reporting, so the caller decides after the selector wait.

        Raises:
            NavigationError: If the engine reports a navigation failure. The
                engine's own message is kept in ``reason``.
        """
        options = self.navigation_options(url, wait_strategy, timeout_ms)
        log.debug("Navigating to URL", url=url, **options)

        try:
            response = await page.goto(url, **options)
        except PlaywrightError as exc:
            raise NavigationError(url=url, reason=exc.message) from exc

        status_code = response.status if response is not None else None
        if status_code is not None and status_code >= 400:
            log.warning("Navigation returned error status", url=url, status_code=status_code)
        else:
            log.debug("Navigation complete", url=url, status_code=status_code)
        return response

    async def _close_browser(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception as exc:
                log.warning("Error closing browser", error=str(exc))
            self._browser = None

    async def close(self) -> None:
        """Close the browser and stop the driver, in reverse launch order."""
        await self._close_browser()

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as exc:
                log.warning("Error stopping playwright", error=str(exc))
            self._playwright = None

        log.debug("Browser resources cleaned up")

    @property
    def browser(self) -> Browser | None:
        return self._browser
