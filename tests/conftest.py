"""Pytest configuration and shared fixtures for the PriceScout test suite.

This module provides hermetic test infrastructure with the following guarantees:
- No external network requests (browser and HTTP layers are faked)
- Deterministic execution (seeded randomness, politeness sleeps replaced)
- Isolated state (fresh config, store and sessions per test)

Design Rationale:
    Factory fixtures over static fixtures let each test describe only the
    pages it cares about. FakeSessions mirrors the StealthSessionManager
    surface the scrapers use, so scraper and orchestrator tests exercise the
    real fallback and relaunch logic without Playwright.
"""

from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError
from pytest_mock import MockerFixture

from config.settings import GlobalConfig
from pricescout.browser import StealthSessionManager
from pricescout.exceptions import BrowserLaunchError, NavigationError
from pricescout.models import ScrapeTarget, TargetType
from pricescout.sites import SiteRegistry
from pricescout.storage import InMemoryStore

FUND_ISIN = "GB00B4PQW151"
FT_FUND_GBP_URL = f"https://markets.ft.com/data/funds/tearsheet/summary?s={FUND_ISIN}:GBP"
FT_FUND_GBX_URL = f"https://markets.ft.com/data/funds/tearsheet/summary?s={FUND_ISIN}:GBX"
FIDELITY_SEARCH_URL = (
    f"https://www.fidelity.co.uk/search/?query={FUND_ISIN}"
    "&host=www.fidelity.co.uk&referrerPageUrl="
)
FIDELITY_FACTSHEET_URL = f"https://www.fidelity.co.uk/factsheet-data/factsheet/{FUND_ISIN}-fund/summary"
HL_URL = "https://www.hl.co.uk/shares/shares-search-results/a/astrazeneca-plc-ord-usd0.25"
MSCI_URL = "https://www.msci.com/indexes/index/990100"
UNKNOWN_URL = "https://prices.example.org/fund/42"


def build_page(
    text: str | None = "123.45p",
    title: str = "Quote page",
    selector_error: str | None = None,
    element_missing: bool = False,
) -> MagicMock:
    """Build a Playwright Page double for one URL.

    Args:
        text: Text content of the value element.
        title: Page title.
        selector_error: If set, wait_for_selector raises PlaywrightError.
        element_missing: If True, wait_for_selector resolves to None.
    """
    page = MagicMock()
    page.title = AsyncMock(return_value=title)

    element = MagicMock()
    element.text_content = AsyncMock(return_value=text)

    if selector_error is not None:
        page.wait_for_selector = AsyncMock(side_effect=PlaywrightError(selector_error))
    elif element_missing:
        page.wait_for_selector = AsyncMock(return_value=None)
    else:
        page.wait_for_selector = AsyncMock(return_value=element)
    return page


def build_search_page(href: str | None) -> MagicMock:
    """Build a search page whose result frame holds one factsheet link."""
    link = MagicMock()
    link.get_attribute = AsyncMock(return_value=href)

    frame = MagicMock()
    frame.wait_for_selector = AsyncMock(return_value=link)

    frame_element = MagicMock()
    frame_element.content_frame = AsyncMock(return_value=frame)

    page = build_page()
    page.wait_for_selector = AsyncMock(return_value=frame_element)
    return page


class FakeSessions:
    """In-memory stand-in for StealthSessionManager.

    Pages are registered per URL; unregistered URLs get a page whose
    selector wait times out. Navigation failures are registered per URL.
    """

    def __init__(self, config: GlobalConfig) -> None:
        self.config = config
        self.pages: dict[str, MagicMock] = {}
        self.navigation_errors: dict[str, str] = {}
        self.visited: list[str] = []
        self.wait_strategies: list[Any] = []
        self.contexts: list[MagicMock] = []
        self.launch_error: Exception | None = None
        self.launch_count = 0
        self.total_launches = 0
        self.relaunches = 0
        self.closed = 0
        self.alive = False
        self._navigation = StealthSessionManager(config)

    async def launch(self) -> None:
        if self.launch_error is not None:
            raise self.launch_error
        self.launch_count += 1
        self.total_launches += 1
        self.alive = True

    async def relaunch(self) -> None:
        self.relaunches += 1
        await self.launch()

    def is_alive(self) -> bool:
        return self.alive

    async def new_session(self, target_url: str | None = None) -> MagicMock:
        if self.launch_count == 0:
            raise BrowserLaunchError(reason="Browser not launched")
        if not self.alive:
            raise PlaywrightError("Browser has been closed")
        context = MagicMock()
        context.target_url = target_url
        context.close = AsyncMock()
        self.contexts.append(context)
        return context

    async def new_page(self, context: MagicMock) -> MagicMock:
        page = self.pages.get(context.target_url)
        if page is None:
            page = build_page(selector_error="Timeout 20000ms exceeded.")
        return page

    def navigation_options(self, url: str | None, wait_strategy: Any = None, timeout_ms: int | None = None) -> dict[str, Any]:
        return self._navigation.navigation_options(url, wait_strategy, timeout_ms)

    async def navigate(self, page: MagicMock, url: str, wait_strategy: Any = None, timeout_ms: int | None = None) -> MagicMock:
        self.visited.append(url)
        self.wait_strategies.append(wait_strategy)
        if url in self.navigation_errors:
            raise NavigationError(url=url, reason=self.navigation_errors[url])
        return MagicMock(status=200)

    async def close(self) -> None:
        self.closed += 1
        self.alive = False
        self.launch_count = 0

    def kill_on_selector(self, url: str, recover_text: str | None = None) -> None:
        """Make the page at ``url`` kill the browser on its selector wait.

        With ``recover_text`` the next wait succeeds with that text.
        """
        page = self.pages.get(url) or build_page()
        element = MagicMock()
        element.text_content = AsyncMock(return_value=recover_text)
        calls = {"n": 0}

        async def wait_for_selector(selector: str, timeout: int | None = None) -> MagicMock:
            calls["n"] += 1
            if recover_text is None or calls["n"] == 1:
                self.alive = False
                raise PlaywrightError("Target page, context or browser has been closed")
            return element

        page.wait_for_selector = AsyncMock(side_effect=wait_for_selector)
        self.pages[url] = page


@pytest.fixture
def mock_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> GlobalConfig:
    """Provide isolated GlobalConfig with safe test defaults.

    Overrides the lru_cache singleton to prevent state leakage between tests.
    Uses tmp_path for all file operations to avoid polluting the filesystem.
    """
    from config.settings import get_config

    get_config.cache_clear()

    log_dir = tmp_path / "logs"
    output_dir = tmp_path / "output"
    log_dir.mkdir()
    output_dir.mkdir()

    test_env = {
        "APP_NAME": "PriceScout-Test",
        "ENVIRONMENT": "test",
        "DEBUG": "false",
        "HEADLESS": "true",
        "LOG_LEVEL": "DEBUG",
        "LOG_DIR": str(log_dir),
        "LOG_ROTATION": "1 day",
        "LOG_RETENTION": "1 day",
        "STORE_PATH": str(tmp_path / "data" / "store.json"),
        "OUTPUT_DIR": str(output_dir),
        "SCHEDULE_ENABLED": "false",
        "RETRY_DELAY_MINUTES": "0",
        "STARTUP_DELAY_MINUTES": "0",
        "RETRY_MAX_ATTEMPTS": "3",
    }

    monkeypatch.delenv("SCRAPE_DELAY_PROFILE", raising=False)
    for key, value in test_env.items():
        monkeypatch.setenv(key, value)

    config = get_config()

    yield config

    get_config.cache_clear()


@pytest.fixture
def sites(mock_config: GlobalConfig) -> SiteRegistry:
    """The shipped known-site table."""
    return SiteRegistry.from_file(mock_config.site_config_path)


@pytest.fixture
def sample_targets() -> list[ScrapeTarget]:
    """A representative mix of targets across all resolution paths."""
    return [
        ScrapeTarget(
            target_type=TargetType.INVESTMENT,
            id=1,
            description="Global Index Fund",
            public_id=FUND_ISIN,
            currency_code="GBP",
        ),
        ScrapeTarget(
            target_type=TargetType.INVESTMENT,
            id=2,
            description="AstraZeneca",
            url=HL_URL,
            currency_code="GBP",
        ),
        ScrapeTarget(
            target_type=TargetType.INVESTMENT,
            id=3,
            description="Unlisted fund",
            url=UNKNOWN_URL,
        ),
        ScrapeTarget(target_type=TargetType.INVESTMENT, id=4, description="Cash"),
        ScrapeTarget(
            target_type=TargetType.BENCHMARK,
            id=1,
            description="MSCI World",
            url=MSCI_URL,
        ),
        ScrapeTarget(target_type=TargetType.CURRENCY, id=1, description="Sterling", currency_code="GBP"),
        ScrapeTarget(target_type=TargetType.CURRENCY, id=2, description="US Dollar", currency_code="USD"),
        ScrapeTarget(target_type=TargetType.CURRENCY, id=3, description="Euro", currency_code="EUR"),
    ]


@pytest.fixture
def store(sample_targets: list[ScrapeTarget]) -> InMemoryStore:
    return InMemoryStore(sample_targets)


@pytest.fixture
def page_factory() -> Callable[..., MagicMock]:
    """Factory fixture for Page doubles.

    Example:
        def test_parse_error(page_factory, fake_sessions):
            fake_sessions.pages[url] = page_factory(text="n/a")
    """
    return build_page


@pytest.fixture
def search_page_factory() -> Callable[[str | None], MagicMock]:
    return build_search_page


@pytest.fixture
def fake_sessions(mock_config: GlobalConfig) -> FakeSessions:
    return FakeSessions(mock_config)


@pytest.fixture
def mock_browser_context(mocker: MockerFixture) -> MagicMock:
    """Provide mocked Playwright BrowserContext."""
    context = mocker.MagicMock()
    context.new_page = mocker.AsyncMock()
    context.add_cookies = mocker.AsyncMock()
    context.close = mocker.AsyncMock()
    return context


@pytest.fixture
def mock_browser(mocker: MockerFixture, mock_browser_context: MagicMock) -> MagicMock:
    """Provide mocked Playwright Browser."""
    browser = mocker.MagicMock()
    browser.new_context = mocker.AsyncMock(return_value=mock_browser_context)
    browser.is_connected = mocker.MagicMock(return_value=True)
    browser.close = mocker.AsyncMock()
    return browser


@pytest.fixture
def mock_playwright(mocker: MockerFixture, mock_browser: MagicMock) -> MagicMock:
    """Provide mocked ``async_playwright()`` whose ``start()`` yields a driver."""
    playwright = mocker.MagicMock()
    playwright.chromium.launch = mocker.AsyncMock(return_value=mock_browser)
    playwright.stop = mocker.AsyncMock()

    starter = mocker.MagicMock()
    starter.start = mocker.AsyncMock(return_value=playwright)
    return starter


def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests requiring full stack",
    )
