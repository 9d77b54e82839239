"""Tests for secondary-provider factsheet discovery."""

from typing import Callable
from unittest.mock import AsyncMock

import pytest

from config.settings import GlobalConfig
from pricescout.exceptions import BrowserDisconnectedError
from pricescout.fallback import FactsheetDiscovery
from pricescout.models import ConfigSource, ScrapeTarget, TargetType
from pricescout.sites import SiteRegistry
from tests.conftest import FIDELITY_FACTSHEET_URL, FIDELITY_SEARCH_URL, FUND_ISIN, FakeSessions


@pytest.fixture
def discovery(fake_sessions: FakeSessions, sites: SiteRegistry, mock_config: GlobalConfig) -> FactsheetDiscovery:
    fake_sessions.launch_count = 1
    fake_sessions.alive = True
    return FactsheetDiscovery(fake_sessions, sites, mock_config)


@pytest.fixture
def fund() -> ScrapeTarget:
    return ScrapeTarget(target_type=TargetType.INVESTMENT, id=7, public_id=FUND_ISIN)


class TestDiscovery:
    """Test suite for FactsheetDiscovery.discover."""

    @pytest.mark.asyncio
    async def test_relative_link_resolved_against_search_page(
        self,
        discovery: FactsheetDiscovery,
        fake_sessions: FakeSessions,
        fund: ScrapeTarget,
        search_page_factory: Callable,
    ) -> None:
        fake_sessions.pages[FIDELITY_SEARCH_URL] = search_page_factory(
            "/factsheet-data/factsheet/GB00B4PQW151-fund/summary"
        )

        outcome = await discovery.discover(fund)

        assert outcome.succeeded is True
        assert outcome.resolved.url == FIDELITY_FACTSHEET_URL
        assert outcome.resolved.url_source == ConfigSource.DISCOVERED
        assert outcome.resolved.selector_source == ConfigSource.SITE_CONFIG
        assert outcome.resolved.site_name == "Fidelity UK factsheet"
        assert outcome.write_back.target_id == 7
        assert outcome.write_back.url == FIDELITY_FACTSHEET_URL
        assert fake_sessions.visited == [FIDELITY_SEARCH_URL]
        fake_sessions.contexts[0].close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_non_isin_target_skips_search(
        self,
        discovery: FactsheetDiscovery,
        fake_sessions: FakeSessions,
    ) -> None:
        target = ScrapeTarget(target_type=TargetType.INVESTMENT, id=8, public_id="LSE:AZN")

        outcome = await discovery.discover(target)

        assert outcome.succeeded is False
        assert "not an ISIN" in outcome.error
        assert fake_sessions.visited == []

    @pytest.mark.asyncio
    async def test_search_navigation_failure(
        self,
        discovery: FactsheetDiscovery,
        fake_sessions: FakeSessions,
        fund: ScrapeTarget,
    ) -> None:
        fake_sessions.navigation_errors[FIDELITY_SEARCH_URL] = "net::ERR_TIMED_OUT"

        outcome = await discovery.discover(fund)

        assert outcome.error == "Search page failed: net::ERR_TIMED_OUT"

    @pytest.mark.asyncio
    async def test_results_frame_missing(
        self,
        discovery: FactsheetDiscovery,
        fund: ScrapeTarget,
    ) -> None:
        outcome = await discovery.discover(fund)

        assert outcome.error == "Search results frame did not appear"

    @pytest.mark.asyncio
    async def test_results_frame_without_content(
        self,
        discovery: FactsheetDiscovery,
        fake_sessions: FakeSessions,
        fund: ScrapeTarget,
        search_page_factory: Callable,
    ) -> None:
        page = search_page_factory("/factsheet")
        frame_element = page.wait_for_selector.return_value
        frame_element.content_frame = AsyncMock(return_value=None)
        fake_sessions.pages[FIDELITY_SEARCH_URL] = page

        outcome = await discovery.discover(fund)

        assert outcome.error == "Search results frame has no content"

    @pytest.mark.asyncio
    async def test_link_without_href(
        self,
        discovery: FactsheetDiscovery,
        fake_sessions: FakeSessions,
        fund: ScrapeTarget,
        search_page_factory: Callable,
    ) -> None:
        fake_sessions.pages[FIDELITY_SEARCH_URL] = search_page_factory(None)

        outcome = await discovery.discover(fund)

        assert outcome.error == "Factsheet link has no href"

    @pytest.mark.asyncio
    async def test_discovered_url_without_known_selector(
        self,
        discovery: FactsheetDiscovery,
        fake_sessions: FakeSessions,
        fund: ScrapeTarget,
        search_page_factory: Callable,
    ) -> None:
        fake_sessions.pages[FIDELITY_SEARCH_URL] = search_page_factory("https://elsewhere.test/fund/1")

        outcome = await discovery.discover(fund)

        assert outcome.succeeded is False
        assert outcome.error == "No known selector for discovered URL https://elsewhere.test/fund/1"

    @pytest.mark.asyncio
    async def test_browser_death_propagates(
        self,
        discovery: FactsheetDiscovery,
        fake_sessions: FakeSessions,
        fund: ScrapeTarget,
    ) -> None:
        fake_sessions.kill_on_selector(FIDELITY_SEARCH_URL)

        with pytest.raises(BrowserDisconnectedError):
            await discovery.discover(fund)

        fake_sessions.contexts[0].close.assert_awaited_once()
