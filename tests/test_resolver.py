"""Tests for target resolution priority and the GBP/GBX alternate."""

import pytest

from config.settings import GlobalConfig
from pricescout.models import ConfigSource, ScrapeTarget, TargetType, WaitStrategy
from pricescout.resolver import TargetResolver
from pricescout.sites import SiteRegistry
from tests.conftest import FT_FUND_GBP_URL, FT_FUND_GBX_URL, FUND_ISIN, HL_URL, MSCI_URL, UNKNOWN_URL


@pytest.fixture
def resolver(sites: SiteRegistry, mock_config: GlobalConfig) -> TargetResolver:
    return TargetResolver(sites, mock_config)


def _investment(**fields: object) -> ScrapeTarget:
    return ScrapeTarget(target_type=TargetType.INVESTMENT, id=1, **fields)


class TestResolutionPriority:
    """Test suite for TargetResolver.resolve."""

    def test_manual_url_and_selector(self, resolver: TargetResolver) -> None:
        resolved = resolver.resolve(_investment(url=UNKNOWN_URL, selector="td.nav"))

        assert resolved.url == UNKNOWN_URL
        assert resolved.selector == "td.nav"
        assert resolved.url_source == ConfigSource.MANUAL
        assert resolved.selector_source == ConfigSource.MANUAL

    def test_manual_url_with_site_selector(self, resolver: TargetResolver) -> None:
        resolved = resolver.resolve(_investment(url=HL_URL))

        assert resolved.selector == "span.bid.price-divide"
        assert resolved.url_source == ConfigSource.MANUAL
        assert resolved.selector_source == ConfigSource.SITE_CONFIG
        assert resolved.site_name == "Hargreaves Lansdown shares"

    def test_manual_url_unknown_site(self, resolver: TargetResolver) -> None:
        resolved = resolver.resolve(_investment(url=UNKNOWN_URL))

        assert resolved.url == UNKNOWN_URL
        assert resolved.selector is None
        assert resolved.selector_source == ConfigSource.NONE
        assert resolved.is_scrapeable is False

    def test_public_id_generates_ft_url(self, resolver: TargetResolver, mock_config: GlobalConfig) -> None:
        resolved = resolver.resolve(_investment(public_id=FUND_ISIN, currency_code="GBP"))

        assert resolved.url == FT_FUND_GBP_URL
        assert resolved.selector == mock_config.ft_markets_selector
        assert resolved.url_source == ConfigSource.PUBLIC_ID
        assert resolved.selector_source == ConfigSource.PUBLIC_ID

    def test_public_id_with_manual_selector(self, resolver: TargetResolver) -> None:
        resolved = resolver.resolve(_investment(public_id="LSE:AZN", selector="span.last"))

        assert resolved.url.endswith("/equities/tearsheet/summary?s=AZN:LSE")
        assert resolved.selector == "span.last"
        assert resolved.selector_source == ConfigSource.MANUAL

    def test_manual_url_beats_public_id(self, resolver: TargetResolver) -> None:
        resolved = resolver.resolve(_investment(url=HL_URL, public_id=FUND_ISIN))

        assert resolved.url == HL_URL
        assert resolved.url_source == ConfigSource.MANUAL

    def test_nothing_to_resolve(self, resolver: TargetResolver) -> None:
        resolved = resolver.resolve(_investment(public_id="garbage"))

        assert resolved.url is None
        assert resolved.selector is None
        assert resolved.url_source == ConfigSource.NONE
        assert resolved.selector_source == ConfigSource.NONE

    def test_wait_strategy_from_site_table(self, resolver: TargetResolver) -> None:
        benchmark = ScrapeTarget(target_type=TargetType.BENCHMARK, id=1, url=MSCI_URL)

        assert resolver.resolve(benchmark).wait_strategy == WaitStrategy.NETWORK_IDLE


class TestAlternate:
    """Test suite for the GBP/GBX alternate config."""

    def test_isin_fund_gets_swapped_url(self, resolver: TargetResolver) -> None:
        target = _investment(public_id=FUND_ISIN, currency_code="GBP")
        alternate = resolver.alternate(target, resolver.resolve(target))

        assert alternate.url == FT_FUND_GBX_URL
        assert alternate.url_source == ConfigSource.PUBLIC_ID

    def test_manual_url_has_no_alternate(self, resolver: TargetResolver) -> None:
        target = _investment(url=HL_URL, public_id=FUND_ISIN)

        assert resolver.alternate(target, resolver.resolve(target)) is None

    def test_ticker_has_no_alternate(self, resolver: TargetResolver) -> None:
        target = _investment(public_id="LSE:AZN")

        assert resolver.alternate(target, resolver.resolve(target)) is None

    def test_non_sterling_fund_has_no_alternate(self, resolver: TargetResolver) -> None:
        target = _investment(public_id=FUND_ISIN, currency_code="USD")

        assert resolver.alternate(target, resolver.resolve(target)) is None


class TestScrapeable:
    def test_is_scrapeable(self, resolver: TargetResolver) -> None:
        assert resolver.is_scrapeable(_investment(public_id=FUND_ISIN)) is True
        assert resolver.is_scrapeable(_investment(url=UNKNOWN_URL)) is True
        assert resolver.is_scrapeable(_investment(public_id="garbage")) is False
        assert resolver.is_scrapeable(_investment()) is False
