"""Tests for the known-site selector table."""

import json
from pathlib import Path

from pricescout.models import WaitStrategy
from pricescout.sites import SiteConfig, SiteRegistry, normalise_url
from tests.conftest import FIDELITY_FACTSHEET_URL, FT_FUND_GBP_URL, HL_URL, MSCI_URL, UNKNOWN_URL


class TestNormaliseUrl:
    def test_scheme_and_www_dropped(self) -> None:
        assert normalise_url("https://www.Markets.FT.com/data/") == "markets.ft.com/data/"
        assert normalise_url("http://msci.com") == "msci.com"


class TestSiteRegistry:
    """Test suite for SiteRegistry lookups."""

    def test_shipped_table_matches_known_sites(self, sites: SiteRegistry) -> None:
        assert sites.find(FT_FUND_GBP_URL).name == "FT Markets"
        assert sites.find(FIDELITY_FACTSHEET_URL).name == "Fidelity UK factsheet"
        assert sites.find(HL_URL).name == "Hargreaves Lansdown shares"
        assert sites.find(UNKNOWN_URL) is None
        assert sites.find(None) is None

    def test_first_matching_entry_wins(self) -> None:
        registry = SiteRegistry(
            [
                SiteConfig(pattern="example.com/funds", name="Funds", selector=".fund"),
                SiteConfig(pattern="example.com", name="Generic", selector=".price"),
            ]
        )

        assert registry.find("https://www.example.com/funds/1").name == "Funds"
        assert registry.find("https://example.com/shares/1").name == "Generic"

    def test_config_selector_with_wait_strategy(self, sites: SiteRegistry) -> None:
        match = sites.get_selector(MSCI_URL)

        assert match.source == "config"
        assert match.selector == "div.index-level-value"
        assert match.wait_strategy == WaitStrategy.NETWORK_IDLE

    def test_custom_selector_wins_but_keeps_site_settings(self, sites: SiteRegistry) -> None:
        match = sites.get_selector(MSCI_URL, "span.level")

        assert match.source == "custom"
        assert match.selector == "span.level"
        assert match.site_name == "MSCI index"
        assert match.wait_strategy == WaitStrategy.NETWORK_IDLE

    def test_unknown_site_without_custom_selector(self, sites: SiteRegistry) -> None:
        match = sites.get_selector(UNKNOWN_URL)

        assert match.source == "none"
        assert match.selector is None

    def test_site_unit_policy(self, sites: SiteRegistry) -> None:
        morningstar = "https://www.morningstar.co.uk/uk/funds/snapshot/snapshot.aspx?id=F0GBR04SGA"

        assert sites.get_selector(morningstar).assume_minor_unit is False
        assert sites.get_selector(FT_FUND_GBP_URL).assume_minor_unit is True


class TestRegistryLoading:
    def test_missing_file_yields_empty_registry(self, tmp_path: Path) -> None:
        registry = SiteRegistry.from_file(tmp_path / "absent.json")

        assert registry.sites == []

    def test_malformed_file_yields_empty_registry(self, tmp_path: Path) -> None:
        path = tmp_path / "sites.json"
        path.write_text("{not json", encoding="utf-8")

        assert SiteRegistry.from_file(path).sites == []

    def test_invalid_entry_yields_empty_registry(self, tmp_path: Path) -> None:
        path = tmp_path / "sites.json"
        path.write_text(json.dumps({"sites": [{"pattern": "x.com"}]}), encoding="utf-8")

        assert SiteRegistry.from_file(path).sites == []

    def test_valid_file_loaded_in_order(self, tmp_path: Path) -> None:
        path = tmp_path / "sites.json"
        path.write_text(
            json.dumps(
                {
                    "sites": [
                        {"pattern": "a.com", "name": "A", "selector": ".a"},
                        {"pattern": "b.com", "name": "B", "selector": ".b", "wait_strategy": "networkidle"},
                    ]
                }
            ),
            encoding="utf-8",
        )

        registry = SiteRegistry.from_file(path)

        assert [s.name for s in registry.sites] == ["A", "B"]
        assert registry.sites[1].wait_strategy == WaitStrategy.NETWORK_IDLE
