"""Tests for public identifier classification and URL generation."""

import pytest
from hypothesis import given, strategies as st

from pricescout.public_id import (
    MAX_PUBLIC_ID_LENGTH,
    build_alternate_currency_url,
    build_fidelity_search_url,
    build_ft_markets_url,
    detect_public_id_type,
    swap_currency_suffix,
    ticker_of,
    validate_public_id,
)
from tests.conftest import FIDELITY_SEARCH_URL, FT_FUND_GBP_URL, FT_FUND_GBX_URL, FUND_ISIN


class TestDetection:
    """Test suite for identifier classification."""

    @pytest.mark.parametrize(
        ("public_id", "expected"),
        [
            (FUND_ISIN, "isin"),
            (FUND_ISIN.lower(), "isin"),
            ("LSE:AZN", "ticker"),
            ("NYSE:BRK.B", "ticker"),
            ("ISF:LSE:GBX", "etf"),
            ("hello", None),
            ("GB00B4PQW15", None),
            ("", None),
            (None, None),
        ],
    )
    def test_detect_public_id_type(self, public_id: str | None, expected: str | None) -> None:
        assert detect_public_id_type(public_id) == expected

    def test_validate_accepts_empty(self) -> None:
        assert validate_public_id(None) == (True, None)
        assert validate_public_id("  ") == (True, None)

    def test_validate_rejects_long_identifier(self) -> None:
        valid, reason = validate_public_id("A" * (MAX_PUBLIC_ID_LENGTH + 1))

        assert valid is False
        assert str(MAX_PUBLIC_ID_LENGTH) in reason

    def test_validate_rejects_unknown_shape(self) -> None:
        valid, reason = validate_public_id("not-an-id")

        assert valid is False
        assert "ISIN" in reason

    def test_ticker_of(self) -> None:
        assert ticker_of("LSE:AZN") == "AZN"
        assert ticker_of("ISF:LSE:GBX") == "ISF"
        assert ticker_of(FUND_ISIN) is None


class TestFtMarketsUrls:
    """Test suite for generated tearsheet URLs."""

    def test_isin_uses_fund_tearsheet_with_currency(self) -> None:
        assert build_ft_markets_url(FUND_ISIN, "gbp") == FT_FUND_GBP_URL

    def test_isin_without_currency_yields_nothing(self) -> None:
        assert build_ft_markets_url(FUND_ISIN, None) is None

    def test_exchange_ticker_is_reversed(self) -> None:
        assert build_ft_markets_url("LSE:AZN", "GBP") == (
            "https://markets.ft.com/data/equities/tearsheet/summary?s=AZN:LSE"
        )

    def test_etf_identifier_used_verbatim(self) -> None:
        assert build_ft_markets_url("ISF:LSE:GBX", None) == (
            "https://markets.ft.com/data/etfs/tearsheet/summary?s=ISF:LSE:GBX"
        )

    def test_custom_base_url(self) -> None:
        url = build_ft_markets_url("LSE:AZN", None, base_url="https://mirror.test/data")

        assert url.startswith("https://mirror.test/data/equities/")

    def test_unknown_identifier(self) -> None:
        assert build_ft_markets_url("hello", "GBP") is None


class TestCurrencySwap:
    """Test suite for the GBP/GBX alternate URL."""

    def test_swap_gbp_to_gbx(self) -> None:
        assert swap_currency_suffix(FT_FUND_GBP_URL) == FT_FUND_GBX_URL

    def test_swap_is_an_involution(self) -> None:
        assert swap_currency_suffix(swap_currency_suffix(FT_FUND_GBX_URL)) == FT_FUND_GBX_URL

    @given(
        isin=st.from_regex(r"[A-Z]{2}[A-Z0-9]{10}", fullmatch=True),
        currency=st.sampled_from(["GBP", "GBX"]),
    )
    def test_swap_round_trips_for_any_isin(self, isin: str, currency: str) -> None:
        """Property: swapping twice returns the generated URL."""
        url = build_ft_markets_url(isin, currency)

        swapped = swap_currency_suffix(url)

        assert swapped is not None
        assert swapped != url
        assert swap_currency_suffix(swapped) == url

    def test_non_sterling_fund_not_swapped(self) -> None:
        url = f"https://markets.ft.com/data/funds/tearsheet/summary?s={FUND_ISIN}:USD"

        assert swap_currency_suffix(url) is None

    def test_equity_url_not_swapped(self) -> None:
        assert swap_currency_suffix("https://markets.ft.com/data/equities/tearsheet/summary?s=AZN:LSE") is None

    def test_build_alternate_currency_url(self) -> None:
        assert build_alternate_currency_url(FUND_ISIN, "GBX") == FT_FUND_GBP_URL
        assert build_alternate_currency_url(FUND_ISIN, "USD") is None
        assert build_alternate_currency_url("LSE:AZN", "GBP") is None


class TestFidelitySearch:
    def test_search_url_for_isin(self) -> None:
        from config.settings import GlobalConfig

        template = GlobalConfig.model_fields["fidelity_search_url"].default

        assert build_fidelity_search_url(FUND_ISIN.lower(), template) == FIDELITY_SEARCH_URL

    def test_search_requires_isin(self) -> None:
        assert build_fidelity_search_url("LSE:AZN", "https://x.test/?q={isin}") is None
