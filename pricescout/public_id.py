"""Public identifier helpers: ISINs, exchange tickers and ETF codes.

A target without a manual URL can still be scraped when it carries a public
identifier, because FT Markets publishes tearsheet pages at predictable URLs:

    ISIN                     GB00B4PQW151   -> funds/tearsheet?s=GB00B4PQW151:GBP
    EXCHANGE:TICKER          LSE:AZN        -> equities/tearsheet?s=AZN:LSE
    TICKER:EXCHANGE:CURRENCY ISF:LSE:GBX    -> etfs/tearsheet?s=ISF:LSE:GBX
"""

import re
from typing import Literal
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

PublicIdType = Literal["isin", "ticker", "etf"]

ISIN_PATTERN = re.compile(r"^[A-Z]{2}[A-Z0-9]{10}$")
TICKER_PATTERN = re.compile(r"^[A-Z]{1,10}:[A-Z0-9.]{1,10}$")
ETF_PATTERN = re.compile(r"^[A-Z0-9.]{1,10}:[A-Z]{1,10}:[A-Z]{3}$")

MAX_PUBLIC_ID_LENGTH = 20
DEFAULT_FT_BASE_URL = "https://markets.ft.com/data"

_STERLING_SWAP = {"GBP": "GBX", "GBX": "GBP"}


def detect_public_id_type(public_id: str | None) -> PublicIdType | None:
    """Classify an identifier, or return None if it matches no known shape."""
    if not public_id:
        return None
    candidate = public_id.strip().upper()
    if ISIN_PATTERN.match(candidate):
        return "isin"
    if ETF_PATTERN.match(candidate):
        return "etf"
    if TICKER_PATTERN.match(candidate):
        return "ticker"
    return None


def validate_public_id(public_id: str | None) -> tuple[bool, str | None]:
    """Validate an identifier before it is stored.

    Returns:
        ``(True, None)`` for a valid or empty identifier, otherwise
        ``(False, reason)``.
    """
    if public_id is None or not public_id.strip():
        return True, None

    candidate = public_id.strip().upper()
    if len(candidate) > MAX_PUBLIC_ID_LENGTH:
        return False, f"Public ID must be {MAX_PUBLIC_ID_LENGTH} characters or fewer"

    if detect_public_id_type(candidate) is None:
        return False, (
            "Public ID must be an ISIN (e.g. GB00B4PQW151), Exchange:Ticker "
            "(e.g. LSE:AZN), or Ticker:Exchange:Currency for ETFs (e.g. ISF:LSE:GBX)"
        )
    return True, None


def ticker_of(public_id: str | None) -> str | None:
    """Return the bare ticker for ticker and ETF identifiers."""
    kind = detect_public_id_type(public_id)
    if kind is None or kind == "isin":
        return None
    parts = public_id.strip().upper().split(":")
    return parts[1] if kind == "ticker" else parts[0]


def build_ft_markets_url(
    public_id: str | None,
    currency_code: str | None,
    base_url: str = DEFAULT_FT_BASE_URL,
) -> str | None:
    """Build the FT Markets tearsheet URL for a public identifier.

    Args:
        public_id: ISIN, EXCHANGE:TICKER or TICKER:EXCHANGE:CURRENCY.
        currency_code: Listing currency; only used for ISINs.
        base_url: Tearsheet base, without trailing slash.

    Returns:
        Tearsheet URL, or None for an unrecognised identifier or an ISIN
        without a currency.
    """
    kind = detect_public_id_type(public_id)
    if kind is None:
        return None

    identifier = public_id.strip().upper()

    if kind == "isin":
        if not currency_code or not currency_code.strip():
            return None
        return f"{base_url}/funds/tearsheet/summary?s={identifier}:{currency_code.strip().upper()}"

    if kind == "ticker":
        exchange, ticker = identifier.split(":")
        return f"{base_url}/equities/tearsheet/summary?s={ticker}:{exchange}"

    return f"{base_url}/etfs/tearsheet/summary?s={identifier}"


def swap_currency_suffix(url: str | None) -> str | None:
    """Swap a fund tearsheet URL's ``:GBP`` suffix for ``:GBX`` or back.

    Applying the swap twice returns the original URL. Returns None for
    anything that is not an ISIN fund tearsheet quoted in GBP or GBX.
    """
    if not url:
        return None

    parts = urlsplit(url)
    if "/funds/tearsheet/" not in parts.path:
        return None

    query = parse_qsl(parts.query, keep_blank_values=True)
    swapped = False
    rebuilt: list[tuple[str, str]] = []
    for key, value in query:
        if key == "s" and ":" in value:
            isin, currency = value.rsplit(":", 1)
            other = _STERLING_SWAP.get(currency.upper())
            if other and detect_public_id_type(isin) == "isin":
                value = f"{isin}:{other}"
                swapped = True
        rebuilt.append((key, value))

    if not swapped:
        return None
    return urlunsplit(parts._replace(query=urlencode(rebuilt, safe=":")))


def build_alternate_currency_url(
    public_id: str | None,
    currency_code: str | None,
    base_url: str = DEFAULT_FT_BASE_URL,
) -> str | None:
    """Build the GBP/GBX-swapped fund URL for an ISIN, or None."""
    if detect_public_id_type(public_id) != "isin" or not currency_code:
        return None
    other = _STERLING_SWAP.get(currency_code.strip().upper())
    if other is None:
        return None
    return build_ft_markets_url(public_id, other, base_url)


def build_fidelity_search_url(isin: str | None, template: str) -> str | None:
    """Build the secondary-provider search URL for an ISIN.

    Args:
        isin: ISIN to search for.
        template: URL template with an ``{isin}`` placeholder.
    """
    if detect_public_id_type(isin) != "isin":
        return None
    return template.format(isin=isin.strip().upper())
