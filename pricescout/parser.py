"""Parsing of raw page text into numeric values.

Financial sites render prices in many shapes: ``£1,234.56``, ``123.45p``,
``GBP 12.30``, ``(4.20)``, ``2345.50``. This module reduces them to a number
plus a unit classification. Everything here is pure; no I/O.

Unit policy:
    A trailing ``p``/``P``/``GBX`` marks minor units (pence). A currency
    symbol or a leading/trailing currency code marks major units and wins
    over any suffix. With no indicator at all the value is assumed to be in
    minor units, because the most common source quotes pence without a
    marker. Callers can turn that default off per site
    (``assume_minor_default=False``) for sources that quote bare major units.
"""

import re
from typing import NamedTuple

_GBX_SUFFIX = re.compile(r"GBX\s*$", re.IGNORECASE)
_PENCE_SUFFIX = re.compile(r"p\s*$", re.IGNORECASE)
_CURRENCY_SYMBOL = re.compile(r"[£$€¥]")
_SYMBOLS_AND_SPACE = re.compile(r"[£$€¥\u00a0\s]")
_LEADING_CODE = re.compile(r"^[A-Za-z]+")
_TRAILING_CODE = re.compile(r"[A-Za-z]+$")
_PAREN_NEGATIVE = re.compile(r"^\(([0-9.]+)\)$")
_LEADING_NUMBER = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


class ParsedPrice(NamedTuple):
    value: float | None
    unit_is_minor: bool
    raw: str


class ParsedBenchmark(NamedTuple):
    value: float | None
    raw: str


def _to_number(cleaned: str) -> float | None:
    """Read the leading decimal number from a cleaned string.

    Trailing garbage after a valid number is ignored (``"12.5.1"`` -> 12.5);
    a string that does not start with a number yields None.
    """
    match = _LEADING_NUMBER.match(cleaned)
    if match is None:
        return None
    return float(match.group(0))


def _unwrap_parentheses(cleaned: str) -> str:
    match = _PAREN_NEGATIVE.match(cleaned)
    return f"-{match.group(1)}" if match else cleaned


def parse_price(raw_text: str | None, assume_minor_default: bool = True) -> ParsedPrice:
    """Parse a price string into a value and a unit classification.

    Args:
        raw_text: Text content of the price element.
        assume_minor_default: Unit to assume when the text carries no
            indicator at all.

    Returns:
        ParsedPrice. ``value`` is None (and ``unit_is_minor`` False) when no
        number could be read.

    Example:
        >>> parse_price("£1,234.56")
        ParsedPrice(value=1234.56, unit_is_minor=False, raw='£1,234.56')
        >>> parse_price("123.45p")
        ParsedPrice(value=123.45, unit_is_minor=True, raw='123.45p')
    """
    if not raw_text or not isinstance(raw_text, str):
        return ParsedPrice(None, False, raw_text or "")

    raw = raw_text.strip()
    if not raw:
        return ParsedPrice(None, False, "")

    unit_is_minor = assume_minor_default
    cleaned = raw

    if _GBX_SUFFIX.search(cleaned):
        cleaned = _GBX_SUFFIX.sub("", cleaned)
        unit_is_minor = True
    elif _PENCE_SUFFIX.search(cleaned):
        cleaned = _PENCE_SUFFIX.sub("", cleaned)
        unit_is_minor = True

    if _CURRENCY_SYMBOL.search(cleaned):
        unit_is_minor = False

    cleaned = _SYMBOLS_AND_SPACE.sub("", cleaned)

    if _LEADING_CODE.search(cleaned):
        unit_is_minor = False
        cleaned = _LEADING_CODE.sub("", cleaned)

    if _TRAILING_CODE.search(cleaned):
        unit_is_minor = False
        cleaned = _TRAILING_CODE.sub("", cleaned)

    cleaned = _unwrap_parentheses(cleaned.replace(",", ""))

    value = _to_number(cleaned)
    if value is None:
        return ParsedPrice(None, False, raw)

    return ParsedPrice(value, unit_is_minor, raw)


def parse_benchmark_value(raw_text: str | None) -> ParsedBenchmark:
    """Parse an index level or benchmark price.

    Benchmarks are stored as received, so symbols and codes are simply
    stripped without any unit classification.
    """
    if not raw_text or not isinstance(raw_text, str):
        return ParsedBenchmark(None, raw_text or "")

    raw = raw_text.strip()
    if not raw:
        return ParsedBenchmark(None, "")

    cleaned = _SYMBOLS_AND_SPACE.sub("", raw)
    cleaned = _LEADING_CODE.sub("", cleaned)
    cleaned = _TRAILING_CODE.sub("", cleaned)
    cleaned = _unwrap_parentheses(cleaned.replace(",", ""))

    return ParsedBenchmark(_to_number(cleaned), raw)


def normalise_to_minor_unit(value: float, unit_is_minor: bool) -> float:
    """Express a parsed price in minor units, rounded to 4 decimal places.

    Args:
        value: Parsed numeric price.
        unit_is_minor: Whether ``value`` is already in pence/cents.

    Returns:
        The price in minor units.
    """
    if unit_is_minor:
        return round(value, 4)
    return round(value * 100, 4)
