"""Concrete single-target scrapers for investment prices and benchmarks.

Both share the navigation and fallback machinery of BaseValueScraper and
differ only in how element text becomes a stored number:

- Prices are classified as major or minor units and stored in minor units
  (pence/cents). The "no indicator means pence" default follows the matched
  site's ``assume_minor_unit`` setting.
- Benchmark levels are stored exactly as parsed.
"""

from pricescout.extractor import BaseValueScraper, ParsedValue
from pricescout.models import ResolvedScrapeConfig, TargetType
from pricescout.parser import normalise_to_minor_unit, parse_benchmark_value, parse_price


class PriceScraper(BaseValueScraper):
    """Scrapes investment prices and normalises them to minor units."""

    target_type = TargetType.INVESTMENT

    @property
    def name(self) -> str:
        return "price"

    def parse(self, raw_text: str, resolved: ResolvedScrapeConfig) -> ParsedValue:
        parsed = parse_price(raw_text, assume_minor_default=resolved.assume_minor_unit)
        if parsed.value is None:
            return ParsedValue(None, False, None)
        return ParsedValue(
            parsed.value,
            parsed.unit_is_minor,
            normalise_to_minor_unit(parsed.value, parsed.unit_is_minor),
        )


class BenchmarkScraper(BaseValueScraper):
    """Scrapes benchmark index levels; values are stored as received."""

    target_type = TargetType.BENCHMARK

    @property
    def name(self) -> str:
        return "benchmark"

    def parse(self, raw_text: str, resolved: ResolvedScrapeConfig) -> ParsedValue:
        parsed = parse_benchmark_value(raw_text)
        return ParsedValue(parsed.value, False, parsed.value)
