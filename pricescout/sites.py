"""Known-site selector table.

Maps URL substrings to the CSS selector and navigation wait strategy that
work for that site. The table lives in ``config/scraper_sites.json``::

    {"sites": [{"pattern": "markets.ft.com", "name": "FT Markets",
                "selector": "span.mod-ui-data-list__value",
                "wait_strategy": "domcontentloaded"}]}

Matching lower-cases the URL, drops the scheme and a leading ``www.``,
then returns the first entry whose pattern is a substring. Entry order in
the file is therefore priority order.
"""

import json
import re
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from pricescout.logger import get_logger
from pricescout.models import WaitStrategy

log = get_logger(__name__)

_SCHEME = re.compile(r"^https?://")
_WWW = re.compile(r"^www\.")


class SiteConfig(BaseModel):
    """One row of the known-site table."""

    pattern: str = Field(..., min_length=1)
    name: str
    selector: str = Field(..., min_length=1)
    wait_strategy: WaitStrategy = WaitStrategy.DOM_CONTENT_LOADED
    assume_minor_unit: bool = True
    notes: str | None = None


class SelectorMatch(BaseModel):
    """Selector chosen for a URL and where it came from."""

    selector: str | None
    source: Literal["custom", "config", "none"]
    site_name: str | None = None
    wait_strategy: WaitStrategy = WaitStrategy.DOM_CONTENT_LOADED
    assume_minor_unit: bool = True


def normalise_url(url: str) -> str:
    return _WWW.sub("", _SCHEME.sub("", url.strip().lower()))


class SiteRegistry:
    """In-memory view of the known-site table.

    Attributes:
        sites: Entries in priority order.

    Example:
        registry = SiteRegistry.from_file(config.site_config_path)
        match = registry.get_selector("https://markets.ft.com/data/...", None)
    """

    def __init__(self, sites: list[SiteConfig] | None = None) -> None:
        self.sites = list(sites or [])

    @classmethod
    def from_file(cls, path: Path) -> "SiteRegistry":
        """Load the table from JSON.

        A missing or malformed file yields an empty registry and an error
        log entry; targets then rely on manual and public-id selectors.
        """
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            sites = [SiteConfig.model_validate(entry) for entry in payload.get("sites", [])]
        except (OSError, json.JSONDecodeError, ValidationError, AttributeError) as exc:
            log.error("Failed to load site config table", path=str(path), error=str(exc))
            return cls([])

        log.debug("Site config table loaded", path=str(path), sites=len(sites))
        return cls(sites)

    def find(self, url: str | None) -> SiteConfig | None:
        """Return the first site whose pattern occurs in the URL."""
        if not url:
            return None
        normalised = normalise_url(url)
        for site in self.sites:
            if site.pattern.lower() in normalised:
                return site
        return None

    def get_selector(self, url: str | None, custom_selector: str | None = None) -> SelectorMatch:
        """Pick a selector for a URL; a custom selector always wins.

        The wait strategy and unit default come from the matching site
        entry even when the selector itself is custom.
        """
        site = self.find(url)
        wait_strategy = site.wait_strategy if site else WaitStrategy.DOM_CONTENT_LOADED
        assume_minor = site.assume_minor_unit if site else True
        site_name = site.name if site else None

        if custom_selector:
            return SelectorMatch(
                selector=custom_selector,
                source="custom",
                site_name=site_name,
                wait_strategy=wait_strategy,
                assume_minor_unit=assume_minor,
            )

        if site is not None:
            return SelectorMatch(
                selector=site.selector,
                source="config",
                site_name=site_name,
                wait_strategy=wait_strategy,
                assume_minor_unit=assume_minor,
            )

        return SelectorMatch(selector=None, source="none")
