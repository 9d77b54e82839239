"""Target resolution: from a stored target to an effective URL and selector.

Priority, first match wins:
    1. Manual URL + manual selector.
    2. Manual URL + selector from the known-site table.
    3. No manual URL but a public identifier: generated FT Markets URL with
       the tearsheet selector (a manual selector still overrides it).
    4. Nothing resolvable: url and selector are None.

Resolution is recomputed on every run so manual overrides always take
precedence over generated or previously discovered values. The resolver
never touches storage; the discovered-URL write-back is produced by the
fallback step and applied by the caller.
"""

from config.settings import GlobalConfig, get_config
from pricescout.logger import get_logger
from pricescout.models import ConfigSource, ResolvedScrapeConfig, ScrapeTarget
from pricescout.public_id import (
    build_ft_markets_url,
    detect_public_id_type,
    swap_currency_suffix,
)
from pricescout.sites import SiteRegistry

log = get_logger(__name__)


class TargetResolver:
    """Compute ResolvedScrapeConfig values for targets.

    Attributes:
        config: GlobalConfig providing FT Markets constants.
        sites: Known-site table used for selector inference.
    """

    def __init__(
        self,
        sites: SiteRegistry | None = None,
        config: GlobalConfig | None = None,
    ) -> None:
        self.config = config or get_config()
        self.sites = sites if sites is not None else SiteRegistry.from_file(
            self.config.site_config_path
        )

    def resolve(self, target: ScrapeTarget) -> ResolvedScrapeConfig:
        """Resolve the URL, selector and wait strategy for a target."""
        if target.url:
            match = self.sites.get_selector(target.url, target.selector)
            if match.source == "custom":
                selector_source = ConfigSource.MANUAL
            elif match.source == "config":
                selector_source = ConfigSource.SITE_CONFIG
            else:
                selector_source = ConfigSource.NONE

            return ResolvedScrapeConfig(
                url=target.url,
                selector=match.selector,
                wait_strategy=match.wait_strategy,
                url_source=ConfigSource.MANUAL,
                selector_source=selector_source,
                site_name=match.site_name,
                assume_minor_unit=match.assume_minor_unit,
            )

        generated = build_ft_markets_url(
            target.public_id,
            target.currency_code,
            self.config.ft_markets_base_url,
        )
        if generated:
            match = self.sites.get_selector(generated, target.selector)
            return ResolvedScrapeConfig(
                url=generated,
                selector=target.selector or self.config.ft_markets_selector,
                wait_strategy=match.wait_strategy,
                url_source=ConfigSource.PUBLIC_ID,
                selector_source=(
                    ConfigSource.MANUAL if target.selector else ConfigSource.PUBLIC_ID
                ),
                site_name=match.site_name or "FT Markets",
                assume_minor_unit=match.assume_minor_unit,
            )

        if target.public_id:
            log.debug(
                "Public identifier did not produce a URL",
                target_type=target.target_type.value,
                target_id=target.id,
                public_id=target.public_id,
            )

        return ResolvedScrapeConfig(
            url=None,
            selector=None,
            url_source=ConfigSource.NONE,
            selector_source=ConfigSource.NONE,
        )

    def alternate(
        self,
        target: ScrapeTarget,
        resolved: ResolvedScrapeConfig,
    ) -> ResolvedScrapeConfig | None:
        """Offer the GBP/GBX-swapped URL for an auto-generated fund URL.

        FT Markets lists some UK funds in pounds and others in pence. Only
        ISIN-generated URLs qualify; manual URLs and ticker URLs get None.
        """
        if resolved.url_source != ConfigSource.PUBLIC_ID:
            return None
        if detect_public_id_type(target.public_id) != "isin":
            return None

        alternate_url = swap_currency_suffix(resolved.url)
        if alternate_url is None:
            return None

        return resolved.model_copy(update={"url": alternate_url})

    def is_scrapeable(self, target: ScrapeTarget) -> bool:
        """A target is scrapeable when a URL can be resolved for it."""
        return self.resolve(target).url is not None
