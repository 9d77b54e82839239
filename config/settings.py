"""Global configuration management using pydantic-settings.

This module implements the 12-factor app methodology for configuration,
loading values from environment variables with strict type validation.
The Singleton pattern ensures consistent configuration state across the application.

Complex values (delay profiles, referer map, user-agent pool) may be
overridden with JSON-encoded environment variables, e.g.
``NETWORK_IDLE_DOMAINS='["msci.com", "example.org"]'``.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pricescout.models import (
    ConsentCookie,
    DelayProfile,
    DelayRange,
    UserAgentProfile,
)

_DEFAULT_SITE_CONFIG = Path(__file__).resolve().parent / "scraper_sites.json"

_CHROME_UA = (
    "Mozilla/5.0 ({platform}) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/{major}.0.0.0 Safari/537.36"
)
_WINDOWS = "Windows NT 10.0; Win64; x64"
_MAC = "Macintosh; Intel Mac OS X 10_15_7"
_LINUX = "X11; Linux x86_64"


def _default_user_agents() -> list[UserAgentProfile]:
    pool = [
        ("131", _WINDOWS, '"Windows"'),
        ("130", _WINDOWS, '"Windows"'),
        ("129", _WINDOWS, '"Windows"'),
        ("131", _MAC, '"macOS"'),
        ("130", _MAC, '"macOS"'),
        ("131", _LINUX, '"Linux"'),
    ]
    return [
        UserAgentProfile(
            user_agent=_CHROME_UA.format(platform=os_token, major=major),
            major_version=major,
            platform=platform,
        )
        for major, os_token, platform in pool
    ]


def _default_delay_profiles() -> dict[str, DelayProfile]:
    # Same-domain ranges stay longer than different-domain ranges; do not swap them.
    return {
        "interactive": DelayProfile(
            name="interactive",
            same_domain=DelayRange(min_ms=2000, max_ms=5000),
            different_domain=DelayRange(min_ms=500, max_ms=1000),
        ),
        "scheduled": DelayProfile(
            name="scheduled",
            same_domain=DelayRange(min_ms=5000, max_ms=30000),
            different_domain=DelayRange(min_ms=1000, max_ms=5000),
        ),
    }


def _default_consent_cookies() -> list[ConsentCookie]:
    return [
        ConsentCookie(
            name="SOCS",
            value="CAISHAgBEhJnd3NfMjAyMzA4MTAtMF9SQzIaAmVuIAEaBgiA_LSmBg",
            domain=".google.com",
        ),
        ConsentCookie(name="FTConsent", value="true", domain=".ft.com"),
    ]


class GlobalConfig(BaseSettings):
    """Centralized configuration with environment variable binding.

    All configuration values are loaded from environment variables,
    with sensible defaults for development. Production deployments
    should override these via .env or environment injection.

    Attributes:
        app_name: Application identifier for logging and telemetry.
        environment: Deployment environment.
        debug: Enable verbose debugging output.
        headless: Run Chromium without a visible window.
        log_level: Minimum log level for output filtering.
        log_dir: Directory path for structured JSON log files.
        log_rotation: Log file rotation interval.
        log_retention: Log file retention period.
        navigation_timeout_ms: Timeout for DOM-parsed navigation waits.
        network_idle_timeout_ms: Timeout for network-quiescent navigation waits.
        selector_timeout_ms: Selector wait after a DOM-parsed navigation.
        network_idle_selector_timeout_ms: Selector wait after a network-idle navigation.
        discovery_timeout_ms: Wait for the secondary provider's result frame.
        scrape_delay_profile: Profile forced on every run (env SCRAPE_DELAY_PROFILE);
            unset means interactive runs use "interactive" and scheduled runs
            use "scheduled".
        delay_profiles: Named same-domain / different-domain delay ranges.
        network_idle_domains: Hosts that render prices only after scripts settle.
        referer_map: Hostname to Referer header value.
        default_referer: Referer for hosts not in referer_map.
        consent_cookies: Cookies that pre-accept consent banners.
        user_agent_profiles: Rotating UA pool with matching client hints.
        site_config_path: JSON file with the known-site selector table.
        ft_markets_base_url: Base URL for generated tearsheet URLs.
        ft_markets_selector: Price selector on generated tearsheet pages.
        fidelity_search_url: Secondary-provider ISIN search URL template.
        discovery_frame_selector: Nested frame holding search results.
        discovery_link_selector: Factsheet link inside the result frame.
        currency_api_url: Exchange rate endpoint.
        base_currency: Currency all rates are quoted against.
        currency_scale_factor: Integer scaling applied to stored rates.
        currency_timeout_sec: HTTP timeout for the rate request.
        store_path: JSON file backing the default scrape store.
        output_dir: Directory for generated reports.
        schedule_enabled: Start the cron scheduler from the CLI.
        schedule_cron: Crontab expression for unattended runs.
        schedule_timezone: Timezone the cron expression is evaluated in.
        run_on_startup_if_missed: Catch up a missed scheduled run at startup.
        startup_delay_minutes: Delay before a catch-up run.
        retry_delay_minutes: Pause between scheduled retry passes.
        retry_max_attempts: Highest attempt number for scheduled retries.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Metadata
    app_name: str = Field(default="PriceScout", description="Application identifier")
    environment: Literal["development", "staging", "production", "test"] = Field(
        default="development", description="Deployment environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Browser Configuration
    headless: bool = Field(default=True, description="Run browser in headless mode")

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Minimum log level"
    )
    log_dir: Path = Field(default=Path("logs"), description="Log output directory")
    log_rotation: str = Field(default="1 week", description="Log rotation interval")
    log_retention: str = Field(default="1 month", description="Log retention period")

    # Timeouts
    navigation_timeout_ms: int = Field(
        default=45000, ge=1000, le=180000, description="DOM-parsed navigation timeout"
    )
    network_idle_timeout_ms: int = Field(
        default=60000, ge=1000, le=180000, description="Network-idle navigation timeout"
    )
    selector_timeout_ms: int = Field(
        default=20000, ge=1000, le=120000, description="Selector wait timeout"
    )
    network_idle_selector_timeout_ms: int = Field(
        default=30000, ge=1000, le=120000, description="Selector wait on network-idle sites"
    )
    discovery_timeout_ms: int = Field(
        default=20000, ge=1000, le=120000, description="Discovery result frame timeout"
    )

    # Politeness
    scrape_delay_profile: str | None = Field(
        default=None, description="Forces one delay profile for every run"
    )
    delay_profiles: dict[str, DelayProfile] = Field(
        default_factory=_default_delay_profiles, description="Named delay profiles"
    )

    # Stealth
    network_idle_domains: list[str] = Field(
        default=["msci.com"], description="Hosts needing network-idle waits"
    )
    referer_map: dict[str, str] = Field(
        default={
            "markets.ft.com": "https://www.google.co.uk/",
            "www.fidelity.co.uk": "https://www.google.co.uk/",
            "www.morningstar.co.uk": "https://www.google.co.uk/",
            "tools.morningstar.co.uk": "https://www.morningstar.co.uk/",
        },
        description="Referer header by hostname",
    )
    default_referer: str = Field(
        default="https://www.google.co.uk/", description="Fallback Referer header"
    )
    consent_cookies: list[ConsentCookie] = Field(
        default_factory=_default_consent_cookies, description="Pre-seeded consent cookies"
    )
    user_agent_profiles: list[UserAgentProfile] = Field(
        default_factory=_default_user_agents, description="User-agent rotation pool"
    )

    # Target Resolution
    site_config_path: Path = Field(
        default=_DEFAULT_SITE_CONFIG, description="Known-site selector table"
    )
    ft_markets_base_url: str = Field(
        default="https://markets.ft.com/data", description="Tearsheet base URL"
    )
    ft_markets_selector: str = Field(
        default="span.mod-ui-data-list__value", description="Tearsheet price selector"
    )
    fidelity_search_url: str = Field(
        default=(
            "https://www.fidelity.co.uk/search/?query={isin}"
            "&host=www.fidelity.co.uk&referrerPageUrl="
        ),
        description="Secondary-provider ISIN search URL",
    )
    discovery_frame_selector: str = Field(
        default="#answers-frame", description="Search result frame selector"
    )
    discovery_link_selector: str = Field(
        default='a[href*="factsheet"]', description="Factsheet link selector"
    )

    # Currency Rates
    currency_api_url: str = Field(
        default="https://api.frankfurter.dev/v1/latest", description="Exchange rate API"
    )
    base_currency: str = Field(default="GBP", min_length=3, max_length=3)
    currency_scale_factor: int = Field(default=10000, ge=1)
    currency_timeout_sec: float = Field(default=30.0, ge=1.0, le=300.0)

    # Storage & Output
    store_path: Path = Field(default=Path("data/pricescout.json"), description="Store file")
    output_dir: Path = Field(default=Path("output"), description="Report output directory")

    # Scheduling
    schedule_enabled: bool = Field(default=False)
    schedule_cron: str = Field(default="0 8 * * 6", description="Crontab expression")
    schedule_timezone: str = Field(default="Europe/London")
    run_on_startup_if_missed: bool = Field(default=True)
    startup_delay_minutes: float = Field(default=10, ge=0)
    retry_delay_minutes: float = Field(default=5, ge=0)
    retry_max_attempts: int = Field(default=5, ge=1, le=5)

    @field_validator("log_dir", "output_dir", "store_path", "site_config_path", mode="before")
    @classmethod
    def ensure_path(cls, value: str | Path) -> Path:
        """Convert string paths to Path objects."""
        return Path(value) if isinstance(value, str) else value

    @field_validator("base_currency")
    @classmethod
    def upper_currency(cls, value: str) -> str:
        return value.upper()

    @field_validator("ft_markets_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        """Generated URLs append path segments with a leading slash."""
        return value.rstrip("/")

    @field_validator("schedule_cron")
    @classmethod
    def validate_cron(cls, value: str) -> str:
        if len(value.split()) != 5:
            raise ValueError(f"Cron expression must have 5 fields, got '{value}'")
        return value

    @model_validator(mode="after")
    def check_profiles(self) -> "GlobalConfig":
        """The interactive profile is the fallback and must always exist."""
        if "interactive" not in self.delay_profiles:
            raise ValueError("delay_profiles must define an 'interactive' profile")
        if not self.user_agent_profiles:
            raise ValueError("user_agent_profiles must not be empty")
        return self


@lru_cache(maxsize=1)
def get_config() -> GlobalConfig:
    """Retrieve the singleton GlobalConfig instance.

    Uses LRU cache to ensure single instantiation across the application lifecycle.

    Returns:
        GlobalConfig: The validated configuration instance.
    """
    return GlobalConfig()
