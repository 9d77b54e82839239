"""Domain models for targets, resolved configs, results and run summaries.

All models are Pydantic v2 so that values crossing the storage boundary
(targets read from the store, attempts written to it) are validated on the
way in. Transient objects (ScrapeResult, RunSummary) use the same models so
they serialise cleanly into the JSON log, the streaming API and reports.

Design Rationale:
    ScrapeAttempt and WriteBackCommand are frozen: an attempt is an audit
    record and a write-back is a decision handed to the caller, neither may
    be altered after creation.
"""

from datetime import UTC, datetime
from enum import IntEnum, StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TargetType(StrEnum):
    """Kind of value a target yields."""

    INVESTMENT = "investment"
    BENCHMARK = "benchmark"
    CURRENCY = "currency"


class StartedBy(IntEnum):
    """Who triggered a scrape, stored as an integer in attempt history."""

    INTERACTIVE = 0
    SCHEDULED = 1
    SANDBOX = 2


class WaitStrategy(StrEnum):
    """Navigation completion signal, named after Playwright's wait_until values."""

    DOM_CONTENT_LOADED = "domcontentloaded"
    NETWORK_IDLE = "networkidle"


class ConfigSource(StrEnum):
    """Provenance of a resolved URL or selector, shown to operators."""

    MANUAL = "manual"
    PUBLIC_ID = "public_id"
    SITE_CONFIG = "site_config"
    DISCOVERED = "discovered"
    NONE = "none"


class ErrorCode(StrEnum):
    """Failure taxonomy for a single scrape attempt."""

    NO_URL = "NO_URL"
    NO_SELECTOR = "NO_SELECTOR"
    NAVIGATION_TIMEOUT = "NAVIGATION_TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    BROWSER_ERROR = "BROWSER_ERROR"
    SELECTOR_NOT_FOUND = "SELECTOR_NOT_FOUND"
    SELECTOR_TIMEOUT = "SELECTOR_TIMEOUT"
    PARSE_ERROR = "PARSE_ERROR"
    API_ERROR = "API_ERROR"
    NO_RATE = "NO_RATE"

    @property
    def is_config_gap(self) -> bool:
        """Missing configuration cannot be fixed by retrying."""
        return self in (ErrorCode.NO_URL, ErrorCode.NO_SELECTOR)


class RunState(StrEnum):
    """Orchestrator state machine. COMPLETED and FAILED are terminal."""

    START = "start"
    FETCH_RATES = "fetch_rates"
    SCRAPE_PRICES = "scrape_prices"
    SCRAPE_BENCHMARKS = "scrape_benchmarks"
    COMPLETED = "completed"
    FAILED = "failed"


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class ScrapeTarget(BaseModel):
    """A logical thing to fetch a value for.

    Attributes:
        target_type: Investment (price), benchmark (index level) or currency.
        id: Storage identity, unique per target type.
        description: Human-readable label used in logs and reports.
        url: Manually configured page URL.
        selector: Manually configured CSS selector.
        public_id: ISIN, EXCHANGE:TICKER or TICKER:EXCHANGE:CURRENCY.
        currency_code: ISO currency of the instrument (GBX for pence).
        last_value: Last successfully stored normalised value.
        last_scraped_at: When last_value was captured.
    """

    target_type: TargetType
    id: int = Field(..., ge=1)
    description: str = ""
    url: str | None = None
    selector: str | None = None
    public_id: str | None = None
    currency_code: str = "GBP"
    last_value: float | None = None
    last_scraped_at: datetime | None = None

    @field_validator("url", "selector", "public_id", mode="before")
    @classmethod
    def strip_blank(cls, value: Any) -> Any:
        """Treat empty or whitespace-only strings as unset."""
        return _blank_to_none(value)

    @field_validator("currency_code", mode="before")
    @classmethod
    def upper_currency(cls, value: Any) -> Any:
        """Normalise currency codes to upper case."""
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("public_id", mode="after")
    @classmethod
    def upper_public_id(cls, value: str | None) -> str | None:
        return value.upper() if value else value


class ResolvedScrapeConfig(BaseModel):
    """Effective URL, selector and wait strategy for one target at scrape time.

    Recomputed on every run so that a manual override always wins over a
    generated or discovered value.
    """

    url: str | None = None
    selector: str | None = None
    wait_strategy: WaitStrategy = WaitStrategy.DOM_CONTENT_LOADED
    url_source: ConfigSource = ConfigSource.NONE
    selector_source: ConfigSource = ConfigSource.NONE
    site_name: str | None = None
    assume_minor_unit: bool = True

    @property
    def is_scrapeable(self) -> bool:
        return bool(self.url and self.selector)


class WriteBackCommand(BaseModel):
    """Instruction to persist a discovered URL onto a target.

    The selector is left unset so the site-pattern table resolves it on
    future runs.
    """

    model_config = ConfigDict(frozen=True)

    target_type: TargetType
    target_id: int
    url: str
    selector: str | None = None


class ScrapeAttempt(BaseModel):
    """Immutable audit record of one try at one target."""

    model_config = ConfigDict(frozen=True)

    target_type: TargetType
    target_id: int | None = None
    attempted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    started_by: StartedBy = StartedBy.INTERACTIVE
    attempt_number: int = Field(default=1, ge=1, le=5)
    success: bool
    error_code: ErrorCode | None = None
    error_message: str | None = None


class ScrapeResult(BaseModel):
    """Transient outcome of a single extraction.

    Attributes:
        success: Whether a value was extracted, parsed and accepted.
        raw_value: Text content of the matched element.
        parsed_value: Number parsed from raw_value.
        unit_is_minor: Whether parsed_value is in pence/cents.
        normalized_value: Value stored (minor units for prices).
        error: Human-readable failure chain, empty on success.
        error_code: Classified failure, None on success.
        fallback_used: Whether the alternate URL or discovery produced the value.
        url: URL the value (or final failure) came from.
        write_back: Discovered URL to persist, if discovery succeeded.
    """

    target_type: TargetType
    target_id: int
    description: str = ""
    success: bool = False
    raw_value: str = ""
    parsed_value: float | None = None
    unit_is_minor: bool = False
    normalized_value: float | None = None
    error: str = ""
    error_code: ErrorCode | None = None
    fallback_used: bool = False
    url: str | None = None
    selector: str | None = None
    currency_code: str | None = None
    write_back: WriteBackCommand | None = None


class ScrapeOptions(BaseModel):
    """Per-call settings shared by every target of a run.

    Attributes:
        started_by: Trigger recorded in attempt history. SANDBOX runs record
            attempts but never persist values or write-backs.
        attempt_number: 1 for the first pass, 2-5 for retries.
        scrape_time: Timestamp shared by every value captured in the run.
    """

    started_by: StartedBy = StartedBy.INTERACTIVE
    attempt_number: int = Field(default=1, ge=1, le=5)
    scrape_time: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def persists(self) -> bool:
        return self.started_by != StartedBy.SANDBOX

    @property
    def observed_date(self) -> str:
        return self.scrape_time.strftime("%Y-%m-%d")

    @property
    def observed_time(self) -> str:
        return self.scrape_time.strftime("%H:%M:%S")


class DelayRange(BaseModel):
    """Inclusive millisecond bounds for a randomised pause."""

    min_ms: int = Field(..., ge=0)
    max_ms: int = Field(..., ge=0)

    @model_validator(mode="after")
    def check_order(self) -> "DelayRange":
        if self.min_ms > self.max_ms:
            raise ValueError(f"min_ms ({self.min_ms}) must not exceed max_ms ({self.max_ms})")
        return self


class DelayProfile(BaseModel):
    """Named pair of delay ranges for same-host and cross-host navigation."""

    name: str
    same_domain: DelayRange
    different_domain: DelayRange


class UserAgentProfile(BaseModel):
    """A browser identity whose client-hint headers agree with its UA string."""

    user_agent: str
    major_version: str
    platform: str


class ConsentCookie(BaseModel):
    """Cookie pre-seeded into every context to skip consent interstitials."""

    name: str
    value: str
    domain: str
    path: str = "/"


class CurrencyRate(BaseModel):
    """One exchange rate against the base currency."""

    currency_id: int
    code: str
    rate: float
    scaled_rate: int


class CurrencyFetchResult(BaseModel):
    """Outcome of one exchange rate fetch covering all currencies."""

    success: bool = False
    rate_date: str | None = None
    rates: list[CurrencyRate] = Field(default_factory=list)
    missing_codes: list[str] = Field(default_factory=list)
    message: str = ""
    error: str = ""
    error_code: ErrorCode | None = None


class RetryRequest(BaseModel):
    """Failed items from a previous run to try again."""

    investment_ids: list[int] = Field(default_factory=list)
    benchmark_ids: list[int] = Field(default_factory=list)
    retry_currency: bool = False

    @property
    def is_empty(self) -> bool:
        return not (self.investment_ids or self.benchmark_ids or self.retry_currency)


class RunSummary(BaseModel):
    """Aggregate outcome of one full run or one retry pass."""

    status: RunState = RunState.START
    scrape_time: datetime = Field(default_factory=lambda: datetime.now(UTC))
    started_by: StartedBy = StartedBy.INTERACTIVE
    attempt_number: int = 1
    delay_profile: str = "interactive"
    currency_success: bool = False
    currency_message: str = ""
    price_success_count: int = 0
    price_fail_count: int = 0
    benchmark_success_count: int = 0
    benchmark_fail_count: int = 0
    failed_investment_ids: list[int] = Field(default_factory=list)
    failed_benchmark_ids: list[int] = Field(default_factory=list)
    relaunch_count: int = 0
    error: str | None = None
    results: list[ScrapeResult] = Field(default_factory=list)

    def add_result(self, result: ScrapeResult) -> None:
        """Count a result and track its id if a retry could fix it."""
        self.results.append(result)
        retryable = result.error_code is None or not result.error_code.is_config_gap

        if result.target_type == TargetType.INVESTMENT:
            if result.success:
                self.price_success_count += 1
            else:
                self.price_fail_count += 1
                if retryable:
                    self.failed_investment_ids.append(result.target_id)
        elif result.target_type == TargetType.BENCHMARK:
            if result.success:
                self.benchmark_success_count += 1
            else:
                self.benchmark_fail_count += 1
                if retryable:
                    self.failed_benchmark_ids.append(result.target_id)

    @property
    def has_retryable_failures(self) -> bool:
        return bool(
            self.failed_investment_ids
            or self.failed_benchmark_ids
            or not self.currency_success
        )

    def to_retry_request(self) -> RetryRequest:
        return RetryRequest(
            investment_ids=list(self.failed_investment_ids),
            benchmark_ids=list(self.failed_benchmark_ids),
            retry_currency=not self.currency_success,
        )


class RunEvent(BaseModel):
    """One item on a run's output stream."""

    kind: Literal["currency", "result", "summary", "error"]
    result: ScrapeResult | None = None
    currency: CurrencyFetchResult | None = None
    summary: RunSummary | None = None
    message: str = ""


class ScheduledRunResult(BaseModel):
    """Outcome of one scheduled run including its retry passes."""

    completed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    started_by: StartedBy = StartedBy.SCHEDULED
    initial_summary: RunSummary | None = None
    final_failed_investment_ids: list[int] = Field(default_factory=list)
    final_failed_benchmark_ids: list[int] = Field(default_factory=list)
    final_currency_success: bool = True
    total_retry_attempts: int = 0
    error: str | None = None

    @property
    def all_succeeded(self) -> bool:
        return (
            self.error is None
            and not self.final_failed_investment_ids
            and not self.final_failed_benchmark_ids
            and self.final_currency_success
        )
