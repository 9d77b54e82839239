"""Exchange rate fetching from the Frankfurter API.

All rates are captured in a single HTTP request (``base=GBP`` plus every
non-base currency in the store), so a currency "retry" simply repeats the
whole fetch. Rates are stored as integers scaled by ``currency_scale_factor``
to avoid float drift in the store.

No browser is involved: the API is public and unauthenticated, so a plain
``httpx.AsyncClient`` is enough.
"""

import httpx
from pydantic import BaseModel, ValidationError

from config.settings import GlobalConfig, get_config
from pricescout.exceptions import CurrencyFetchError
from pricescout.logger import get_logger
from pricescout.models import (
    CurrencyFetchResult,
    CurrencyRate,
    ErrorCode,
    ScrapeAttempt,
    ScrapeOptions,
    ScrapeTarget,
    TargetType,
)
from pricescout.storage import AttemptRecorder, ScrapeStore

log = get_logger(__name__)


class RatesPayload(BaseModel):
    """Shape of a Frankfurter latest-rates response."""

    date: str | None = None
    rates: dict[str, float] = {}


def scale_rate(rate: float, factor: int) -> int:
    """Convert a decimal rate to its stored integer form."""
    return int(round(rate * factor))


class CurrencyRateFetcher:
    """Fetches and stores exchange rates for every non-base currency.

    Attributes:
        config: GlobalConfig with API URL, base currency and scale factor.
        store: ScrapeStore providing currencies and receiving rates.
        client: Optional shared httpx.AsyncClient (one is created per fetch
            otherwise).
    """

    def __init__(
        self,
        store: ScrapeStore,
        config: GlobalConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or get_config()
        self.store = store
        self.client = client
        self.recorder = AttemptRecorder(store)

    async def fetch(self, options: ScrapeOptions | None = None) -> CurrencyFetchResult:
        """Fetch today's rates, store them and record one attempt per currency.

        Never raises for API or network failures; they are reported in the
        returned result.
        """
        options = options or ScrapeOptions()
        base = self.config.base_currency
        currencies = [c for c in self.store.list_currencies() if c.currency_code != base]

        if not currencies:
            return CurrencyFetchResult(
                success=True,
                message=f"No non-{base} currencies to fetch rates for",
            )

        try:
            payload = await self._request([c.currency_code for c in currencies])
        except CurrencyFetchError as exc:
            log.error("Exchange rate fetch failed", error=exc.reason)
            result = CurrencyFetchResult(
                success=False,
                message="Failed to fetch exchange rates",
                error=exc.reason,
                error_code=ErrorCode.API_ERROR,
            )
            for currency in currencies:
                self._record(currency, options, False, ErrorCode.API_ERROR, exc.reason)
            return result

        rate_date = payload.date or options.observed_date
        api_rates = payload.rates

        stored: list[CurrencyRate] = []
        missing: list[str] = []

        for currency in currencies:
            decimal_rate = api_rates.get(currency.currency_code)
            if decimal_rate is None:
                missing.append(currency.currency_code)
                self._record(
                    currency,
                    options,
                    False,
                    ErrorCode.NO_RATE,
                    f"No rate returned for {currency.currency_code}",
                )
                continue

            scaled = scale_rate(decimal_rate, self.config.currency_scale_factor)
            if options.persists:
                self.store.upsert_rate(currency.id, rate_date, scaled)

            stored.append(
                CurrencyRate(
                    currency_id=currency.id,
                    code=currency.currency_code,
                    rate=decimal_rate,
                    scaled_rate=scaled,
                )
            )
            self._record(currency, options, True)

        message = (
            f"Fetched {len(stored)} exchange rate{'' if len(stored) == 1 else 's'} for {rate_date}"
        )
        if missing:
            message += f". No rate available for: {', '.join(missing)}"

        log.info("Exchange rates fetched", rate_date=rate_date, stored=len(stored), missing=missing)

        return CurrencyFetchResult(
            success=True,
            rate_date=rate_date,
            rates=stored,
            missing_codes=missing,
            message=message,
        )

    async def _request(self, codes: list[str]) -> RatesPayload:
        url = self.config.currency_api_url
        params = {"base": self.config.base_currency, "symbols": ",".join(codes)}

        try:
            if self.client is not None:
                response = await self.client.get(url, params=params)
            else:
                async with httpx.AsyncClient(timeout=self.config.currency_timeout_sec) as client:
                    response = await client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise CurrencyFetchError(url, f"Failed to connect to the exchange rate API: {exc}") from exc

        if response.status_code >= 400:
            raise CurrencyFetchError(
                url,
                f"Exchange rate API returned an error (HTTP {response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise CurrencyFetchError(url, f"Failed to parse exchange rate response: {exc}") from exc

        try:
            return RatesPayload.model_validate(payload)
        except ValidationError as exc:
            raise CurrencyFetchError(
                url, f"Unexpected exchange rate response: {exc.error_count()} invalid field(s)"
            ) from exc

    def _record(
        self,
        currency: ScrapeTarget,
        options: ScrapeOptions,
        success: bool,
        error_code: ErrorCode | None = None,
        message: str | None = None,
    ) -> None:
        self.recorder.record(
            ScrapeAttempt(
                target_type=TargetType.CURRENCY,
                target_id=currency.id,
                started_by=options.started_by,
                attempt_number=options.attempt_number,
                success=success,
                error_code=error_code,
                error_message=message,
            )
        )
