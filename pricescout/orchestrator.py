"""Run orchestration: full scrapes, targeted retries and result streams.

A run moves through a fixed sequence of states:

    START -> FETCH_RATES -> SCRAPE_PRICES -> SCRAPE_BENCHMARKS -> COMPLETED
                                                              \\-> FAILED

Exchange rates are always fetched first so every price in the run has a
contemporaneous rate, and every value shares the run's single scrape time.

Resource model:
    One browser per run, launched lazily before the first browser target and
    closed in a ``finally`` block however the run ends (completion, fatal
    error, or cancellation of a stream consumer). Targets are processed
    strictly one after another so the delay scheduler's politeness gaps
    hold. Before each target the browser's liveness is checked; a dead
    browser is relaunched and domain tracking starts afresh. A browser that
    dies while a target is in flight is relaunched once and the same target
    tried again.

Failure model:
    Per-target failures are data in the summary. A browser that cannot be
    launched at all stops the run: the summary is marked FAILED and still
    reports everything completed before the failure.
"""

import asyncio
import contextlib
import inspect
import random
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime

from config.settings import GlobalConfig, get_config
from pricescout.browser import StealthSessionManager
from pricescout.currency import CurrencyRateFetcher
from pricescout.delay import DelayScheduler, select_delay_profile
from pricescout.exceptions import (
    BrowserDisconnectedError,
    BrowserLaunchError,
    PriceScoutError,
)
from pricescout.extractor import BaseValueScraper
from pricescout.fallback import FactsheetDiscovery
from pricescout.logger import get_logger
from pricescout.models import (
    CurrencyFetchResult,
    DelayProfile,
    ErrorCode,
    RetryRequest,
    RunEvent,
    RunState,
    RunSummary,
    ScrapeOptions,
    ScrapeResult,
    ScrapeTarget,
    StartedBy,
    TargetType,
)
from pricescout.resolver import TargetResolver
from pricescout.scraper import BenchmarkScraper, PriceScraper
from pricescout.sites import SiteRegistry
from pricescout.storage import ScrapeStore

log = get_logger(__name__)

EventHook = Callable[[RunEvent], Awaitable[None] | None]

_SCRAPER_CLASSES: dict[TargetType, type[BaseValueScraper]] = {
    TargetType.INVESTMENT: PriceScraper,
    TargetType.BENCHMARK: BenchmarkScraper,
}

_PHASES = (
    (RunState.SCRAPE_PRICES, TargetType.INVESTMENT),
    (RunState.SCRAPE_BENCHMARKS, TargetType.BENCHMARK),
)


class RunOrchestrator:
    """Sequences currency, price and benchmark scraping for one store.

    Attributes:
        config: GlobalConfig instance.
        store: ScrapeStore with targets, values and attempt history.
        sites: Known-site table shared by resolver and discovery.
        resolver: TargetResolver used for filtering and delay domains.
        currency_fetcher: Exchange rate fetcher.

    Example:
        orchestrator = RunOrchestrator(JsonFileStore(config.store_path))
        summary = await orchestrator.run_full_scrape(started_by=StartedBy.SCHEDULED)
        if summary.has_retryable_failures:
            await orchestrator.retry_failed_items(summary.to_retry_request())
    """

    def __init__(
        self,
        store: ScrapeStore,
        config: GlobalConfig | None = None,
        sites: SiteRegistry | None = None,
        resolver: TargetResolver | None = None,
        currency_fetcher: CurrencyRateFetcher | None = None,
        sessions_factory: Callable[[], StealthSessionManager] | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or get_config()
        self.store = store
        self.sites = sites if sites is not None else SiteRegistry.from_file(
            self.config.site_config_path
        )
        self.resolver = resolver or TargetResolver(self.sites, self.config)
        self.currency_fetcher = currency_fetcher or CurrencyRateFetcher(store, self.config)
        self._sessions_factory = sessions_factory or (lambda: StealthSessionManager(self.config))
        self._rng = rng
        self._sleep = sleep

    def resolve_delay_profile(
        self,
        started_by: StartedBy,
        requested: str | None = None,
    ) -> DelayProfile:
        """Pick the delay profile for a run.

        A configured ``scrape_delay_profile`` is forced on every run; otherwise
        an explicitly requested profile is used, then the trigger's default.
        Unknown names fall back to ``interactive``.
        """
        name = (
            self.config.scrape_delay_profile
            or requested
            or ("scheduled" if started_by == StartedBy.SCHEDULED else "interactive")
        )
        return select_delay_profile(name, self.config.delay_profiles)

    def scrapeable(self, target_type: TargetType) -> list[ScrapeTarget]:
        """Targets of one type for which a URL can currently be resolved."""
        return [
            target
            for target in self.store.list_scrapeable(target_type)
            if self.resolver.is_scrapeable(target)
        ]

    async def run_full_scrape(
        self,
        started_by: StartedBy = StartedBy.INTERACTIVE,
        attempt_number: int = 1,
        delay_profile: str | None = None,
        on_event: EventHook | None = None,
    ) -> RunSummary:
        """Scrape rates, then every scrapeable price, then every benchmark.

        Args:
            started_by: Trigger recorded with every attempt.
            attempt_number: Attempt number recorded with every attempt.
            delay_profile: Requested delay profile name.
            on_event: Called with a RunEvent after the rate fetch, after every
                target, and once with the final summary.

        Returns:
            RunSummary; status is FAILED only when the browser could not be
            launched or storage failed.
        """
        plan = {target_type: self.scrapeable(target_type) for _, target_type in _PHASES}
        options = ScrapeOptions(started_by=started_by, attempt_number=attempt_number)
        profile = self.resolve_delay_profile(started_by, delay_profile)

        log.info(
            "Full scrape started",
            started_by=started_by.name,
            attempt_number=attempt_number,
            delay_profile=profile.name,
            investments=len(plan[TargetType.INVESTMENT]),
            benchmarks=len(plan[TargetType.BENCHMARK]),
        )
        return await self._execute(plan, True, options, profile, on_event)

    async def retry_failed_items(
        self,
        request: RetryRequest,
        attempt_number: int = 2,
        started_by: StartedBy = StartedBy.INTERACTIVE,
        delay_profile: str | None = None,
        on_event: EventHook | None = None,
    ) -> RunSummary:
        """Re-scrape only the given failed items.

        IDs that are no longer scrapeable are skipped without error. A
        currency retry re-runs the whole rate fetch.
        """
        investment_ids = set(request.investment_ids)
        benchmark_ids = set(request.benchmark_ids)
        plan = {
            TargetType.INVESTMENT: [
                t for t in self.scrapeable(TargetType.INVESTMENT) if t.id in investment_ids
            ],
            TargetType.BENCHMARK: [
                t for t in self.scrapeable(TargetType.BENCHMARK) if t.id in benchmark_ids
            ],
        }
        options = ScrapeOptions(started_by=started_by, attempt_number=attempt_number)
        profile = self.resolve_delay_profile(started_by, delay_profile)

        log.info(
            "Retry pass started",
            attempt_number=attempt_number,
            retry_currency=request.retry_currency,
            investments=[t.id for t in plan[TargetType.INVESTMENT]],
            benchmarks=[t.id for t in plan[TargetType.BENCHMARK]],
        )
        return await self._execute(plan, request.retry_currency, options, profile, on_event)

    async def fetch_rates(self, options: ScrapeOptions | None = None) -> CurrencyFetchResult:
        """Fetch exchange rates outside a full run."""
        return await self.currency_fetcher.fetch(options)

    async def scrape_one(
        self,
        target_type: TargetType,
        target_id: int,
        started_by: StartedBy = StartedBy.INTERACTIVE,
        attempt_number: int = 1,
    ) -> ScrapeResult:
        """Scrape a single price or benchmark with a browser of its own.

        Raises:
            ValueError: For currency targets, which are fetched as a batch.
        """
        if target_type not in _SCRAPER_CLASSES:
            raise ValueError(f"scrape_one does not support {target_type.value} targets")

        target = self.store.get_target(target_type, target_id)
        if target is None:
            return ScrapeResult(
                target_type=target_type,
                target_id=target_id,
                error=f"No {target_type.value} with ID {target_id}",
            )

        options = ScrapeOptions(started_by=started_by, attempt_number=attempt_number)
        sessions = self._sessions_factory()
        scraper = self._build_scraper(target_type, sessions)

        try:
            await sessions.launch()
            return await scraper.scrape(target, options)
        except BrowserLaunchError as exc:
            return scraper.failed_result(target, options, ErrorCode.BROWSER_ERROR, exc.message)
        except BrowserDisconnectedError as exc:
            return scraper.failed_result(target, options, ErrorCode.BROWSER_ERROR, exc.message)
        finally:
            await sessions.close()

    async def stream_full_scrape(
        self,
        started_by: StartedBy = StartedBy.INTERACTIVE,
        delay_profile: str | None = None,
    ) -> AsyncIterator[RunEvent]:
        """Yield run events as they happen, ending with the summary event.

        Closing the iterator early cancels the run; the browser is closed by
        the run's own cleanup.
        """
        queue: asyncio.Queue[RunEvent | None] = asyncio.Queue()

        async def runner() -> None:
            try:
                await self.run_full_scrape(
                    started_by=started_by,
                    delay_profile=delay_profile,
                    on_event=queue.put,
                )
            except Exception as exc:
                log.exception("Streamed run crashed", error=str(exc))
                await queue.put(RunEvent(kind="error", message=str(exc)))
            finally:
                queue.put_nowait(None)

        task = asyncio.create_task(runner())
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            if not task.done():
                log.warning("Stream consumer went away, cancelling run")
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    def _build_scraper(
        self,
        target_type: TargetType,
        sessions: StealthSessionManager,
    ) -> BaseValueScraper:
        discovery = FactsheetDiscovery(sessions, self.sites, self.config)
        return _SCRAPER_CLASSES[target_type](
            sessions,
            self.resolver,
            self.store,
            discovery=discovery,
            config=self.config,
        )

    async def _execute(
        self,
        plan: dict[TargetType, list[ScrapeTarget]],
        fetch_rates: bool,
        options: ScrapeOptions,
        profile: DelayProfile,
        on_event: EventHook | None,
    ) -> RunSummary:
        summary = RunSummary(
            scrape_time=options.scrape_time,
            started_by=options.started_by,
            attempt_number=options.attempt_number,
            delay_profile=profile.name,
            currency_success=not fetch_rates,
        )
        sessions = self._sessions_factory()
        scheduler = DelayScheduler(profile, rng=self._rng, sleep=self._sleep)

        try:
            if fetch_rates:
                summary.status = RunState.FETCH_RATES
                currency = await self.currency_fetcher.fetch(options)
                summary.currency_success = currency.success
                summary.currency_message = currency.message or currency.error
                await _emit(on_event, RunEvent(kind="currency", currency=currency))

            for state, target_type in _PHASES:
                summary.status = state
                targets = plan.get(target_type, [])
                if not targets:
                    continue

                scraper = self._build_scraper(target_type, sessions)
                for target in targets:
                    result = await self._scrape_target(
                        scraper, sessions, scheduler, target, options, summary
                    )
                    summary.add_result(result)
                    await _emit(on_event, RunEvent(kind="result", result=result))

            summary.status = RunState.COMPLETED

        except BrowserLaunchError as exc:
            summary.status = RunState.FAILED
            summary.error = exc.message
            log.critical("Browser could not be launched, run aborted", error=exc.message)

        except PriceScoutError as exc:
            summary.status = RunState.FAILED
            summary.error = exc.message
            log.critical("Run aborted", error_type=type(exc).__name__, error=exc.message)

        finally:
            await sessions.close()

        log.info(
            "Run finished",
            status=summary.status.value,
            currency_success=summary.currency_success,
            price_success=summary.price_success_count,
            price_failed=summary.price_fail_count,
            benchmark_success=summary.benchmark_success_count,
            benchmark_failed=summary.benchmark_fail_count,
            relaunches=summary.relaunch_count,
            elapsed_sec=round((datetime.now(UTC) - summary.scrape_time).total_seconds(), 1),
        )
        await _emit(on_event, RunEvent(kind="summary", summary=summary))
        return summary

    async def _ensure_browser(
        self,
        sessions: StealthSessionManager,
        scheduler: DelayScheduler,
        summary: RunSummary,
    ) -> None:
        if sessions.is_alive():
            return
        if sessions.launch_count == 0:
            await sessions.launch()
            return

        log.warning("Browser is no longer alive, relaunching")
        await sessions.relaunch()
        summary.relaunch_count += 1
        scheduler.reset()

    async def _scrape_target(
        self,
        scraper: BaseValueScraper,
        sessions: StealthSessionManager,
        scheduler: DelayScheduler,
        target: ScrapeTarget,
        options: ScrapeOptions,
        summary: RunSummary,
    ) -> ScrapeResult:
        await self._ensure_browser(sessions, scheduler, summary)
        url = self.resolver.resolve(target).url
        await scheduler.pause_before(url)

        try:
            return await scraper.scrape(target, options)
        except BrowserDisconnectedError as exc:
            log.warning(
                "Browser died mid-target, relaunching and retrying",
                target_type=target.target_type.value,
                target_id=target.id,
                reason=exc.message,
            )

        await sessions.relaunch()
        summary.relaunch_count += 1
        scheduler.reset()
        await scheduler.pause_before(url)

        try:
            return await scraper.scrape(target, options)
        except BrowserDisconnectedError as exc:
            return scraper.failed_result(target, options, ErrorCode.BROWSER_ERROR, exc.message)


async def _emit(hook: EventHook | None, event: RunEvent) -> None:
    if hook is None:
        return
    outcome = hook(event)
    if inspect.isawaitable(outcome):
        await outcome
