"""Cron-driven unattended scraping with retries and missed-run catch-up.

A scheduled run is one full scrape followed by up to
``retry_max_attempts - 1`` retry passes over whatever is still failing,
each after ``retry_delay_minutes``. Only one run may be in flight; a cron
tick that fires while a run is still going is skipped.

On start, if ``run_on_startup_if_missed`` is set and the last successful
investment scrape predates the most recent cron fire time (or there has
never been one), a catch-up run is queued ``startup_delay_minutes`` later.

Design Rationale:
    APScheduler's AsyncIOScheduler runs coroutine jobs on the caller's
    event loop, so the orchestrator's browser work never leaves it.
    ``max_instances=1`` and the ``is_running`` flag both guard against
    overlap; the flag also covers the catch-up job and manual triggers.
"""

import asyncio
import re
from datetime import datetime, timedelta
from typing import Any

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from config.settings import GlobalConfig, get_config
from pricescout.logger import get_logger
from pricescout.models import (
    RetryRequest,
    RunState,
    ScheduledRunResult,
    StartedBy,
    TargetType,
)
from pricescout.orchestrator import RunOrchestrator

log = get_logger(__name__)

SCRAPE_JOB_ID = "scheduled_scrape"
CATCH_UP_JOB_ID = "missed_scrape_catch_up"

_CRONTAB_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")
_WEEKDAY_NUMBER = re.compile(r"(?<![/\d])[0-7](?!\d)")


def crontab_day_of_week(field: str) -> str:
    """Translate crontab weekday numbers (0 and 7 are Sunday) to day names.

    APScheduler numbers weekdays from Monday, so numeric crontab fields are
    passed as names instead. Step values such as ``*/2`` are left alone.
    """
    return _WEEKDAY_NUMBER.sub(lambda m: _CRONTAB_WEEKDAYS[int(m.group())], field)


def build_trigger(config: GlobalConfig) -> CronTrigger:
    """Create the cron trigger for the configured expression and timezone."""
    minute, hour, day, month, day_of_week = config.schedule_cron.split()
    return CronTrigger(
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=crontab_day_of_week(day_of_week),
        timezone=config.schedule_timezone,
    )


def is_run_missed(
    trigger: CronTrigger,
    last_success: datetime | None,
    now: datetime,
) -> bool:
    """Whether a cron fire time passed since the last successful scrape.

    Args:
        trigger: Schedule trigger.
        last_success: Timezone-aware time of the last successful investment
            scrape, or None if there has never been one.
        now: Timezone-aware current time.
    """
    if last_success is None:
        return True
    next_due = trigger.get_next_fire_time(None, last_success + timedelta(seconds=1))
    return next_due is not None and next_due <= now


class ScheduledScraper:
    """Owns the cron job and the retry loop for unattended runs.

    Attributes:
        orchestrator: RunOrchestrator executing runs and retries.
        config: GlobalConfig with schedule and retry settings.
        scheduler: AsyncIOScheduler hosting the jobs.
        last_run_result: Outcome of the most recent scheduled run.

    Example:
        scheduled = ScheduledScraper(orchestrator)
        scheduled.start()
        ...
        await scheduled.stop()
    """

    def __init__(
        self,
        orchestrator: RunOrchestrator,
        config: GlobalConfig | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.config = config or get_config()
        self.scheduler = scheduler or AsyncIOScheduler(timezone=self.config.schedule_timezone)
        self.last_run_result: ScheduledRunResult | None = None
        self._job: Job | None = None
        self._running = False
        self._stop = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> bool:
        """Register the cron job and start the scheduler.

        Must be called from within a running event loop.

        Returns:
            False when scheduling is disabled in config, True otherwise.
        """
        if not self.config.schedule_enabled:
            log.info("Scheduled scraping is disabled")
            return False

        trigger = build_trigger(self.config)
        self._stop.clear()
        self._job = self.scheduler.add_job(
            self.execute_run,
            trigger=trigger,
            args=[StartedBy.SCHEDULED],
            id=SCRAPE_JOB_ID,
            name="Scheduled full scrape",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()

        log.info(
            "Scheduled scraping enabled",
            cron=self.config.schedule_cron,
            timezone=self.config.schedule_timezone,
            next_run=self._next_run_iso(),
        )

        if self.config.run_on_startup_if_missed:
            self.check_for_missed_run(trigger)
        return True

    async def stop(self) -> None:
        """Cancel jobs and ask any in-progress retry loop to exit."""
        self._stop.set()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            log.info("Scheduler stopped")
        self._job = None

    def check_for_missed_run(
        self,
        trigger: CronTrigger | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Queue a delayed catch-up run if a scheduled run was missed.

        Returns:
            True if a catch-up run was queued.
        """
        trigger = trigger or build_trigger(self.config)
        now = now or datetime.now(trigger.timezone)
        last_success = self.orchestrator.store.last_successful_attempt(TargetType.INVESTMENT)

        if not is_run_missed(trigger, last_success, now):
            log.info("No missed scrape, last success is up to date", last_success=last_success)
            return False

        run_at = now + timedelta(minutes=self.config.startup_delay_minutes)
        log.info(
            "Missed scrape detected, scheduling catch-up run",
            last_success=last_success.isoformat() if last_success else None,
            run_at=run_at.isoformat(),
        )
        self.scheduler.add_job(
            self.execute_run,
            trigger=DateTrigger(run_date=run_at),
            args=[StartedBy.SCHEDULED],
            id=CATCH_UP_JOB_ID,
            name="Missed scrape catch-up",
            replace_existing=True,
        )
        return True

    async def execute_run(self, started_by: StartedBy = StartedBy.SCHEDULED) -> ScheduledRunResult | None:
        """Run a full scrape, then retry failures until clean or out of attempts.

        Returns:
            The run's result, or None if another run was already in progress.
        """
        if self._running:
            log.warning("Scrape already in progress, skipping")
            return None

        self._running = True
        self._stop.clear()
        max_attempts = self.config.retry_max_attempts
        log.info("Scheduled scrape run starting", started_by=started_by.name)

        try:
            summary = await self.orchestrator.run_full_scrape(started_by=started_by)
            result = ScheduledRunResult(started_by=started_by, initial_summary=summary)

            full_rerun = summary.status == RunState.FAILED
            pending = summary.to_retry_request()
            attempt = 2

            while (
                attempt <= max_attempts
                and not self._stop.is_set()
                and (full_rerun or not pending.is_empty)
            ):
                log.info(
                    "Retry pass scheduled",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    full_rerun=full_rerun,
                    investments=pending.investment_ids,
                    benchmarks=pending.benchmark_ids,
                    retry_currency=pending.retry_currency,
                    delay_minutes=self.config.retry_delay_minutes,
                )
                if await self._wait_or_stop(self.config.retry_delay_minutes * 60):
                    log.info("Retry interrupted by shutdown")
                    break

                if full_rerun:
                    retry = await self.orchestrator.run_full_scrape(
                        started_by=started_by, attempt_number=attempt
                    )
                else:
                    retry = await self.orchestrator.retry_failed_items(
                        pending, attempt_number=attempt, started_by=started_by
                    )

                if retry.status != RunState.FAILED:
                    pending = RetryRequest(
                        investment_ids=retry.failed_investment_ids,
                        benchmark_ids=retry.failed_benchmark_ids,
                        retry_currency=(full_rerun or pending.retry_currency)
                        and not retry.currency_success,
                    )
                    full_rerun = False
                else:
                    summary = retry

                attempt += 1

            result.total_retry_attempts = attempt - 2
            result.final_currency_success = not pending.retry_currency
            result.final_failed_investment_ids = list(pending.investment_ids)
            result.final_failed_benchmark_ids = list(pending.benchmark_ids)
            if full_rerun:
                result.error = summary.error

        except Exception as exc:
            log.exception("Scheduled scrape run failed", error=str(exc))
            result = ScheduledRunResult(started_by=started_by, error=str(exc))

        finally:
            self._running = False

        self.last_run_result = result
        log.info(
            "Scheduled scrape run finished",
            all_succeeded=result.all_succeeded,
            retry_attempts=result.total_retry_attempts,
            still_failing_investments=result.final_failed_investment_ids,
            still_failing_benchmarks=result.final_failed_benchmark_ids,
            currency_success=result.final_currency_success,
            error=result.error,
        )
        return result

    def status(self) -> dict[str, Any]:
        """Current scheduler state for the CLI and operators."""
        return {
            "enabled": self.config.schedule_enabled,
            "cron_expression": self.config.schedule_cron,
            "timezone": self.config.schedule_timezone,
            "next_run": self._next_run_iso(),
            "is_currently_running": self._running,
            "last_run_result": (
                self.last_run_result.model_dump(mode="json") if self.last_run_result else None
            ),
        }

    async def _wait_or_stop(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if a stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    def _next_run_iso(self) -> str | None:
        if self._job is None:
            return None
        next_run = getattr(self._job, "next_run_time", None)
        return next_run.isoformat() if next_run else None
