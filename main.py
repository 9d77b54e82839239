"""PriceScout Entry Point.

This module is the bootstrap and command dispatch layer. It contains no
scraping logic; everything functional lives in the ``pricescout`` package.

Responsibilities:
    1. Load and validate configuration
    2. Initialize logging infrastructure (fail-fast on error)
    3. Dispatch the requested command against the JSON store
    4. Handle top-level exceptions with graceful shutdown

Usage:
    python main.py run [--sandbox] [--delay-profile scheduled] [--report]
    python main.py retry --investments 3,7 --benchmarks 2 --currency
    python main.py scrape-one investment 3
    python main.py rates
    python main.py schedule
    python main.py history --type investment --failed --limit 20
"""

import argparse
import asyncio
import sys
from typing import NoReturn

from loguru import logger

from config.settings import GlobalConfig, get_config
from pricescout.exceptions import LoggingInitializationError, PriceScoutError
from pricescout.logger import configure_logging
from pricescout.models import RetryRequest, RunState, RunSummary, StartedBy, TargetType


def _id_list(value: str) -> list[int]:
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected comma-separated IDs, got '{value}'") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pricescout", description="Market data scraper")
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Fetch rates, then scrape every price and benchmark")
    run.add_argument("--sandbox", action="store_true", help="Scrape without storing values")
    run.add_argument("--delay-profile", default=None, help="Delay profile name")
    run.add_argument("--report", action="store_true", help="Write Excel and HTML reports")

    retry = commands.add_parser("retry", help="Re-scrape specific failed items")
    retry.add_argument("--investments", type=_id_list, default=[])
    retry.add_argument("--benchmarks", type=_id_list, default=[])
    retry.add_argument("--currency", action="store_true", help="Re-fetch exchange rates")
    retry.add_argument("--attempt", type=int, default=2, choices=range(2, 6))
    retry.add_argument("--delay-profile", default=None)

    one = commands.add_parser("scrape-one", help="Scrape a single target")
    one.add_argument("target_type", choices=[TargetType.INVESTMENT.value, TargetType.BENCHMARK.value])
    one.add_argument("target_id", type=int)
    one.add_argument("--sandbox", action="store_true")

    commands.add_parser("rates", help="Fetch exchange rates only")
    commands.add_parser("schedule", help="Run the cron scheduler until interrupted")

    history = commands.add_parser("history", help="Show recent scrape attempts")
    history.add_argument("--type", dest="target_type", choices=[t.value for t in TargetType])
    history.add_argument("--failed", action="store_true", help="Only failed attempts")
    history.add_argument("--limit", type=int, default=50)

    return parser


def _validate_startup_requirements(config: GlobalConfig) -> None:
    """Fail fast if the store directory cannot be created."""
    try:
        config.store_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.critical(
            "Failed to create store directory",
            store_path=str(config.store_path),
            error=str(exc),
        )
        sys.exit(1)

    logger.debug(
        "Startup validation complete",
        store_path=str(config.store_path),
        site_config_path=str(config.site_config_path),
    )


def _log_summary(summary: RunSummary) -> None:
    logger.info(
        "Run summary",
        status=summary.status.value,
        currency=summary.currency_message,
        prices=f"{summary.price_success_count}/{summary.price_success_count + summary.price_fail_count}",
        benchmarks=(
            f"{summary.benchmark_success_count}/"
            f"{summary.benchmark_success_count + summary.benchmark_fail_count}"
        ),
        failed_investment_ids=summary.failed_investment_ids,
        failed_benchmark_ids=summary.failed_benchmark_ids,
    )
    for result in summary.results:
        if not result.success:
            logger.warning(
                "Target failed",
                target_type=result.target_type.value,
                target_id=result.target_id,
                description=result.description,
                error_code=result.error_code.value if result.error_code else None,
                error=result.error,
            )


async def _run_command(args: argparse.Namespace, config: GlobalConfig) -> int:
    """Execute one CLI command.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    from pricescout.orchestrator import RunOrchestrator
    from pricescout.reporter import RunReportGenerator
    from pricescout.scheduler import ScheduledScraper
    from pricescout.storage import JsonFileStore

    store = JsonFileStore(config.store_path)
    orchestrator = RunOrchestrator(store, config)

    logger.info(
        "Command started",
        command=args.command,
        app_name=config.app_name,
        environment=config.environment,
    )

    if args.command == "run":
        started_by = StartedBy.SANDBOX if args.sandbox else StartedBy.INTERACTIVE
        summary = await orchestrator.run_full_scrape(
            started_by=started_by, delay_profile=args.delay_profile
        )
        _log_summary(summary)
        if args.report and summary.results:
            reports = RunReportGenerator(config).generate_all(summary)
            logger.info(
                "Reports generated successfully",
                excel_path=str(reports["excel"]),
                dashboard_path=str(reports["dashboard"]),
            )
        return 1 if summary.status == RunState.FAILED else 0

    if args.command == "retry":
        request = RetryRequest(
            investment_ids=args.investments,
            benchmark_ids=args.benchmarks,
            retry_currency=args.currency,
        )
        if request.is_empty:
            logger.warning("Nothing to retry")
            return 0
        summary = await orchestrator.retry_failed_items(
            request, attempt_number=args.attempt, delay_profile=args.delay_profile
        )
        _log_summary(summary)
        return 1 if summary.status == RunState.FAILED else 0

    if args.command == "scrape-one":
        started_by = StartedBy.SANDBOX if args.sandbox else StartedBy.INTERACTIVE
        result = await orchestrator.scrape_one(
            TargetType(args.target_type), args.target_id, started_by=started_by
        )
        logger.info("Scrape result", **result.model_dump(mode="json", exclude={"write_back"}))
        return 0 if result.success else 1

    if args.command == "rates":
        currency = await orchestrator.fetch_rates()
        logger.info("Exchange rates", success=currency.success, message=currency.message or currency.error)
        return 0 if currency.success else 1

    if args.command == "schedule":
        scheduled = ScheduledScraper(orchestrator, config)
        if not scheduled.start():
            return 1
        try:
            await asyncio.Event().wait()
        finally:
            await scheduled.stop()
        return 0

    if args.command == "history":
        target_type = TargetType(args.target_type) if args.target_type else None
        attempts = store.list_attempts(
            target_type=target_type,
            success=False if args.failed else None,
            limit=args.limit,
        )
        for attempt in attempts:
            logger.info("Attempt", **attempt.model_dump(mode="json"))
        logger.info("History listed", count=len(attempts))
        return 0

    logger.error("Unknown command", command=args.command)
    return 2


def _handle_fatal_error(exc: Exception) -> NoReturn:
    if isinstance(exc, PriceScoutError):
        logger.critical(
            "Fatal application error",
            error_type=type(exc).__name__,
            message=exc.message,
            context=exc.context,
        )
        sys.exit(1)

    logger.exception("Unexpected fatal error", error=str(exc))
    sys.exit(1)


def main(argv: list[str] | None = None) -> int:
    """Application entry point.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    args = build_parser().parse_args(argv)

    # Step 1: Load configuration (validates via Pydantic)
    try:
        config = get_config()
    except Exception as exc:
        print(f"FATAL: Configuration loading failed: {exc}", file=sys.stderr)
        return 1

    # Step 2: Initialize logging (fail-fast)
    try:
        configure_logging(config)
    except LoggingInitializationError as exc:
        print(f"FATAL: {exc}", file=sys.stderr)
        return 1

    # Step 3: Validate startup requirements
    try:
        _validate_startup_requirements(config)
    except SystemExit:
        raise
    except Exception as exc:
        logger.exception("Startup validation failed", error=str(exc))
        return 1

    # Step 4: Execute command
    try:
        return asyncio.run(_run_command(args, config))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user (Ctrl+C)")
        return 130
    except Exception as exc:
        _handle_fatal_error(exc)


if __name__ == "__main__":
    sys.exit(main())
