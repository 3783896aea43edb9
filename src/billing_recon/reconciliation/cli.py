#!/usr/bin/env python3
"""Command-line interface for billing reconciliation.

Usage:
    billing-recon serve --grace-period 30
    billing-recon reconcile --start 2024-01-01 --end 2024-01-02
    billing-recon reconcile --start 2024-01-01 --end 2024-01-02 --format csv --output diffs.csv
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from datetime import datetime
from typing import Optional

from ..database import (
    StoreError,
    create_async_engine,
    create_tables,
    get_async_session_factory,
    get_database_url,
)
from .gateway import get_billing_gateway
from .models import ReportCreationError, ReportStatus
from .notifier import ReconciliationNotifier
from .report import render_report
from .scheduler import ReconciliationScheduler
from .settings import SettingsManager

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = 30.0


def parse_datetime(dt_string: str) -> datetime:
    """Parse datetime string in various formats.

    Args:
        dt_string: Datetime string in ISO format or date format.

    Returns:
        Parsed datetime object.

    Raises:
        ValueError: If the string cannot be parsed.
    """
    formats = [
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(dt_string, fmt)
        except ValueError:
            continue

    raise ValueError(
        f"Unable to parse datetime: {dt_string}. "
        f"Expected formats: YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS"
    )


async def _open_store():
    engine = create_async_engine(database_url=get_database_url())
    await create_tables(engine)
    return engine, get_async_session_factory(engine)


def _build_scheduler(session_factory, settings_manager: SettingsManager) -> ReconciliationScheduler:
    return ReconciliationScheduler(
        session_factory,
        settings_manager,
        gateway=get_billing_gateway(),
        notifier=ReconciliationNotifier(),
        timezone=os.getenv("RECONCILIATION_TIMEZONE", "UTC"),
    )


async def serve_async(
    grace_period: float = DEFAULT_GRACE_PERIOD,
    stop_event: Optional[asyncio.Event] = None,
) -> int:
    """Run the scheduler until SIGINT/SIGTERM (or ``stop_event``).

    Args:
        grace_period: Seconds to wait for in-flight runs after stopping.
        stop_event: Event that ends the service. Signal handlers are
            installed only when none is given.

    Returns:
        Exit code: 0 after a graceful stop, 1 if startup failed.
    """
    engine, session_factory = await _open_store()
    loop = asyncio.get_running_loop()
    signals = ()

    try:
        settings_manager = SettingsManager(session_factory)
        try:
            await settings_manager.load()
            scheduler = _build_scheduler(session_factory, settings_manager)
            await scheduler.start()
        except (StoreError, ValueError) as e:
            logger.error(f"Failed to start reconciliation service: {e}")
            return 1

        if stop_event is None:
            stop_event = asyncio.Event()
            signals = (signal.SIGINT, signal.SIGTERM)
            for sig in signals:
                loop.add_signal_handler(sig, stop_event.set)

        next_run = scheduler.next_run_time()
        logger.info(f"Reconciliation service running; next run at {next_run}")
        await stop_event.wait()

        logger.info("Stopping reconciliation service")
        scheduler.stop()
        if await scheduler.wait_for_in_flight(grace_period):
            logger.info("Reconciliation service stopped")
        return 0

    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)
        await engine.dispose()


async def run_reconciliation_async(
    start_time: datetime,
    end_time: datetime,
    output_file: Optional[str] = None,
    output_format: str = "json",
    include_details: bool = True,
) -> int:
    """Run one reconciliation and write the report.

    Args:
        start_time: Window start (inclusive).
        end_time: Window end (exclusive).
        output_file: Optional output file path.
        output_format: Output format ('json', 'csv', 'text', 'detailed_text').
        include_details: Include diffs in JSON output.

    Returns:
        Exit code: 0 when no diffs were found, 1 when diffs were found,
        2 when the run failed.
    """
    engine, session_factory = await _open_store()

    try:
        settings_manager = SettingsManager(session_factory)
        try:
            await settings_manager.load()
            scheduler = _build_scheduler(session_factory, settings_manager)
            logger.info(f"Starting reconciliation from {start_time} to {end_time}")
            report = await scheduler.run_manual(start_time, end_time)
        except (StoreError, ValueError, ReportCreationError) as e:
            logger.error(f"Reconciliation failed: {e}")
            return 2

        output = render_report(report, format=output_format, include_details=include_details)

        if output_file:
            with open(output_file, 'w') as f:
                f.write(output)
            logger.info(f"Report written to {output_file}")
        else:
            print(output)

        if report.status != ReportStatus.COMPLETED.value:
            logger.error(f"Reconciliation {report.id} ended as {report.status}: {report.error_message}")
            return 2
        if report.diffs:
            logger.warning(
                f"Reconciliation completed with {len(report.diffs)} diffs "
                f"({report.missing_records} missing)"
            )
            return 1
        return 0

    finally:
        await engine.dispose()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="billing-recon",
        description="Billing reconciliation between the local store and the billing provider.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the reconciliation scheduler until interrupted",
    )
    serve_parser.add_argument(
        "--grace-period",
        type=float,
        default=DEFAULT_GRACE_PERIOD,
        help="Seconds to wait for in-flight runs on shutdown (default: 30)",
    )

    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Run one reconciliation now",
    )
    reconcile_parser.add_argument(
        "--start", "-s",
        required=True,
        help="Window start (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS)",
    )
    reconcile_parser.add_argument(
        "--end", "-e",
        required=True,
        help="Window end, exclusive (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS)",
    )
    reconcile_parser.add_argument(
        "--output", "-o",
        help="Output file path (default: stdout)",
    )
    reconcile_parser.add_argument(
        "--format", "-f",
        choices=["json", "csv", "text", "detailed_text"],
        default="json",
        help="Output format (default: json)",
    )
    reconcile_parser.add_argument(
        "--summary-only",
        action="store_true",
        help="Only include summary statistics, not diffs",
    )

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    if parsed_args.command == "serve":
        return asyncio.run(serve_async(grace_period=parsed_args.grace_period))

    if parsed_args.command == "reconcile":
        try:
            start_time = parse_datetime(parsed_args.start)
            end_time = parse_datetime(parsed_args.end)
        except ValueError as e:
            logger.error(str(e))
            return 2
        if start_time > end_time:
            logger.error("--start must not be after --end")
            return 2

        return asyncio.run(run_reconciliation_async(
            start_time=start_time,
            end_time=end_time,
            output_file=parsed_args.output,
            output_format=parsed_args.format,
            include_details=not parsed_args.summary_only,
        ))

    return 0


if __name__ == "__main__":
    sys.exit(main())
