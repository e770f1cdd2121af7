#!/usr/bin/env python3
"""Options ingestion CLI entry point.

Runs one gated ingestion cycle for an underlying's options chain:
  gate -> fetch -> filter -> derive -> upsert

Usage::

    python scripts/run_ingestion.py                            # default underlying, gated
    python scripts/run_ingestion.py --symbol MSTR --force      # bypass market hours
    python scripts/run_ingestion.py --expiry 2025-06-20 --dry-run
    python scripts/run_ingestion.py --force --strategy staged
"""

import argparse
import asyncio
import sys
from datetime import datetime

from options_pipeline.core.config import settings
from options_pipeline.core.enums import CycleState, UpsertStrategy
from options_pipeline.core.utils.logging_config import configure_logging
from options_pipeline.ingestion.errors import IngestionError
from options_pipeline.pipeline import CycleResult, OptionsIngestionCycle


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments.

    Args:
        argv: Argument list (defaults to sys.argv[1:]).

    Returns:
        Parsed namespace with ``symbol``, ``expiry``, ``force``, ``dry_run``
        and ``strategy`` attributes.
    """
    parser = argparse.ArgumentParser(
        description="Run one options snapshot ingestion cycle.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python scripts/run_ingestion.py\n"
            "  python scripts/run_ingestion.py --symbol MSTR --force\n"
            "  python scripts/run_ingestion.py --expiry 2025-06-20 --dry-run\n"
        ),
    )
    parser.add_argument(
        "--symbol",
        default=settings.options_underlying,
        help=f"Underlying ticker (default: {settings.options_underlying})",
    )
    parser.add_argument(
        "--expiry",
        type=lambda s: datetime.strptime(s, "%Y-%m-%d").date(),
        default=None,
        help="Only keep contracts expiring on this date (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        default=False,
        help="Bypass the market-hours gate",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Fetch, filter and derive but skip all DB writes",
    )
    parser.add_argument(
        "--strategy",
        choices=[s.value for s in UpsertStrategy],
        default=None,
        help="Force the upsert path (default: chosen by batch size)",
    )
    return parser.parse_args(argv)


def _print_summary(result: CycleResult) -> None:
    print(f"\n{'=' * 42}")
    print(f" Options ingestion: {result.underlying}  [{result.state.value}]")
    print(f"{'=' * 42}")
    if result.state is CycleState.CLOSED_EXIT:
        print(f"  market closed; next open {result.next_market_open}")
        return
    print(f"  trading date:   {result.trading_date}")
    print(f"  fetched:        {result.options_fetched}")
    print(f"  filtered:       {result.filtered} ({result.calls} calls / {result.puts} puts)")
    print(f"  derived:        {result.rows_derived} (expired {result.rows_expired}, skipped {result.rows_skipped})")
    print(f"  upserted:       {result.rows_upserted} via {result.strategy or '-'}")
    for name, seconds in result.step_timings.items():
        print(f"  {name + ':':<15} {seconds:.1f}s")
    print(f"  total:          {result.duration_seconds:.1f}s")


async def _run(args: argparse.Namespace) -> CycleResult:
    cycle = OptionsIngestionCycle()
    return await cycle.run(
        underlying=args.symbol,
        expiry=args.expiry,
        force=args.force,
        dry_run=args.dry_run,
        strategy=args.strategy,
    )


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ingestion CLI.

    Args:
        argv: Argument list (defaults to sys.argv[1:]).

    Returns:
        Exit code: 0 on DONE or CLOSED_EXIT, 1 on failure.
    """
    args = parse_args(argv)
    configure_logging(debug=settings.debug, log_format=settings.log_format)

    try:
        result = asyncio.run(_run(args))
    except IngestionError as exc:
        if exc.result is not None:
            _print_summary(exc.result)
        print(f"\nIngestion failed: {exc}", file=sys.stderr)
        return 1

    _print_summary(result)
    return 0 if result.state in (CycleState.DONE, CycleState.CLOSED_EXIT) else 1


if __name__ == "__main__":
    sys.exit(main())
