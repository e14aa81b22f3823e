"""Command-line interface for barvault."""

from __future__ import annotations

import argparse
import sys

import pandas as pd

from barvault.config import Settings
from barvault.data.bars import BAR_FIELDS
from barvault.domain.models import (
    DataRequest,
    DatasetResult,
    normalize_source,
    normalize_timeframe,
)
from barvault.errors import BarVaultError, ConfigurationError
from barvault.logging.logger import setup_logger
from barvault.runtime import build_resolver

SOURCE_CHOICES = ["auto", "csv", "local", "tiingo", "polygon"]


def _add_series_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("symbol", type=str, help="Ticker symbol, e.g. AAPL")
    parser.add_argument("--timeframe", type=str, default="1d", help="1d, 1h, 15m or 1m")
    parser.add_argument("--start", type=str, required=True, help="Start date (YYYY-MM-DD)")
    parser.add_argument("--end", type=str, required=True, help="End date (YYYY-MM-DD)")
    parser.add_argument("--source", choices=SOURCE_CHOICES, default="auto", help="Data source")
    parser.add_argument("--raw", action="store_true", help="Request unadjusted prices")


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""
    parser = argparse.ArgumentParser(description="Historical bar acquisition with local caching")
    parser.add_argument("--log-level", type=str, help="Logging level")
    parser.add_argument("--datasets-dir", type=str, help="Local dataset directory")
    parser.add_argument("--cache-dir", type=str, help="Vendor cache directory")
    parser.add_argument("--coverage-db", type=str, help="SQLite coverage database path")
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch = subparsers.add_parser("fetch", help="Ensure a local dataset covers a window")
    _add_series_arguments(fetch)
    load = subparsers.add_parser("load", help="Print bars for a window as CSV")
    _add_series_arguments(load)
    coverage = subparsers.add_parser("coverage", help="List recorded dataset coverage")
    coverage.add_argument("symbol", nargs="?", help="Only show this symbol")
    return parser


def apply_cli_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Apply CLI values onto environment-derived settings."""
    overrides: dict[str, object] = {}
    if args.log_level:
        overrides["log_level"] = args.log_level.strip().upper()
    if args.datasets_dir:
        overrides["datasets_dir"] = args.datasets_dir
    if args.cache_dir:
        overrides["cache_dir"] = args.cache_dir
    if args.coverage_db:
        overrides["coverage_db_path"] = args.coverage_db
    return settings.with_overrides(**overrides)


def build_request(args: argparse.Namespace) -> DataRequest:
    """Translate series arguments into a validated request."""
    request = DataRequest(
        symbol=args.symbol.strip().upper(),
        timeframe=normalize_timeframe(args.timeframe),
        start=args.start,
        end=args.end,
        source=normalize_source(args.source),
        adjusted=not args.raw,
    )
    return request.validate()


def format_result(result: DatasetResult) -> str:
    status = "fetched" if result.fetched else "cached"
    return (
        f"{status} | source {result.source} | rows {result.rows} "
        f"| {result.start}..{result.end} | {result.path}"
    )


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = apply_cli_overrides(Settings.from_env(), args)
        request = build_request(args) if args.command in {"fetch", "load"} else None
    except (ValueError, ConfigurationError) as exc:
        print(f"Configuration error: {exc}")
        return 2

    setup_logger(settings.log_level)
    resolver = build_resolver(settings)
    try:
        if args.command == "fetch" and request is not None:
            print(format_result(resolver.ensure_dataset(request)))
        elif args.command == "load" and request is not None:
            bars = resolver.load_bars(request)
            frame = pd.DataFrame([bar.to_record() for bar in bars], columns=list(BAR_FIELDS))
            frame.to_csv(sys.stdout, index=False, lineterminator="\n")
        else:
            for record in resolver.store.list_coverage(args.symbol):
                print(
                    f"{record.symbol} {record.timeframe} | source {record.source} "
                    f"| {record.start}..{record.end} | rows {record.rows} | {record.path}"
                )
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}")
        return 2
    except BarVaultError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        resolver.store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
