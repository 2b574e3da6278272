"""
Command-line entry point for the scanner.

Each subcommand maps to one named pipeline operation.
"""
import argparse
import json
import logging
import signal
import sys
import time
from typing import List, Optional

from .config import ScannerConfig, load_config
from .discovery.market_data import AlpacaMarketData, CsvFundamentals
from .discovery.symbol_source import SymbolSource
from .errors import ScannerError
from .orchestrator import ScanPipeline
from .schemas import PassOutcome, PassResult, TradeSignal
from .storage import JsonStateStore


logger = logging.getLogger("squeeze_scanner")


def build_pipeline(cfg: ScannerConfig) -> ScanPipeline:
    if not cfg.has_market_data_credentials():
        print("WARNING: Alpaca API keys not set. Market data requests will fail and rows stay PENDING.")
        print("Set ALPACA_KEY_ID and ALPACA_SECRET_KEY environment variables.")

    fundamentals = CsvFundamentals(cfg.fundamentals_csv) if cfg.fundamentals_csv else None
    return ScanPipeline(
        config=cfg,
        store=JsonStateStore(cfg.state_path),
        source=SymbolSource(cfg.listing_url),
        market_data=AlpacaMarketData(cfg.alpaca_key_id, cfg.alpaca_secret_key),
        fundamentals=fundamentals,
    )


def print_result(result: PassResult) -> None:
    if result.outcome == PassOutcome.SKIPPED_LOCKED:
        print(f"{result.step}: skipped - another run holds the lock")
        return
    line = f"{result.step}: {result.outcome}"
    if result.cursor is not None:
        line += f" | cursor {result.cursor.next_index}/{result.cursor.total_symbols}"
    if result.rows_added or result.rows_exported:
        line += f" | added {result.rows_added} | exported {result.rows_exported}"
    if result.active_filter:
        line += f" | filter {result.active_filter}"
    if result.message:
        line += f" | {result.message}"
    print(line)


def print_signals(signals: List[TradeSignal]) -> None:
    if not signals:
        print("No candidates passed the scoring filter.")
        return
    print(f"{'#':>2}  {'TICKER':<6} {'SCORE':>5}  {'SIGNAL':<13} {'PATTERN':<12} "
          f"{'ENTRY':>9} {'STOP':>9} {'T1':>9} {'T2':>9} {'R/R':>5}")
    for s in signals:
        print(f"{s.rank:>2}  {s.ticker:<6} {s.score:>5}  {s.signal:<13} {s.pattern:<12} "
              f"{s.entry:>9.2f} {s.stop:>9.2f} {s.target_1:>9.2f} {s.target_2:>9.2f} {s.risk_reward:>5.2f}")


def cmd_score(pipeline: ScanPipeline, filter_name: Optional[str]) -> int:
    """Scoring failures are reported, never raised to the shell."""
    try:
        signals = pipeline.run_scoring(filter_name)
    except Exception as e:
        print(f"Scoring failed: {e}")
        return 1
    print_signals(signals)
    return 0


def cmd_watch(pipeline: ScanPipeline, interval_seconds: float) -> int:
    """Timer-driven mode: one chunk per interval until the universe is exhausted."""
    running = True

    def _stop(signum, frame):
        nonlocal running
        print(f"\nReceived signal {signum}, stopping after the current chunk...")
        running = False

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    while running:
        result = pipeline.run_chunk()
        print_result(result)
        if result.outcome == PassOutcome.COMPLETE:
            break
        if running:
            time.sleep(interval_seconds)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="squeeze-scanner", description="Incremental squeeze/momentum scanner")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("setup-filters", help="Seed the default filter set")
    sub.add_parser("filters", help="List stored filters")
    use = sub.add_parser("use-filter", help="Switch the active filter")
    use.add_argument("name")
    sub.add_parser("chunk", help="Stage one chunk and export")
    full = sub.add_parser("full", help="Bounded-time full pass")
    full.add_argument("--seconds", type=float, default=None)
    watch = sub.add_parser("watch", help="Stage one chunk per interval until done")
    watch.add_argument("--interval", type=float, default=60.0)
    sub.add_parser("export", help="Export qualified rows only")
    score = sub.add_parser("score", help="Score and rank the market cache")
    score.add_argument("--filter", dest="filter_name", default=None)
    sub.add_parser("compare", help="Score under every filter and write a comparison report")
    sub.add_parser("soft-reset", help="Rewind cursor and clear flags, keep universe")
    sub.add_parser("hard-reset", help="Wipe all state and tables")
    sub.add_parser("status", help="Show pipeline state")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        cfg = load_config()
    except ValueError as e:
        print(f"CONFIGURATION ERROR: {e}")
        return 1

    pipeline = build_pipeline(cfg)

    if args.command == "score":
        return cmd_score(pipeline, args.filter_name)

    try:
        if args.command == "setup-filters":
            print_result(pipeline.setup_filters())
        elif args.command == "filters":
            active = pipeline.filters.get_active_name()
            for spec in pipeline.filters.list():
                marker = "*" if spec.name == active else " "
                default = " (default)" if spec.is_default else ""
                print(f"{marker} {spec.name}{default}")
        elif args.command == "use-filter":
            print_result(pipeline.switch_filter(args.name))
        elif args.command == "chunk":
            print_result(pipeline.run_chunk())
        elif args.command == "full":
            print_result(pipeline.run_full_pass(args.seconds))
        elif args.command == "watch":
            return cmd_watch(pipeline, args.interval)
        elif args.command == "export":
            print_result(pipeline.export())
        elif args.command == "compare":
            report = pipeline.compare_filters()
            for r in report.results:
                print(f"{r.filter_name:<22} candidates={r.candidates:<4} signals={r.signals:<3} "
                      f"avg={r.average_score:<5} top={r.top_ticker or '-'}")
        elif args.command == "soft-reset":
            print_result(pipeline.soft_reset())
        elif args.command == "hard-reset":
            print_result(pipeline.hard_reset())
        elif args.command == "status":
            print(json.dumps(pipeline.describe(), indent=2, default=str))
    except ScannerError as e:
        print(f"ERROR: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
