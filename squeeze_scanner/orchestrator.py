"""
Pipeline orchestrator: sequences symbol source -> staging ledger -> export ->
scoring for one invocation.

Every mutating command runs under the whole-pass lock. Each chunk call persists
its rows before its cursor, so a process torn down between invocations resumes
exactly where it stopped.
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple
import time

from .budget import RunBudget
from .config import ScannerConfig
from .discovery.export import ExportStage, MarketCache
from .discovery.filters import FilterStore
from .discovery.ledger import StagingLedger
from .discovery.market_data import FundamentalsLookup, MarketDataProvider
from .discovery.paging import PagingState, next_chunk
from .discovery.symbol_source import SymbolSource
from .errors import ConfigError, LockContention, NotFoundError
from .lock import PipelineLock
from .logger import SignalTracker
from .schemas import (
    ComparisonReport,
    FilterComparison,
    FilterSpec,
    PagingCursor,
    PassOutcome,
    PassResult,
    RunStatus,
    TradeSignal,
)
from .storage import RUN_STATUS_KEY, StateStore
from .strategy.scoring import ScoringConfig, SqueezeScorer


logger = logging.getLogger(__name__)


class ScanPipeline:
    """
    Named operations over the staging pipeline.

    Single-threaded; concurrent invocations are excluded by PipelineLock and a
    blocked invocation returns a SKIPPED_LOCKED result without touching state.
    """

    def __init__(
        self,
        config: ScannerConfig,
        store: StateStore,
        source: SymbolSource,
        market_data: MarketDataProvider,
        fundamentals: Optional[FundamentalsLookup] = None,
        tracker: Optional[SignalTracker] = None,
        scoring_config: Optional[ScoringConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.store = store
        self.source = source
        self.market_data = market_data
        self.fundamentals = fundamentals
        self.tracker = tracker or SignalTracker(config.log_dir)
        self.clock = clock

        self.filters = FilterStore(store)
        self.paging = PagingState(store)
        self.ledger = StagingLedger(store)
        self.cache = MarketCache(store)
        self.exporter = ExportStage(self.ledger, self.cache)
        self.scorer = SqueezeScorer(
            scoring_config or ScoringConfig(top_n=config.top_n),
            config.variant,
        )

        self.lock_path = str(Path(config.state_path).parent / "pipeline.lock")
        self._lock: Optional[PipelineLock] = None

    # ------------------------------------------------------------------
    # status / locking

    def _record_status(self, step: str, error: Optional[str] = None) -> None:
        status = RunStatus(step=step, last_run=datetime.utcnow(), last_error=error)
        self.store.set(RUN_STATUS_KEY, status.model_dump(mode="json"))

    def get_status(self) -> Optional[RunStatus]:
        raw = self.store.get(RUN_STATUS_KEY)
        return RunStatus.model_validate(raw) if raw else None

    def _new_lock(self) -> PipelineLock:
        return PipelineLock(
            self.lock_path,
            timeout_seconds=self.config.lock_timeout_seconds,
            stale_seconds=self.config.lock_stale_seconds,
        )

    def _run_locked(self, step: str, body: Callable[[], PassResult]) -> PassResult:
        """
        Run `body` under the pipeline lock.

        Lock contention -> skipped result, nothing written. Any other failure is
        recorded into the status record and re-raised.
        """
        start = self.clock()
        lock = self._new_lock()
        try:
            lock.acquire()
        except LockContention as e:
            logger.warning(f"{step}: skipped - locked ({e})")
            return PassResult(
                step=step,
                outcome=PassOutcome.SKIPPED_LOCKED,
                message="skipped - locked",
                duration_seconds=self.clock() - start,
            )

        self._lock = lock
        try:
            result = body()
            self._record_status(step)
        except Exception as e:
            logger.error(f"{step} failed: {e}")
            self._record_status(step, error=f"{type(e).__name__}: {e}")
            raise
        finally:
            self._lock = None
            lock.release()

        result.duration_seconds = self.clock() - start
        logger.info(
            f"{step} finished: outcome={result.outcome} added={result.rows_added} "
            f"exported={result.rows_exported} in {result.duration_seconds:.1f}s"
        )
        return result

    def _record_status_locked(self, step: str, error: Optional[str] = None) -> bool:
        """
        Status write for read-only steps. Taken under the lock because the
        store rewrites the whole state file; skipped when another run holds it.
        """
        lock = self._new_lock()
        try:
            lock.acquire()
        except LockContention as e:
            logger.warning(f"{step}: status not recorded - locked ({e})")
            return False
        try:
            self._record_status(step, error)
        finally:
            lock.release()
        return True

    # ------------------------------------------------------------------
    # staging

    def _load_universe(self) -> Tuple[list, PagingCursor]:
        universe = self.paging.load_universe()
        if universe is None:
            universe = self.source.fetch_universe()
            cursor = self.paging.save_universe(universe)
            return universe, cursor
        return universe, self.paging.load_cursor()

    def _process_chunk(self, spec: FilterSpec) -> Tuple[int, PagingCursor]:
        """
        Stage one chunk: append rows, fill market data, recompute, then persist
        the cursor. An exhausted cursor still re-grades existing rows.
        """
        self.ledger.sync_filter(spec)

        universe, cursor = self._load_universe()
        chunk, new_cursor = next_chunk(cursor, universe, self.config.chunk_size)
        added = self.ledger.append(chunk)

        tickers = [r.ticker for r in chunk]
        in_chunk = set(tickers)
        retry = [t for t in self.ledger.pending_tickers() if t not in in_chunk]
        to_price = tickers + retry[: max(0, self.config.chunk_size - len(tickers))]
        if to_price:
            metrics = self.market_data.get_metrics(to_price)
            self.ledger.apply_metrics(metrics, self.fundamentals)

        self.ledger.recompute(spec, self.config.variant)
        self.paging.save_cursor(new_cursor)
        if self._lock is not None:
            self._lock.refresh()

        logger.info(
            f"Chunk staged: {len(chunk)} tickers ({added} new), "
            f"cursor {new_cursor.next_index}/{new_cursor.total_symbols}"
        )
        return added, new_cursor

    def run_chunk(self, export: bool = True) -> PassResult:
        """Process exactly one bounded chunk (timer-driven entry point)."""

        def body() -> PassResult:
            spec = self.filters.get_active()
            added, cursor = self._process_chunk(spec)
            exported = self.exporter.export_qualified() if export else 0
            return PassResult(
                step="chunk",
                outcome=PassOutcome.COMPLETE if cursor.exhausted else PassOutcome.OK,
                rows_added=added,
                rows_exported=exported,
                chunks_processed=1,
                cursor=cursor,
                active_filter=spec.name,
            )

        return self._run_locked("chunk", body)

    def run_full_pass(self, budget_seconds: Optional[float] = None) -> PassResult:
        """
        Loop {add chunk -> export} until the universe is exhausted or the time
        budget is spent, then always run one final export.

        The budget must stay below the stale-lock age, otherwise another
        invocation could break the lock mid-pass.
        """
        timeout = budget_seconds or self.config.full_pass_seconds
        if timeout >= self.config.lock_stale_seconds:
            raise ConfigError(
                f"Full-pass budget {timeout}s must be below the stale-lock age "
                f"{self.config.lock_stale_seconds}s"
            )

        def body() -> PassResult:
            spec = self.filters.get_active()
            budget = RunBudget(timeout, clock=self.clock)
            added_total = 0
            exported_total = 0
            cursor = self.paging.load_cursor()

            while budget.can_continue():
                added, cursor = self._process_chunk(spec)
                added_total += added
                exported_total += self.exporter.export_qualified()
                budget.record_iteration()
                if cursor.exhausted:
                    break

            exported_total += self.exporter.export_qualified()
            summary = budget.get_summary()
            logger.info(summary.format_message())

            return PassResult(
                step="full_pass",
                outcome=PassOutcome.COMPLETE if cursor.exhausted else PassOutcome.OK,
                rows_added=added_total,
                rows_exported=exported_total,
                chunks_processed=summary.iterations,
                cursor=cursor,
                active_filter=spec.name,
                message=summary.format_message(),
            )

        return self._run_locked("full_pass", body)

    def export(self) -> PassResult:
        def body() -> PassResult:
            return PassResult(step="export", rows_exported=self.exporter.export_qualified())

        return self._run_locked("export", body)

    # ------------------------------------------------------------------
    # filters

    def setup_filters(self) -> PassResult:
        """Seed the default filter set and make sure an active filter resolves."""

        def body() -> PassResult:
            added = self.filters.seed_defaults()
            spec = self.filters.get_active()
            return PassResult(
                step="setup_filters",
                active_filter=spec.name,
                message=f"{len(added)} filters added",
            )

        return self._run_locked("setup_filters", body)

    def switch_filter(self, name: str) -> PassResult:
        """
        Make `name` the active filter.

        Unexported rows lose their category/qualified state and are re-graded on
        the next pass; exported rows stay exported.
        """

        def body() -> PassResult:
            spec = self.filters.set_active(name)
            self.ledger.sync_filter(spec)
            return PassResult(step="switch_filter", active_filter=spec.name)

        return self._run_locked("switch_filter", body)

    # ------------------------------------------------------------------
    # scoring

    def _resolve_filter(self, name: Optional[str]) -> FilterSpec:
        if name is None:
            return self.filters.get_active()
        spec = self.filters.get_by_name(name)
        if spec is None:
            raise NotFoundError("Filter", name)
        return spec

    def score(self, spec: FilterSpec) -> List[TradeSignal]:
        """Scan and rank the market cache under `spec`. Read-only."""
        candidates = self.scorer.scan_candidates(self.cache.rows(), spec, self.fundamentals)
        return self.scorer.rank(candidates, spec, self.config.top_n)

    def run_scoring(self, filter_name: Optional[str] = None) -> List[TradeSignal]:
        """Score the cache, log the top-K to the tracker and write the signal report."""
        try:
            spec = self._resolve_filter(filter_name)
            signals = self.score(spec)
            self.tracker.log_top_signals(signals, spec.name, self.config.tracker_top_k)
            self.tracker.write_signals(signals, spec.name)
        except Exception as e:
            self._record_status_locked("score", error=f"{type(e).__name__}: {e}")
            raise
        self._record_status_locked("score")
        logger.info(f"Scoring under {spec.name!r}: {len(signals)} signals")
        return signals

    def compare_filters(self) -> ComparisonReport:
        """Score the cache under every stored filter and write a comparison report."""
        cache_rows = self.cache.rows()
        report = ComparisonReport(cache_rows=len(cache_rows))

        for spec in self.filters.list():
            candidates = self.scorer.scan_candidates(cache_rows, spec, self.fundamentals)
            signals = self.scorer.rank(candidates, spec, self.config.top_n)
            scores = [s.score for s in signals]
            report.results.append(FilterComparison(
                filter_name=spec.name,
                candidates=len(candidates),
                signals=len(signals),
                average_score=round(sum(scores) / len(scores), 1) if scores else 0.0,
                top_ticker=signals[0].ticker if signals else None,
                top_score=signals[0].score if signals else None,
                tickers=[s.ticker for s in signals],
            ))

        self.tracker.write_comparison(report)
        self._record_status_locked("compare")
        return report

    # ------------------------------------------------------------------
    # resets

    def soft_reset(self) -> PassResult:
        """Rewind the cursor and clear ledger flags. The cached universe is kept."""

        def body() -> PassResult:
            cursor = self.paging.reset_cursor()
            rows = self.ledger.reset_flags()
            return PassResult(step="soft_reset", cursor=cursor, message=f"{rows} rows reset")

        return self._run_locked("soft_reset", body)

    def hard_reset(self) -> PassResult:
        """Wipe all pipeline state and tables, filters included."""

        def body() -> PassResult:
            self.ledger.clear()
            self.cache.clear()
            self.paging.clear()
            self.filters.clear()
            self.store.delete(RUN_STATUS_KEY)
            return PassResult(step="hard_reset", message="all state cleared")

        return self._run_locked("hard_reset", body)

    # ------------------------------------------------------------------

    def describe(self) -> dict:
        """Snapshot of pipeline state for the status command."""
        status = self.get_status()
        cursor = self.paging.load_cursor()
        return {
            "active_filter": self.filters.get_active_name(),
            "filters": [f.name for f in self.filters.list()],
            "cursor": cursor.model_dump(),
            "staging_rows": self.ledger.count(),
            "cache_rows": self.cache.count(),
            "last_run": status.model_dump(mode="json") if status else None,
            "variant": self.config.variant.value,
        }
