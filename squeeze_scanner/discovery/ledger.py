"""
Staging ledger: every ticker seen so far, one row per ticker.

Rows are appended chunk by chunk, filled in as market data arrives, and
(re)categorized under the active filter. Exported rows are frozen: a filter
switch never un-exports or re-grades them.
"""
import logging
from typing import Dict, List, Optional, Sequence

from ..config import Variant
from ..schemas import Category, FilterSpec, MarketMetrics, StagingRow, TickerRecord
from ..storage import LEDGER_FILTER_KEY, STAGING_TABLE_KEY, KeyedTable, StateStore
from .market_data import FundamentalsLookup
from .qualification import QualificationGate, compute_derived_metrics, has_market_data


logger = logging.getLogger(__name__)

FUNDAMENTAL_FIELDS = (
    "float_shares",
    "short_interest_pct",
    "days_to_cover",
    "borrow_fee_pct",
    "catalyst",
    "news_score",
)


class StagingLedger:
    def __init__(self, store: StateStore):
        self.store = store
        self.table: KeyedTable[StagingRow] = KeyedTable(store, STAGING_TABLE_KEY, StagingRow, "ticker")

    def rows(self) -> List[StagingRow]:
        return self.table.all()

    def get(self, ticker: str) -> Optional[StagingRow]:
        return self.table.get(ticker)

    def count(self) -> int:
        return self.table.count()

    def append(self, records: Sequence[TickerRecord]) -> int:
        """Add rows for new tickers. Tickers already staged are skipped."""
        rows = self.table.as_dict()
        added = 0
        for record in records:
            if record.ticker in rows:
                continue
            rows[record.ticker] = StagingRow(ticker=record.ticker, company=record.name)
            added += 1
        if added:
            self.table.replace_all(rows.values())
        logger.info(f"Ledger append: {added} new rows ({len(rows)} total)")
        return added

    def pending_tickers(self, limit: Optional[int] = None) -> List[str]:
        """Unexported tickers still missing market data, in ledger order."""
        pending = [r.ticker for r in self.table.all() if not r.exported and not has_market_data(r)]
        return pending[:limit] if limit is not None else pending

    def apply_metrics(
        self,
        metrics: Dict[str, MarketMetrics],
        fundamentals: Optional[FundamentalsLookup] = None,
    ) -> int:
        """Write oracle fields (and fundamentals, when available) into unexported rows."""
        rows = self.table.as_dict()
        updated = 0
        for ticker, raw in metrics.items():
            row = rows.get(ticker)
            if row is None or row.exported:
                continue

            update = compute_derived_metrics(raw)
            if fundamentals is not None:
                record = fundamentals.get(ticker)
                if record is not None:
                    update.update({f: getattr(record, f) for f in FUNDAMENTAL_FIELDS})

            rows[ticker] = row.model_copy(update=update)
            updated += 1

        if updated:
            self.table.replace_all(rows.values())
        return updated

    def recompute(self, spec: FilterSpec, variant: Variant = Variant.FUNDAMENTALS) -> Dict[str, int]:
        """
        Re-derive category and qualified for every unexported row.

        Returns counts per category for logging.
        """
        gate = QualificationGate(spec, variant)
        rows = self.table.all()
        counts: Dict[str, int] = {}
        recomputed = []
        for row in rows:
            if not row.exported:
                row = row.model_copy(update=gate.evaluate(row))
                category = getattr(row.category, "value", row.category)
                counts[category] = counts.get(category, 0) + 1
            recomputed.append(row)
        self.table.replace_all(recomputed)
        logger.info(f"Recomputed under {spec.name!r}: {counts}")
        return counts

    def invalidate_unexported(self) -> int:
        """Clear derived state on rows not yet exported so they are re-graded."""
        rows = self.table.all()
        invalidated = 0
        for i, row in enumerate(rows):
            if row.exported:
                continue
            rows[i] = row.model_copy(update={"category": Category.PENDING, "qualified": False, "exported": False})
            invalidated += 1
        self.table.replace_all(rows)
        return invalidated

    def computed_under(self) -> Optional[str]:
        return self.store.get(LEDGER_FILTER_KEY)

    def sync_filter(self, spec: FilterSpec) -> bool:
        """
        Make sure ledger state belongs to `spec`.

        If the rows were graded under another filter, unexported rows are
        invalidated. Returns True when an invalidation happened.
        """
        previous = self.computed_under()
        if previous == spec.name:
            return False

        invalidated = 0
        if previous is not None:
            invalidated = self.invalidate_unexported()
            logger.info(
                f"Active filter changed {previous!r} -> {spec.name!r}: "
                f"{invalidated} unexported rows invalidated"
            )
        self.store.set(LEDGER_FILTER_KEY, spec.name)
        return previous is not None

    def reset_flags(self) -> int:
        """Soft reset: every row back to PENDING, unqualified and unexported."""
        rows = [
            r.model_copy(update={"category": Category.PENDING, "qualified": False, "exported": False})
            for r in self.table.all()
        ]
        self.table.replace_all(rows)
        self.store.delete(LEDGER_FILTER_KEY)
        return len(rows)

    def clear(self) -> None:
        self.table.clear()
        self.store.delete(LEDGER_FILTER_KEY)
