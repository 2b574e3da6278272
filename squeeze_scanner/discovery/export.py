"""
Export of qualified staging rows into the market cache.

Both tables live in the same state store. One export pass reads them once and
writes the new cache rows together with the ledger marks in a single
`set_many`, so a ticker is either cached and marked or neither. A ticker that
is already cached but unmarked (state written by an older pass) is only
marked. A ticker can therefore never be cached twice.
"""
import logging
from datetime import datetime
from typing import List, Optional

from ..schemas import MarketCacheRow, StagingRow
from ..storage import MARKET_CACHE_TABLE_KEY, KeyedTable, StateStore
from .ledger import StagingLedger
from .qualification import is_export_eligible


logger = logging.getLogger(__name__)

CACHE_FIELDS = [f for f in MarketCacheRow.model_fields if f != "exported_at"]


class MarketCache:
    """Second-stage table of exported tickers. Append-only except for a full reset."""

    def __init__(self, store: StateStore):
        self.table: KeyedTable[MarketCacheRow] = KeyedTable(
            store, MARKET_CACHE_TABLE_KEY, MarketCacheRow, "ticker"
        )

    def rows(self) -> List[MarketCacheRow]:
        return self.table.all()

    def contains(self, ticker: str) -> bool:
        return self.table.contains(ticker)

    def get(self, ticker: str) -> Optional[MarketCacheRow]:
        return self.table.get(ticker)

    def count(self) -> int:
        return self.table.count()

    def append(self, row: MarketCacheRow) -> bool:
        return self.table.append(row)

    def clear(self) -> None:
        self.table.clear()


def to_cache_row(row: StagingRow, exported_at: Optional[datetime] = None) -> MarketCacheRow:
    values = {f: getattr(row, f) for f in CACHE_FIELDS}
    return MarketCacheRow(exported_at=exported_at or datetime.utcnow(), **values)


class ExportStage:
    def __init__(self, ledger: StagingLedger, cache: MarketCache):
        self.ledger = ledger
        self.cache = cache

    def export_qualified(self) -> int:
        """
        Copy eligible, not-yet-exported staging rows into the cache.

        Returns the number of new cache rows. Running it again with no staging
        changes returns 0.
        """
        staging = self.ledger.rows()
        cache_rows = self.cache.rows()
        cached = {r.ticker for r in cache_rows}

        appended = 0
        reconciled = 0
        skipped = 0
        exported_at = datetime.utcnow()

        for i, row in enumerate(staging):
            if row.exported:
                continue
            if not is_export_eligible(row):
                skipped += 1
                continue

            if row.ticker in cached:
                reconciled += 1
            else:
                cache_rows.append(to_cache_row(row, exported_at))
                cached.add(row.ticker)
                appended += 1
            staging[i] = row.model_copy(update={"exported": True})

        if appended or reconciled:
            self.ledger.store.set_many({
                self.ledger.table.state_key: self.ledger.table.dump(staging),
                self.cache.table.state_key: self.cache.table.dump(cache_rows),
            })

        logger.info(
            f"Export: {appended} appended, {reconciled} reconciled, {skipped} not eligible "
            f"({len(cache_rows)} cached)"
        )
        return appended


def export_qualified(ledger: StagingLedger, cache: MarketCache) -> int:
    """Convenience wrapper around ExportStage."""
    return ExportStage(ledger, cache).export_qualified()
