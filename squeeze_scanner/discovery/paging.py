"""
Paging cursor and chunk slicing over the cached ticker universe.

next_chunk is pure: calling it twice with the same cursor returns the same
slice. Progress only happens when the caller persists the returned cursor.
"""
import logging
from typing import List, Optional, Sequence, Tuple, TypeVar

from ..schemas import PagingCursor, TickerRecord
from ..storage import PAGING_CURSOR_KEY, UNIVERSE_KEY, StateStore


logger = logging.getLogger(__name__)

T = TypeVar("T")


def next_chunk(
    cursor: PagingCursor,
    universe: Sequence[T],
    chunk_size: int,
) -> Tuple[List[T], PagingCursor]:
    """
    Return the next slice of the universe and the cursor that follows it.

    An exhausted cursor yields an empty slice and the cursor unchanged, which
    is the completion signal.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    total = len(universe)
    if cursor.next_index >= total:
        return [], cursor

    start = cursor.next_index
    end = min(start + chunk_size, total)
    return list(universe[start:end]), PagingCursor(total_symbols=total, next_index=end)


class PagingState:
    """Persisted cursor plus the cached universe it walks over."""

    def __init__(self, store: StateStore):
        self.store = store

    def load_cursor(self) -> PagingCursor:
        raw = self.store.get(PAGING_CURSOR_KEY)
        if not raw:
            return PagingCursor()
        return PagingCursor.model_validate(raw)

    def save_cursor(self, cursor: PagingCursor) -> None:
        self.store.set(PAGING_CURSOR_KEY, cursor.model_dump(mode="json"))

    def load_universe(self) -> Optional[List[TickerRecord]]:
        raw = self.store.get(UNIVERSE_KEY)
        if raw is None:
            return None
        return [TickerRecord.model_validate(r) for r in raw]

    def save_universe(self, universe: Sequence[TickerRecord]) -> PagingCursor:
        """Cache a freshly fetched universe and restart the cursor at 0."""
        self.store.set(UNIVERSE_KEY, [r.model_dump(mode="json") for r in universe])
        cursor = PagingCursor(total_symbols=len(universe), next_index=0)
        self.save_cursor(cursor)
        logger.info(f"Cached universe of {len(universe)} tickers, cursor reset to 0")
        return cursor

    def reset_cursor(self) -> PagingCursor:
        """Rewind to the start of the cached universe (soft reset)."""
        universe = self.load_universe() or []
        cursor = PagingCursor(total_symbols=len(universe), next_index=0)
        self.save_cursor(cursor)
        return cursor

    def clear(self) -> None:
        self.store.delete(PAGING_CURSOR_KEY)
        self.store.delete(UNIVERSE_KEY)
