"""
Categorization and qualification for staged tickers.

This stage is DETERMINISTIC: plain functions of the row fields and the active
FilterSpec. The same category chain is reused by the scoring engine for
pattern detection, so staging and scoring can never disagree on a setup.
"""
from typing import Any, Dict, Optional
import logging

from ..config import Variant
from ..schemas import (
    Category,
    FilterSpec,
    MarketMetrics,
    NON_EXPORTABLE_CATEGORIES,
)


logger = logging.getLogger(__name__)

REQUIRED_MARKET_FIELDS = (
    "price",
    "volume",
    "avg_volume_10d",
    "relative_volume",
    "prev_close",
    "change_pct",
    "high_52_week",
    "distance_to_high_pct",
)

MOMENTUM_MIN_CHANGE = 0.01
ACCUMULATION_MIN_RVOL = 1.5


def compute_derived_metrics(metrics: MarketMetrics) -> Dict[str, Optional[float]]:
    """
    Turn raw oracle fields into the full set of staging metrics.

    Fields whose inputs are missing (or would divide by zero) come back as None.
    """
    price = metrics.price
    volume = metrics.volume
    avg_volume = metrics.avg_volume_10d
    prev_close = metrics.prev_close
    high = metrics.high_52_week

    dollar_volume = price * volume if price is not None and volume is not None else None

    relative_volume = None
    if volume is not None and avg_volume:
        relative_volume = volume / avg_volume

    change_pct = None
    if price is not None and prev_close:
        change_pct = (price - prev_close) / prev_close

    distance_to_high_pct = None
    if price is not None and high:
        distance_to_high_pct = max(0.0, (high - price) / high)

    return {
        "price": price,
        "volume": volume,
        "dollar_volume": dollar_volume,
        "avg_volume_10d": avg_volume,
        "relative_volume": relative_volume,
        "prev_close": prev_close,
        "change_pct": change_pct,
        "high_52_week": high,
        "distance_to_high_pct": distance_to_high_pct,
    }


def has_market_data(row: Any) -> bool:
    """True when every field the category chain needs is present."""
    return all(getattr(row, field, None) is not None for field in REQUIRED_MARKET_FIELDS)


def categorize(row: Any, spec: FilterSpec, variant: Variant = Variant.FUNDAMENTALS) -> Category:
    """
    Ordered, first-match category chain.

    1. Ignition RVOL and ignition move        -> SQUEEZE
    2. Within breakout distance of 52w high   -> BREAKOUT
    3. Active RVOL and at least +1%           -> MOMENTUM
    4. Up on at least 1.5x volume             -> ACCUMULATION
    5. Anything else                          -> BUILDING
    """
    if not has_market_data(row):
        return Category.PENDING

    rvol = row.relative_volume
    change = row.change_pct

    if rvol >= spec.ignition_rvol and change >= spec.ignition_delta_pct:
        return Category.SQUEEZE

    # distance is a ratio, breakout_dist_pct is in percentage points
    if row.distance_to_high_pct * 100.0 <= spec.breakout_dist_pct:
        return Category.BREAKOUT

    momentum_rvol = spec.min_rvol_base if variant == Variant.SIMPLE else spec.min_rvol_active
    if rvol >= momentum_rvol and change >= MOMENTUM_MIN_CHANGE:
        return Category.MOMENTUM

    if change > 0 and rvol >= ACCUMULATION_MIN_RVOL:
        return Category.ACCUMULATION

    return Category.BUILDING


def passes_fundamentals(row: Any, spec: FilterSpec) -> bool:
    """Each fundamental threshold applies only when the row carries that field."""
    float_shares = getattr(row, "float_shares", None)
    if float_shares is not None and spec.max_float_m > 0 and not float_shares < spec.max_float_m:
        return False

    short_interest = getattr(row, "short_interest_pct", None)
    if short_interest is not None and short_interest < spec.min_short_interest_pct:
        return False

    days_to_cover = getattr(row, "days_to_cover", None)
    if days_to_cover is not None and days_to_cover < spec.min_days_to_cover:
        return False

    borrow_fee = getattr(row, "borrow_fee_pct", None)
    if borrow_fee is not None and borrow_fee < spec.min_borrow_fee_pct:
        return False

    return True


def in_price_range(price: float, spec: FilterSpec) -> bool:
    """price_max <= 0 means no upper bound."""
    if price < spec.price_min:
        return False
    if spec.price_max > 0 and price > spec.price_max:
        return False
    return True


def qualify(row: Any, spec: FilterSpec, variant: Variant = Variant.FUNDAMENTALS) -> bool:
    """Base liquidity/price/volume gate, independent of category."""
    if not has_market_data(row):
        return False

    if not in_price_range(row.price, spec):
        return False

    volume = row.volume if variant == Variant.SIMPLE else row.avg_volume_10d
    if volume < spec.min_avg_vol_10d:
        return False

    if row.relative_volume < spec.min_rvol_base:
        return False

    if variant == Variant.FUNDAMENTALS and not passes_fundamentals(row, spec):
        return False

    return True


def is_export_eligible(row: Any) -> bool:
    return bool(row.qualified) and row.category not in NON_EXPORTABLE_CATEGORIES


class QualificationGate:
    """
    Applies categorization and qualification for one filter/variant pair.

    Used by the staging ledger on every pass; holds no state beyond its config.
    """

    def __init__(self, spec: FilterSpec, variant: Variant = Variant.FUNDAMENTALS):
        self.spec = spec
        self.variant = variant

    def categorize(self, row: Any) -> Category:
        return categorize(row, self.spec, self.variant)

    def qualify(self, row: Any) -> bool:
        return qualify(row, self.spec, self.variant)

    def evaluate(self, row: Any) -> Dict[str, Any]:
        """Return the category/qualified update for a row."""
        return {
            "category": self.categorize(row),
            "qualified": self.qualify(row),
        }
