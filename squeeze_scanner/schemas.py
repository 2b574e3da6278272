"""
Pydantic schemas for the staging pipeline and the scoring engine.

Ratios vs percentages:
- change_pct, distance_to_high_pct and FilterSpec.ignition_delta_pct are ratios (0.08 = 8%).
- breakout_dist_pct, short interest and borrow fee fields are percentage points (25 = 25%).
- float_shares / max_float_m are millions of shares.
"""
from enum import Enum
from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field


class Category(str, Enum):
    """Trade-setup classification of a staged ticker."""
    PENDING = "PENDING"
    SQUEEZE = "SQUEEZE"
    BREAKOUT = "BREAKOUT"
    MOMENTUM = "MOMENTUM"
    ACCUMULATION = "ACCUMULATION"
    BUILDING = "BUILDING"


NON_EXPORTABLE_CATEGORIES = (Category.PENDING, Category.BUILDING)


class SignalLabel(str, Enum):
    STRONG_BUY = "STRONG BUY"
    BUY = "BUY"
    SPEC_BUY = "SPEC BUY"
    WATCH_CLOSELY = "WATCH CLOSELY"
    WATCH = "WATCH"


class PassOutcome(str, Enum):
    """How a pipeline invocation ended."""
    OK = "ok"
    COMPLETE = "complete"
    SKIPPED_LOCKED = "skipped_locked"
    FAILED = "failed"


class TickerRecord(BaseModel):
    """Listing entry produced by the symbol source."""
    ticker: str
    name: str = ""


class MarketMetrics(BaseModel):
    """Raw market-data fields supplied by the market-data oracle."""
    ticker: str
    price: Optional[float] = None
    volume: Optional[float] = None
    avg_volume_10d: Optional[float] = None
    prev_close: Optional[float] = None
    high_52_week: Optional[float] = None


class Fundamentals(BaseModel):
    """Short-squeeze fundamentals keyed by ticker."""
    ticker: str
    float_shares: Optional[float] = Field(default=None, description="Float in millions")
    short_interest_pct: Optional[float] = Field(default=None, description="Percentage points")
    days_to_cover: Optional[float] = None
    borrow_fee_pct: Optional[float] = Field(default=None, description="Annualized, percentage points")
    catalyst: Optional[str] = None
    news_score: Optional[float] = None


class StagingRow(BaseModel):
    """
    One ticker in the staging ledger.

    Created when a chunk is appended, then mutated in place as market data
    arrives and category/qualified/exported are recomputed.
    """
    ticker: str
    company: str = ""

    price: Optional[float] = None
    volume: Optional[float] = None
    dollar_volume: Optional[float] = None
    avg_volume_10d: Optional[float] = None
    relative_volume: Optional[float] = None
    prev_close: Optional[float] = None
    change_pct: Optional[float] = None
    high_52_week: Optional[float] = None
    distance_to_high_pct: Optional[float] = None

    category: Category = Category.PENDING
    qualified: bool = False
    exported: bool = False

    float_shares: Optional[float] = None
    short_interest_pct: Optional[float] = None
    days_to_cover: Optional[float] = None
    borrow_fee_pct: Optional[float] = None
    catalyst: Optional[str] = None
    news_score: Optional[float] = None

    class Config:
        use_enum_values = True


class MarketCacheRow(BaseModel):
    """Exported staging row. Append-only; a ticker appears at most once."""
    ticker: str
    company: str = ""

    price: Optional[float] = None
    volume: Optional[float] = None
    dollar_volume: Optional[float] = None
    avg_volume_10d: Optional[float] = None
    relative_volume: Optional[float] = None
    prev_close: Optional[float] = None
    change_pct: Optional[float] = None
    high_52_week: Optional[float] = None
    distance_to_high_pct: Optional[float] = None

    category: Category = Category.PENDING

    float_shares: Optional[float] = None
    short_interest_pct: Optional[float] = None
    days_to_cover: Optional[float] = None
    borrow_fee_pct: Optional[float] = None
    catalyst: Optional[str] = None
    news_score: Optional[float] = None

    exported_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        use_enum_values = True


class FilterSpec(BaseModel):
    """Named set of qualification thresholds."""
    name: str = Field(..., min_length=1)
    is_default: bool = False

    price_min: float = 0.0
    price_max: float = 0.0
    min_avg_vol_10d: float = 0.0
    min_rvol_base: float = 0.0
    min_rvol_active: float = 0.0
    ignition_rvol: float = Field(default=0.0, description="RVOL multiple, e.g. 3.0")
    ignition_delta_pct: float = Field(default=0.0, description="Ratio, e.g. 0.05 for +5%")
    breakout_dist_pct: float = Field(default=0.0, description="Percentage points below 52-week high")
    max_float_m: float = 0.0
    min_short_interest_pct: float = 0.0
    min_days_to_cover: float = 0.0
    min_borrow_fee_pct: float = 0.0

    horizon_text: str = ""
    scale_plan_text: str = ""


class PagingCursor(BaseModel):
    """Resumable position within the cached ticker universe."""
    total_symbols: int = Field(default=0, ge=0)
    next_index: int = Field(default=0, ge=0)

    @property
    def exhausted(self) -> bool:
        return self.next_index >= self.total_symbols


class TradeSignal(BaseModel):
    """Ranked output of a scoring run. Never persisted beyond the run."""
    rank: int
    ticker: str
    company: str = ""
    score: int = Field(ge=0, le=100)
    signal: SignalLabel
    price: float
    entry: float
    stop: float
    target_1: float
    target_2: float
    stretch_target: float
    risk_reward: float
    expected_move_pct: float
    pattern: Category
    notes: str = ""

    class Config:
        use_enum_values = True


class RunStatus(BaseModel):
    """Last-run status blob kept for later inspection."""
    step: str
    last_run: datetime = Field(default_factory=datetime.utcnow)
    last_error: Optional[str] = None


class PassResult(BaseModel):
    """Summary of one orchestrator invocation."""
    step: str
    outcome: PassOutcome = PassOutcome.OK
    rows_added: int = 0
    rows_exported: int = 0
    chunks_processed: int = 0
    cursor: Optional[PagingCursor] = None
    active_filter: Optional[str] = None
    duration_seconds: float = 0.0
    message: str = ""

    class Config:
        use_enum_values = True


class FilterComparison(BaseModel):
    """One filter's scoring result inside a comparison report."""
    filter_name: str
    candidates: int = 0
    signals: int = 0
    average_score: float = 0.0
    top_ticker: Optional[str] = None
    top_score: Optional[int] = None
    tickers: List[str] = Field(default_factory=list)


class ComparisonReport(BaseModel):
    report_id: str = Field(default_factory=lambda: datetime.utcnow().strftime("%Y%m%d_%H%M%S"))
    generated_at: datetime = Field(default_factory=datetime.utcnow)
    cache_rows: int = 0
    results: List[FilterComparison] = Field(default_factory=list)
