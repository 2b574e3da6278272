"""
Shared fixtures for scanner tests.
"""
import sys
from pathlib import Path
from typing import List

import pytest

root_dir = Path(__file__).parent.parent.parent
if str(root_dir) not in sys.path:
    sys.path.insert(0, str(root_dir))

from squeeze_scanner.config import ScannerConfig
from squeeze_scanner.schemas import FilterSpec, MarketMetrics, StagingRow, TickerRecord
from squeeze_scanner.storage import MemoryStateStore


def make_row(
    ticker: str = "ABC",
    price: float = 10.0,
    change: float = 0.08,
    rvol: float = 4.0,
    distance: float = 0.03,
    avg_volume: float = 1_000_000.0,
    **extra,
) -> StagingRow:
    """Staging row with every market field populated from a few knobs."""
    volume = rvol * avg_volume
    return StagingRow(
        ticker=ticker,
        company=f"{ticker} Corp",
        price=price,
        volume=volume,
        dollar_volume=price * volume,
        avg_volume_10d=avg_volume,
        relative_volume=rvol,
        prev_close=price / (1 + change),
        change_pct=change,
        high_52_week=price / (1 - distance),
        distance_to_high_pct=distance,
        **extra,
    )


def make_metrics(
    ticker: str,
    price: float = 10.0,
    prev_close: float = 9.0,
    volume: float = 4_000_000.0,
    avg_volume: float = 1_000_000.0,
    high: float = 10.3,
) -> MarketMetrics:
    return MarketMetrics(
        ticker=ticker,
        price=price,
        volume=volume,
        avg_volume_10d=avg_volume,
        prev_close=prev_close,
        high_52_week=high,
    )


class FakeSource:
    """Symbol source returning a fixed universe and counting fetches."""

    def __init__(self, tickers: List[str]):
        self.universe = [TickerRecord(ticker=t, name=f"{t} Inc") for t in tickers]
        self.fetch_count = 0

    def fetch_universe(self) -> List[TickerRecord]:
        self.fetch_count += 1
        return list(self.universe)


@pytest.fixture
def spec() -> FilterSpec:
    return FilterSpec(
        name="Test",
        is_default=True,
        price_min=1,
        price_max=20,
        min_avg_vol_10d=500_000,
        min_rvol_base=1.5,
        min_rvol_active=2.0,
        ignition_rvol=3.0,
        ignition_delta_pct=0.05,
        breakout_dist_pct=5,
        max_float_m=50,
        min_short_interest_pct=15,
        min_days_to_cover=2,
        min_borrow_fee_pct=5,
        horizon_text="1-5 days",
    )


@pytest.fixture
def strict_spec(spec) -> FilterSpec:
    return spec.model_copy(update={"name": "Strict", "is_default": False, "price_min": 15.0})


@pytest.fixture
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def scanner_config(tmp_path) -> ScannerConfig:
    return ScannerConfig(
        state_path=str(tmp_path / "state" / "state.json"),
        log_dir=str(tmp_path / "logs"),
        chunk_size=2,
        lock_timeout_seconds=0.0,
        top_n=10,
        tracker_top_k=3,
    )
