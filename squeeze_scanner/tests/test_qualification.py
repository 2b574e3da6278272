"""
Categorization, qualification and staging-ledger tests.
"""
import pytest

from squeeze_scanner.config import Variant
from squeeze_scanner.discovery.export import ExportStage, MarketCache
from squeeze_scanner.discovery.ledger import StagingLedger
from squeeze_scanner.discovery.market_data import StaticFundamentals
from squeeze_scanner.discovery.qualification import (
    QualificationGate,
    categorize,
    compute_derived_metrics,
    is_export_eligible,
    qualify,
)
from squeeze_scanner.schemas import Category, Fundamentals, MarketMetrics, StagingRow, TickerRecord
from squeeze_scanner.storage import LEDGER_FILTER_KEY

from conftest import make_metrics, make_row


class TestDerivedMetrics:

    def test_values(self):
        derived = compute_derived_metrics(make_metrics("A", price=10, prev_close=8, volume=3e6, avg_volume=1e6, high=12.5))
        assert derived["dollar_volume"] == pytest.approx(3e7)
        assert derived["relative_volume"] == pytest.approx(3.0)
        assert derived["change_pct"] == pytest.approx(0.25)
        assert derived["distance_to_high_pct"] == pytest.approx(0.2)

    def test_new_high_clamps_distance_to_zero(self):
        derived = compute_derived_metrics(make_metrics("A", price=11, high=10))
        assert derived["distance_to_high_pct"] == 0.0

    def test_missing_or_zero_inputs_give_none(self):
        derived = compute_derived_metrics(MarketMetrics(ticker="A", price=5, volume=100, avg_volume_10d=0))
        assert derived["relative_volume"] is None
        assert derived["change_pct"] is None
        assert derived["distance_to_high_pct"] is None


class TestCategorize:
    """First-match category chain."""

    def test_squeeze(self, spec):
        row = make_row(change=0.08, rvol=4.0, distance=0.20)
        assert categorize(row, spec) == Category.SQUEEZE

    def test_squeeze_wins_over_breakout(self, spec):
        row = make_row(change=0.08, rvol=4.0, distance=0.03)
        assert categorize(row, spec) == Category.SQUEEZE

    def test_squeeze_with_low_ignition_thresholds(self, spec):
        loose = spec.model_copy(update={"ignition_rvol": 2.5, "ignition_delta_pct": 0.02})
        row = make_row(change=0.08, rvol=4.0, distance=0.03)
        assert categorize(row, loose) == Category.SQUEEZE

    def test_breakout_compares_percentage_points(self, spec):
        assert categorize(make_row(change=0.01, rvol=1.0, distance=0.04), spec) == Category.BREAKOUT
        assert categorize(make_row(change=0.01, rvol=1.0, distance=0.06), spec) == Category.BUILDING

    def test_momentum_threshold_depends_on_variant(self, spec):
        row = make_row(change=0.02, rvol=1.7, distance=0.20)
        assert categorize(row, spec, Variant.SIMPLE) == Category.MOMENTUM
        assert categorize(row, spec, Variant.FUNDAMENTALS) == Category.ACCUMULATION

    def test_momentum_in_fundamentals_variant(self, spec):
        row = make_row(change=0.02, rvol=2.5, distance=0.20)
        assert categorize(row, spec, Variant.FUNDAMENTALS) == Category.MOMENTUM

    def test_building(self, spec):
        assert categorize(make_row(change=-0.01, rvol=1.0, distance=0.20), spec) == Category.BUILDING
        assert categorize(make_row(change=0.005, rvol=1.2, distance=0.20), spec) == Category.BUILDING

    def test_pending_without_market_data(self, spec):
        assert categorize(StagingRow(ticker="X"), spec) == Category.PENDING
        assert categorize(StagingRow(ticker="X", price=5.0), spec) == Category.PENDING


class TestQualify:

    def test_liquid_row_qualifies(self, spec):
        assert qualify(make_row(), spec) is True

    def test_no_market_data(self, spec):
        assert qualify(StagingRow(ticker="X"), spec) is False

    def test_price_range(self, spec):
        assert qualify(make_row(price=25.0), spec) is False
        assert qualify(make_row(price=0.5), spec) is False
        unbounded = spec.model_copy(update={"price_max": 0.0})
        assert qualify(make_row(price=250.0), unbounded) is True

    def test_rvol_below_base(self, spec):
        assert qualify(make_row(rvol=1.2), spec) is False

    def test_simple_variant_gates_on_today_volume(self, spec):
        row = make_row(avg_volume=300_000.0, rvol=2.0)
        assert qualify(row, spec, Variant.FUNDAMENTALS) is False
        assert qualify(row, spec, Variant.SIMPLE) is True

    def test_fundamentals_only_checked_when_present(self, spec):
        assert qualify(make_row(), spec, Variant.FUNDAMENTALS) is True
        weak_si = make_row(short_interest_pct=5.0)
        assert qualify(weak_si, spec, Variant.FUNDAMENTALS) is False
        assert qualify(weak_si, spec, Variant.SIMPLE) is True

    def test_float_must_be_below_max(self, spec):
        assert qualify(make_row(float_shares=49.9), spec) is True
        assert qualify(make_row(float_shares=50.0), spec) is False

    def test_export_eligibility(self, spec):
        gate = QualificationGate(spec)
        row = make_row()
        row = row.model_copy(update=gate.evaluate(row))
        assert is_export_eligible(row)
        building = make_row(change=-0.01, rvol=1.6, distance=0.2)
        building = building.model_copy(update=gate.evaluate(building))
        assert building.category == Category.BUILDING
        assert building.qualified is True
        assert not is_export_eligible(building)


class TestStagingLedger:

    def test_append_skips_existing(self, store):
        ledger = StagingLedger(store)
        assert ledger.append([TickerRecord(ticker="A"), TickerRecord(ticker="B")]) == 2
        assert ledger.append([TickerRecord(ticker="B"), TickerRecord(ticker="C")]) == 1
        assert [r.ticker for r in ledger.rows()] == ["A", "B", "C"]

    def test_apply_metrics_and_fundamentals(self, store, spec):
        ledger = StagingLedger(store)
        ledger.append([TickerRecord(ticker="A", name="Alpha")])
        lookup = StaticFundamentals({"A": Fundamentals(ticker="A", short_interest_pct=30.0, catalyst="FDA")})
        assert ledger.apply_metrics({"A": make_metrics("A"), "ZZZ": make_metrics("ZZZ")}, lookup) == 1

        row = ledger.get("A")
        assert row.relative_volume == pytest.approx(4.0)
        assert row.short_interest_pct == 30.0
        assert row.catalyst == "FDA"
        assert row.company == "Alpha"

    def test_pending_tickers(self, store):
        ledger = StagingLedger(store)
        ledger.append([TickerRecord(ticker=t) for t in "ABC"])
        ledger.apply_metrics({"B": make_metrics("B")})
        assert ledger.pending_tickers() == ["A", "C"]
        assert ledger.pending_tickers(limit=1) == ["A"]

    def test_recompute_counts(self, store, spec):
        ledger = StagingLedger(store)
        ledger.append([TickerRecord(ticker="A"), TickerRecord(ticker="B")])
        ledger.apply_metrics({"A": make_metrics("A")})
        counts = ledger.recompute(spec)
        assert counts == {"SQUEEZE": 1, "PENDING": 1}
        assert ledger.get("A").qualified is True
        assert ledger.get("B").qualified is False

    def test_filter_switch_keeps_exported_rows(self, store, spec, strict_spec):
        """A exported under the first filter stays; B is re-graded under the second."""
        ledger = StagingLedger(store)
        cache = MarketCache(store)
        exporter = ExportStage(ledger, cache)

        ledger.sync_filter(spec)
        ledger.append([TickerRecord(ticker="A")])
        ledger.apply_metrics({"A": make_metrics("A")})
        ledger.recompute(spec)
        assert exporter.export_qualified() == 1

        ledger.append([TickerRecord(ticker="B")])
        ledger.apply_metrics({"B": make_metrics("B")})
        ledger.recompute(spec)
        assert ledger.get("B").qualified is True

        assert ledger.sync_filter(strict_spec) is True
        assert ledger.get("B").category == Category.PENDING
        assert ledger.get("B").qualified is False

        ledger.recompute(strict_spec)
        assert ledger.get("B").qualified is False
        a = ledger.get("A")
        assert a.exported is True and a.qualified is True
        assert store.get(LEDGER_FILTER_KEY) == "Strict"

        assert exporter.export_qualified() == 0
        assert [r.ticker for r in cache.rows()] == ["A"]

    def test_sync_same_filter_is_noop(self, store, spec):
        ledger = StagingLedger(store)
        assert ledger.sync_filter(spec) is False
        assert ledger.sync_filter(spec) is False

    def test_reset_flags(self, store, spec):
        ledger = StagingLedger(store)
        ledger.append([TickerRecord(ticker="A")])
        ledger.apply_metrics({"A": make_metrics("A")})
        ledger.recompute(spec)
        ExportStage(ledger, MarketCache(store)).export_qualified()
        assert ledger.get("A").exported is True

        assert ledger.reset_flags() == 1
        row = ledger.get("A")
        assert (row.category, row.qualified, row.exported) == (Category.PENDING, False, False)
        assert row.price == 10.0
