"""
Filter normalization and active-filter resolution tests.
"""
import pytest

from squeeze_scanner.discovery.filters import (
    DEFAULT_FILTERS,
    FilterStore,
    normalize,
    parse_number,
)
from squeeze_scanner.errors import ConfigError, NotFoundError
from squeeze_scanner.schemas import FilterSpec
from squeeze_scanner.storage import ACTIVE_FILTER_KEY


class TestNormalize:
    """Raw text to numbers."""

    def test_percent_is_ratio_only_for_ignition_fields(self):
        spec = normalize({
            "Name": "F",
            "IgnitionRVOL": "300%",
            "IgnitionDeltaPct": "5%",
            "MinSIpct": "300%",
            "BreakoutDistPct": "5%",
        })
        assert spec.ignition_rvol == pytest.approx(3.0)
        assert spec.ignition_delta_pct == pytest.approx(0.05)
        assert spec.min_short_interest_pct == pytest.approx(300.0)
        assert spec.breakout_dist_pct == pytest.approx(5.0)

    @pytest.mark.parametrize("raw,expected", [
        ("500K", 500_000.0),
        ("1.5M", 1_500_000.0),
        ("2B", 2_000_000_000.0),
        ("2m", 2_000_000.0),
        ("", 0.0),
        ("   ", 0.0),
        (None, 0.0),
        ("$2.50", 2.5),
        ("1,250,000", 1_250_000.0),
        (7, 7.0),
    ])
    def test_parse_number(self, raw, expected):
        assert parse_number(raw, "min_avg_vol_10d") == pytest.approx(expected)

    def test_unparseable_is_zero(self, caplog):
        assert parse_number("lots", "price_min") == 0.0
        assert "Unparseable" in caplog.text

    def test_header_and_field_names_both_accepted(self):
        a = normalize({"Name": "A", "PriceMin": "1", "IsDefault": "TRUE"})
        b = normalize({"name": "B", "price_min": 1, "is_default": True})
        assert a.price_min == b.price_min == 1.0
        assert a.is_default is True and b.is_default is True

    def test_unknown_keys_ignored(self):
        spec = normalize({"Name": "A", "Colour": "blue"})
        assert spec.name == "A"

    def test_missing_name_raises(self):
        with pytest.raises(ValueError, match="name"):
            normalize({"PriceMin": "1"})

    def test_default_set_normalizes(self):
        specs = [normalize(raw) for raw in DEFAULT_FILTERS]
        core = specs[0]
        assert core.name == "Squeeze Core"
        assert core.is_default is True
        assert core.min_avg_vol_10d == 500_000
        assert core.ignition_rvol == pytest.approx(3.0)
        assert sum(1 for s in specs if s.is_default) == 1


class TestFilterStore:
    """Active filter pointer and default fallback."""

    def test_active_falls_back_to_default_and_persists(self, store):
        filters = FilterStore(store)
        filters.upsert(FilterSpec(name="Other"))
        filters.upsert(FilterSpec(name="Main", is_default=True))

        assert filters.get_active().name == "Main"
        assert store.get(ACTIVE_FILTER_KEY) == "Main"

    def test_no_active_and_no_default_raises(self, store):
        filters = FilterStore(store)
        filters.upsert(FilterSpec(name="Other"))
        with pytest.raises(ConfigError):
            filters.get_active()

    def test_empty_store_raises(self, store):
        with pytest.raises(ConfigError):
            FilterStore(store).get_active()

    def test_first_default_in_storage_order_wins(self, store):
        filters = FilterStore(store)
        filters.upsert(FilterSpec(name="First", is_default=True))
        filters.upsert(FilterSpec(name="Second", is_default=True))
        assert filters.get_default().name == "First"
        assert filters.get_active().name == "First"

    def test_stale_pointer_falls_back_to_default(self, store):
        filters = FilterStore(store)
        filters.upsert(FilterSpec(name="Main", is_default=True))
        store.set(ACTIVE_FILTER_KEY, "Deleted")
        assert filters.get_active().name == "Main"
        assert filters.get_active_name() == "Main"

    def test_set_active_unknown_raises(self, store):
        filters = FilterStore(store)
        filters.upsert(FilterSpec(name="Main", is_default=True))
        with pytest.raises(NotFoundError):
            filters.set_active("Nope")
        assert filters.get_active_name() is None

    def test_set_active_overrides_default(self, store):
        filters = FilterStore(store)
        filters.upsert(FilterSpec(name="Main", is_default=True))
        filters.upsert(FilterSpec(name="Alt"))
        filters.set_active("Alt")
        assert filters.get_active().name == "Alt"

    def test_seed_defaults_is_idempotent(self, store):
        filters = FilterStore(store)
        first = filters.seed_defaults()
        second = filters.seed_defaults()
        assert len(first) == len(DEFAULT_FILTERS)
        assert second == []
        assert len(filters.list()) == len(DEFAULT_FILTERS)

    def test_seed_does_not_overwrite_edits(self, store):
        filters = FilterStore(store)
        filters.upsert_raw({"Name": "Squeeze Core", "PriceMin": "3"})
        filters.seed_defaults()
        assert filters.get_by_name("Squeeze Core").price_min == 3.0
