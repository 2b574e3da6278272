"""
Filter store: named qualification parameter sets, one of them active.

Filters arrive as loosely formatted text ("300%", "500K", "$2.50") and are
normalized to numbers once, on the way in. Percent handling is asymmetric:
IgnitionRVOL and IgnitionDeltaPct are consumed as ratios ("300%" -> 3.0), every
other field keeps the bare percentage number ("300%" -> 300).
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from ..errors import ConfigError, NotFoundError
from ..schemas import FilterSpec
from ..storage import ACTIVE_FILTER_KEY, FILTER_TABLE_KEY, KeyedTable, StateStore


logger = logging.getLogger(__name__)

# Header-style names accepted in raw input, mapped to FilterSpec fields
RAW_FIELD_ALIASES: Dict[str, str] = {
    "Name": "name",
    "IsDefault": "is_default",
    "Default": "is_default",
    "PriceMin": "price_min",
    "PriceMax": "price_max",
    "MinAvgVol10D": "min_avg_vol_10d",
    "MinRVOLBase": "min_rvol_base",
    "MinRVOLActive": "min_rvol_active",
    "IgnitionRVOL": "ignition_rvol",
    "IgnitionDeltaPct": "ignition_delta_pct",
    "BreakoutDistPct": "breakout_dist_pct",
    "MaxFloatM": "max_float_m",
    "MinSIpct": "min_short_interest_pct",
    "MinDTC": "min_days_to_cover",
    "MinBorrowPct": "min_borrow_fee_pct",
    "Horizon": "horizon_text",
    "ScalePlan": "scale_plan_text",
}

RATIO_PERCENT_FIELDS = {"ignition_rvol", "ignition_delta_pct"}
TEXT_FIELDS = {"name", "horizon_text", "scale_plan_text"}
SUFFIX_MULTIPLIERS = {"K": 1e3, "M": 1e6, "B": 1e9}
TRUTHY = {"true", "yes", "y", "1", "x"}

DEFAULT_FILTERS: List[Dict[str, Any]] = [
    {
        "Name": "Squeeze Core",
        "IsDefault": "TRUE",
        "PriceMin": "1",
        "PriceMax": "20",
        "MinAvgVol10D": "500K",
        "MinRVOLBase": "1.5",
        "MinRVOLActive": "2",
        "IgnitionRVOL": "300%",
        "IgnitionDeltaPct": "5%",
        "BreakoutDistPct": "5%",
        "MaxFloatM": "50",
        "MinSIpct": "15%",
        "MinDTC": "2",
        "MinBorrowPct": "5%",
        "Horizon": "1-5 days",
        "ScalePlan": "1/3 at T1, 1/3 at T2, trail the rest",
    },
    {
        "Name": "Aggressive Squeeze",
        "IsDefault": "FALSE",
        "PriceMin": "0.5",
        "PriceMax": "10",
        "MinAvgVol10D": "1M",
        "MinRVOLBase": "2",
        "MinRVOLActive": "3",
        "IgnitionRVOL": "500%",
        "IgnitionDeltaPct": "10%",
        "BreakoutDistPct": "3%",
        "MaxFloatM": "20",
        "MinSIpct": "25%",
        "MinDTC": "3",
        "MinBorrowPct": "20%",
        "Horizon": "Intraday to 2 days",
        "ScalePlan": "1/2 at T1, trail the rest tight",
    },
    {
        "Name": "Swing Momentum",
        "IsDefault": "FALSE",
        "PriceMin": "5",
        "PriceMax": "100",
        "MinAvgVol10D": "2M",
        "MinRVOLBase": "1.2",
        "MinRVOLActive": "1.5",
        "IgnitionRVOL": "250%",
        "IgnitionDeltaPct": "3%",
        "BreakoutDistPct": "5%",
        "MaxFloatM": "500",
        "MinSIpct": "0",
        "MinDTC": "0",
        "MinBorrowPct": "0",
        "Horizon": "1-3 weeks",
        "ScalePlan": "1/3 at T1, 1/3 at T2, runner to stretch",
    },
]


def parse_number(value: Any, field: str = "") -> float:
    """
    Convert one raw filter value to a number.

    Empty -> 0. Trailing % divides by 100 only for ratio fields. Trailing K/M/B
    multiplies. Unparseable text is treated as 0 and logged.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip().replace(",", "").replace("$", "")
    if not text:
        return 0.0

    try:
        if text.endswith("%"):
            number = float(text[:-1].strip())
            return number / 100.0 if field in RATIO_PERCENT_FIELDS else number

        suffix = text[-1].upper()
        if suffix in SUFFIX_MULTIPLIERS:
            return float(text[:-1].strip()) * SUFFIX_MULTIPLIERS[suffix]

        return float(text)
    except ValueError:
        logger.warning(f"Unparseable value {value!r} for {field or 'filter field'}, using 0")
        return 0.0


def parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in TRUTHY


def normalize(raw: Mapping[str, Any]) -> FilterSpec:
    """Build a FilterSpec from heterogeneous raw fields (header names or field names)."""
    fields: Dict[str, Any] = {}
    for key, value in raw.items():
        field = RAW_FIELD_ALIASES.get(key, key)
        if field not in FilterSpec.model_fields:
            logger.debug(f"Ignoring unknown filter field {key!r}")
            continue
        if field in TEXT_FIELDS:
            fields[field] = "" if value is None else str(value).strip()
        elif field == "is_default":
            fields[field] = parse_flag(value)
        else:
            fields[field] = parse_number(value, field)

    if not fields.get("name"):
        raise ValueError("Filter is missing a name")
    return FilterSpec(**fields)


class FilterStore:
    """
    Named FilterSpecs plus a persisted pointer to the active one.

    Multiple specs flagged default: the first in storage order wins.
    """

    def __init__(self, store: StateStore):
        self.store = store
        self.table: KeyedTable[FilterSpec] = KeyedTable(store, FILTER_TABLE_KEY, FilterSpec, "name")

    def list(self) -> List[FilterSpec]:
        return self.table.all()

    def get_by_name(self, name: str) -> Optional[FilterSpec]:
        return self.table.get(name)

    def get_default(self) -> Optional[FilterSpec]:
        for spec in self.table.all():
            if spec.is_default:
                return spec
        return None

    def get_active_name(self) -> Optional[str]:
        return self.store.get(ACTIVE_FILTER_KEY)

    def get_active(self) -> FilterSpec:
        """
        Resolve the active filter.

        Falls back to (and persists) the default when no pointer is set or the
        pointer names a filter that no longer exists. Never picks an arbitrary
        filter: raises ConfigError when nothing resolves.
        """
        name = self.get_active_name()
        if name:
            spec = self.get_by_name(name)
            if spec is not None:
                return spec
            logger.warning(f"Active filter {name!r} no longer exists, falling back to default")

        default = self.get_default()
        if default is None:
            raise ConfigError(
                "No active filter is set and no filter is marked default. "
                "Run setup-filters or use-filter first."
            )

        self.store.set(ACTIVE_FILTER_KEY, default.name)
        logger.info(f"Active filter resolved to default {default.name!r}")
        return default

    def set_active(self, name: str) -> FilterSpec:
        spec = self.get_by_name(name)
        if spec is None:
            raise NotFoundError("Filter", name)
        self.store.set(ACTIVE_FILTER_KEY, spec.name)
        logger.info(f"Active filter set to {spec.name!r}")
        return spec

    def upsert(self, spec: FilterSpec) -> None:
        self.table.upsert(spec)

    def upsert_raw(self, raw: Mapping[str, Any]) -> FilterSpec:
        spec = normalize(raw)
        self.upsert(spec)
        return spec

    def seed_defaults(self, raw_filters: Optional[List[Dict[str, Any]]] = None) -> List[FilterSpec]:
        """Add the default filter set. Existing names are left untouched."""
        added = []
        for raw in raw_filters if raw_filters is not None else DEFAULT_FILTERS:
            spec = normalize(raw)
            if self.table.append(spec):
                added.append(spec)
        logger.info(f"Seeded {len(added)} filters ({self.table.count()} total)")
        return added

    def clear(self) -> None:
        self.table.clear()
        self.store.delete(ACTIVE_FILTER_KEY)
