"""
Discovery module: builds the staged universe chunk by chunk.

Key principles:
- Every pass processes one bounded chunk and persists its cursor
- Categorization and qualification are deterministic functions of the active filter
- A ticker is exported to the market cache at most once
- Exported rows are never retracted by a filter switch
"""

from .symbol_source import SymbolSource, parse_listing
from .filters import FilterStore, normalize, DEFAULT_FILTERS
from .paging import PagingState, next_chunk
from .qualification import QualificationGate, categorize, qualify, is_export_eligible
from .ledger import StagingLedger
from .export import ExportStage, MarketCache, export_qualified
from .market_data import (
    AlpacaMarketData,
    CsvFundamentals,
    StaticFundamentals,
    StaticMarketData,
)

__all__ = [
    "SymbolSource",
    "parse_listing",
    "FilterStore",
    "normalize",
    "DEFAULT_FILTERS",
    "PagingState",
    "next_chunk",
    "QualificationGate",
    "categorize",
    "qualify",
    "is_export_eligible",
    "StagingLedger",
    "ExportStage",
    "MarketCache",
    "export_qualified",
    "AlpacaMarketData",
    "CsvFundamentals",
    "StaticFundamentals",
    "StaticMarketData",
]
