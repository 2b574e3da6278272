"""
Configuration for the scanner, loaded from environment variables.
"""
import os
from dataclasses import dataclass
from enum import Enum


NASDAQ_LISTED_URL = "https://www.nasdaqtrader.com/dynamic/SymDir/nasdaqlisted.txt"


class Variant(str, Enum):
    """Qualification/scoring variant chosen per deployment."""
    SIMPLE = "simple"
    FUNDAMENTALS = "fundamentals"


@dataclass
class ScannerConfig:
    state_path: str = "squeeze_scanner/state/state.json"
    log_dir: str = "squeeze_scanner/logs"
    listing_url: str = NASDAQ_LISTED_URL
    fundamentals_csv: str = ""

    alpaca_key_id: str = ""
    alpaca_secret_key: str = ""

    variant: Variant = Variant.FUNDAMENTALS

    chunk_size: int = 1200
    full_pass_seconds: float = 300.0
    lock_timeout_seconds: float = 5.0
    lock_stale_seconds: float = 900.0

    top_n: int = 10
    tracker_top_k: int = 5

    def __post_init__(self):
        self._validate()

    def _validate(self):
        """Reject values the pipeline cannot run with."""
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.full_pass_seconds <= 0:
            raise ValueError(
                f"full_pass_seconds must be positive, got {self.full_pass_seconds}"
            )
        if self.lock_timeout_seconds < 0:
            raise ValueError("lock_timeout_seconds cannot be negative")
        if self.full_pass_seconds >= self.lock_stale_seconds:
            raise ValueError(
                f"full_pass_seconds ({self.full_pass_seconds}) must be below "
                f"lock_stale_seconds ({self.lock_stale_seconds})"
            )
        if self.top_n <= 0:
            raise ValueError(f"top_n must be positive, got {self.top_n}")
        if self.tracker_top_k < 0:
            raise ValueError("tracker_top_k cannot be negative")

    def has_market_data_credentials(self) -> bool:
        return bool(self.alpaca_key_id and self.alpaca_secret_key)

    def get_variant_description(self) -> str:
        """Get human-readable description of the qualification variant."""
        if self.variant == Variant.SIMPLE:
            return "SIMPLE: price/volume/RVOL gate"
        return "FUNDAMENTALS: price/volume/RVOL gate plus float, short interest, DTC and borrow fee"


def load_config() -> ScannerConfig:
    """Load configuration from environment variables."""
    variant_str = os.getenv("SCANNER_VARIANT", "fundamentals").lower()
    try:
        variant = Variant(variant_str)
    except ValueError:
        variant = Variant.FUNDAMENTALS

    return ScannerConfig(
        state_path=os.getenv("SCANNER_STATE_PATH", "squeeze_scanner/state/state.json"),
        log_dir=os.getenv("SCANNER_LOG_DIR", "squeeze_scanner/logs"),
        listing_url=os.getenv("SYMBOL_LISTING_URL", NASDAQ_LISTED_URL),
        fundamentals_csv=os.getenv("FUNDAMENTALS_CSV", ""),
        alpaca_key_id=os.getenv("ALPACA_KEY_ID", ""),
        alpaca_secret_key=os.getenv("ALPACA_SECRET_KEY", ""),
        variant=variant,
        chunk_size=int(os.getenv("SCANNER_CHUNK_SIZE", "1200")),
        full_pass_seconds=float(os.getenv("SCANNER_FULL_PASS_SECONDS", "300")),
        lock_timeout_seconds=float(os.getenv("SCANNER_LOCK_TIMEOUT_SECONDS", "5")),
        lock_stale_seconds=float(os.getenv("SCANNER_LOCK_STALE_SECONDS", "900")),
        top_n=int(os.getenv("SCANNER_TOP_N", "10")),
        tracker_top_k=int(os.getenv("SCANNER_TRACKER_TOP_K", "5")),
    )
