"""
Exchange listing fetch and parse.

Produces the raw ticker universe. Test issues, ETFs, warrants and units are
dropped here so nothing downstream ever sees them.
"""
import logging
import re
from typing import Dict, List, Optional

import httpx

from ..errors import FetchError
from ..schemas import TickerRecord


logger = logging.getLogger(__name__)

VALID_SYMBOL = re.compile(r"^[A-Z.\-]+$")
EXCLUDED_SUFFIXES = ("WS", "W", "U")

# Positional layout used when the header does not name the columns
DEFAULT_COLUMNS = {
    "symbol": 0,
    "name": 1,
    "market_category": 2,
    "test_issue": 3,
    "financial_status": 4,
    "etf": 5,
    "next_shares": 6,
}

HEADER_NAMES = {
    "symbol": "Symbol",
    "name": "Security Name",
    "test_issue": "Test Issue",
    "etf": "ETF",
}


def resolve_columns(header_line: str) -> Dict[str, int]:
    """Map logical column names to positions, preferring names found in the header."""
    columns = dict(DEFAULT_COLUMNS)
    headers = [h.strip() for h in header_line.split("|")]
    for key, title in HEADER_NAMES.items():
        if title in headers:
            columns[key] = headers.index(title)
    return columns


def _field(parts: List[str], index: int) -> str:
    return parts[index].strip() if index < len(parts) else ""


def is_tradeable_symbol(symbol: str) -> bool:
    """Common-stock check: allowed characters and no warrant/unit suffix."""
    if not symbol:
        return False
    if not VALID_SYMBOL.match(symbol):
        return False
    if symbol.endswith(EXCLUDED_SUFFIXES):
        return False
    return True


def parse_listing(text: str) -> List[TickerRecord]:
    """
    Parse a pipe-delimited listing.

    The first line is the header and the last line is the file-creation footer;
    both are skipped. Source order is preserved.
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        return []

    columns = resolve_columns(lines[0])
    records: List[TickerRecord] = []
    dropped = 0

    for line in lines[1:-1]:
        parts = line.split("|")
        symbol = _field(parts, columns["symbol"])

        if _field(parts, columns["test_issue"]).upper() == "Y":
            dropped += 1
            continue
        if _field(parts, columns["etf"]).upper() == "Y":
            dropped += 1
            continue
        if not is_tradeable_symbol(symbol):
            dropped += 1
            continue

        records.append(TickerRecord(ticker=symbol, name=_field(parts, columns["name"])))

    logger.info(f"Parsed listing: {len(records)} tickers kept, {dropped} dropped")
    return records


class SymbolSource:
    """Pull-style fetch of the exchange listing."""

    def __init__(self, url: str, client: Optional[httpx.Client] = None, timeout: float = 30.0):
        self.url = url
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def fetch_universe(self) -> List[TickerRecord]:
        """Fetch and parse the listing. Raises FetchError on any transport or HTTP failure."""
        logger.info(f"Fetching symbol listing from {self.url}")
        try:
            response = self.client.get(self.url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchError(
                f"Listing fetch failed with HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(f"Listing fetch failed: {e}") from e

        return parse_listing(response.text)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
