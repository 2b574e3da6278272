"""
Market-data and fundamentals oracles.

The pipeline only consumes already-computed numeric fields per ticker. A ticker
the oracle cannot price simply stays PENDING in the ledger and is retried on a
later pass.
"""
import csv
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

import httpx

from ..schemas import Fundamentals, MarketMetrics


logger = logging.getLogger(__name__)


class MarketDataProvider(Protocol):
    def get_metrics(self, tickers: List[str]) -> Dict[str, MarketMetrics]: ...


class FundamentalsLookup(Protocol):
    def get(self, ticker: str) -> Optional[Fundamentals]: ...


class StaticMarketData:
    """Market data served from a prepared mapping (replays, tests)."""

    def __init__(self, metrics: Optional[Dict[str, MarketMetrics]] = None):
        self.metrics = dict(metrics or {})
        self.requested: List[List[str]] = []

    def get_metrics(self, tickers: List[str]) -> Dict[str, MarketMetrics]:
        self.requested.append(list(tickers))
        return {t: self.metrics[t] for t in tickers if t in self.metrics}


class StaticFundamentals:
    def __init__(self, records: Optional[Dict[str, Fundamentals]] = None):
        self.records = dict(records or {})

    def get(self, ticker: str) -> Optional[Fundamentals]:
        return self.records.get(ticker)


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    text = str(value).strip().replace(",", "").rstrip("%")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


class CsvFundamentals:
    """
    Fundamentals lookup backed by a CSV file.

    Expected headers: ticker, float_m, short_interest_pct, days_to_cover,
    borrow_fee_pct, catalyst, news_score. Missing file -> empty lookup.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._records: Optional[Dict[str, Fundamentals]] = None

    def _load(self) -> Dict[str, Fundamentals]:
        records: Dict[str, Fundamentals] = {}
        if not self.path.exists():
            logger.warning(f"Fundamentals file {self.path} not found, lookup is empty")
            return records

        with open(self.path, newline="") as f:
            reader = csv.DictReader(f)
            for row in reader:
                ticker = (row.get("ticker") or "").strip().upper()
                if not ticker:
                    continue
                catalyst = (row.get("catalyst") or "").strip() or None
                records[ticker] = Fundamentals(
                    ticker=ticker,
                    float_shares=_optional_float(row.get("float_m")),
                    short_interest_pct=_optional_float(row.get("short_interest_pct")),
                    days_to_cover=_optional_float(row.get("days_to_cover")),
                    borrow_fee_pct=_optional_float(row.get("borrow_fee_pct")),
                    catalyst=catalyst,
                    news_score=_optional_float(row.get("news_score")),
                )
        logger.info(f"Loaded fundamentals for {len(records)} tickers from {self.path}")
        return records

    def get(self, ticker: str) -> Optional[Fundamentals]:
        if self._records is None:
            self._records = self._load()
        return self._records.get(ticker)


def _batched(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class AlpacaMarketData:
    """
    Market-data oracle on the Alpaca data API.

    Snapshots give price, today's volume and previous close; a year of daily
    bars gives the 52-week high and the trailing 10-day average volume.
    """

    DATA_URL = "https://data.alpaca.markets"
    BATCH_SIZE = 100
    AVG_VOLUME_DAYS = 10
    HIGH_LOOKBACK_DAYS = 365

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        client: Optional[httpx.Client] = None,
        feed: str = "iex",
    ):
        self.headers = {
            "APCA-API-KEY-ID": api_key,
            "APCA-API-SECRET-KEY": secret_key,
        }
        self.feed = feed
        self._client = client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=30.0)
        return self._client

    def _request(self, endpoint: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """GET one data endpoint. Failures are logged and return None."""
        url = f"{self.DATA_URL}{endpoint}"
        try:
            response = self.client.get(url, headers=self.headers, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Market data request {endpoint} failed: HTTP {e.response.status_code}")
            return None
        except httpx.HTTPError as e:
            logger.warning(f"Market data request {endpoint} failed: {e}")
            return None

    def _get_snapshots(self, symbols: List[str]) -> Dict[str, Any]:
        data = self._request(
            "/v2/stocks/snapshots",
            {"symbols": ",".join(symbols), "feed": self.feed},
        )
        return data or {}

    def _get_daily_bars(self, symbols: List[str]) -> Optional[Dict[str, List[Dict[str, Any]]]]:
        """
        Year of daily bars per symbol, following page tokens.

        Returns None if any page fails: a partial history would give a wrong
        52-week high and average volume.
        """
        start = (datetime.utcnow() - timedelta(days=self.HIGH_LOOKBACK_DAYS)).strftime("%Y-%m-%d")
        params: Dict[str, Any] = {
            "symbols": ",".join(symbols),
            "timeframe": "1Day",
            "start": start,
            "limit": 10000,
            "adjustment": "split",
            "feed": self.feed,
        }
        bars: Dict[str, List[Dict[str, Any]]] = {}
        while True:
            data = self._request("/v2/stocks/bars", params)
            if data is None:
                return None
            for symbol, symbol_bars in (data.get("bars") or {}).items():
                bars.setdefault(symbol, []).extend(symbol_bars or [])
            token = data.get("next_page_token")
            if not token:
                break
            params["page_token"] = token
        return bars

    def get_metrics(self, tickers: List[str]) -> Dict[str, MarketMetrics]:
        """Price what the API returns. A batch with incomplete bar history stays unpriced."""
        results: Dict[str, MarketMetrics] = {}
        for batch in _batched(list(tickers), self.BATCH_SIZE):
            snapshots = self._get_snapshots(batch)
            bars = self._get_daily_bars(batch)
            if bars is None:
                logger.warning(f"Daily bars incomplete for {len(batch)} tickers, leaving them unpriced")
                continue
            for symbol in batch:
                metrics = self._build_metrics(symbol, snapshots.get(symbol), bars.get(symbol, []))
                if metrics is not None:
                    results[symbol] = metrics
        logger.info(f"Market data: {len(results)}/{len(tickers)} tickers priced")
        return results

    def _build_metrics(
        self,
        symbol: str,
        snapshot: Optional[Dict[str, Any]],
        bars: List[Dict[str, Any]],
    ) -> Optional[MarketMetrics]:
        if not snapshot:
            return None

        daily = snapshot.get("dailyBar") or {}
        prev_daily = snapshot.get("prevDailyBar") or {}
        latest_trade = snapshot.get("latestTrade") or {}

        price = latest_trade.get("p") or daily.get("c")
        volume = daily.get("v")
        prev_close = prev_daily.get("c")

        # Bars before today feed the trailing average; today's bar is still forming
        today = (daily.get("t") or "")[:10]
        completed = [b for b in bars if (b.get("t") or "")[:10] != today]
        recent = completed[-self.AVG_VOLUME_DAYS:]
        avg_volume = sum(b.get("v", 0) for b in recent) / len(recent) if recent else None

        highs = [b.get("h") for b in bars if b.get("h") is not None]
        if daily.get("h") is not None:
            highs.append(daily["h"])
        high_52_week = max(highs) if highs else None

        return MarketMetrics(
            ticker=symbol,
            price=price,
            volume=volume,
            avg_volume_10d=avg_volume,
            prev_close=prev_close,
            high_52_week=high_52_week,
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
