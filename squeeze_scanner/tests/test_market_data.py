"""
Market-data and fundamentals oracle tests.
"""
import httpx
import pytest

from squeeze_scanner.discovery.market_data import AlpacaMarketData, CsvFundamentals


def _bar(day: str, high: float, volume: float) -> dict:
    return {"t": f"2026-10-{day}T04:00:00Z", "o": high - 1, "h": high, "l": high - 2, "c": high - 0.5, "v": volume}


SNAPSHOTS = {
    "ABC": {
        "latestTrade": {"p": 10.0},
        "dailyBar": {"t": "2026-10-16T04:00:00Z", "c": 9.9, "h": 10.2, "v": 4_000_000},
        "prevDailyBar": {"c": 9.0},
    },
}

BARS_PAGE_1 = {
    "bars": {"ABC": [_bar("0%d" % d, 8.0 + d * 0.1, 1_000_000) for d in range(1, 7)]},
    "next_page_token": "page2",
}
BARS_PAGE_2 = {
    "bars": {"ABC": [_bar(str(d), 12.5 if d == 10 else 9.0, 1_000_000) for d in range(10, 16)]
             + [_bar("16", 10.2, 4_000_000)]},
    "next_page_token": None,
}


class TestAlpacaMarketData:

    def _provider(self, handler) -> AlpacaMarketData:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return AlpacaMarketData("key", "secret", client=client)

    def test_builds_metrics_from_snapshot_and_bars(self):
        seen_pages = []

        def handler(request):
            assert request.headers["APCA-API-KEY-ID"] == "key"
            if request.url.path == "/v2/stocks/snapshots":
                return httpx.Response(200, json=SNAPSHOTS)
            token = request.url.params.get("page_token")
            seen_pages.append(token)
            return httpx.Response(200, json=BARS_PAGE_2 if token == "page2" else BARS_PAGE_1)

        metrics = self._provider(handler).get_metrics(["ABC", "NOPE"])
        assert list(metrics) == ["ABC"]
        m = metrics["ABC"]
        assert m.price == 10.0
        assert m.volume == 4_000_000
        assert m.prev_close == 9.0
        assert m.avg_volume_10d == pytest.approx(1_000_000)
        assert m.high_52_week == 12.5
        assert seen_pages == [None, "page2"]

    def test_failed_bars_page_leaves_batch_unpriced(self):
        """A later bars page failing must not price tickers from the partial history."""
        def handler(request):
            if request.url.path == "/v2/stocks/snapshots":
                return httpx.Response(200, json=SNAPSHOTS)
            if request.url.params.get("page_token") == "page2":
                return httpx.Response(500, text="internal error")
            return httpx.Response(200, json=BARS_PAGE_1)

        assert self._provider(handler).get_metrics(["ABC"]) == {}

    def test_http_failure_leaves_tickers_unpriced(self):
        def handler(request):
            return httpx.Response(429, json={"message": "too many requests"})

        assert self._provider(handler).get_metrics(["ABC"]) == {}

    def test_network_failure_leaves_tickers_unpriced(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        assert self._provider(handler).get_metrics(["ABC"]) == {}


class TestCsvFundamentals:

    def test_reads_rows(self, tmp_path):
        path = tmp_path / "fundamentals.csv"
        path.write_text(
            "ticker,float_m,short_interest_pct,days_to_cover,borrow_fee_pct,catalyst,news_score\n"
            "abc,8.5,35%,6,60,FDA decision,8\n"
            "XYZ,,,,,,\n"
        )
        lookup = CsvFundamentals(str(path))
        abc = lookup.get("ABC")
        assert abc.float_shares == 8.5
        assert abc.short_interest_pct == 35.0
        assert abc.catalyst == "FDA decision"
        assert abc.news_score == 8.0

        xyz = lookup.get("XYZ")
        assert xyz.float_shares is None
        assert xyz.catalyst is None
        assert lookup.get("MISSING") is None

    def test_missing_file_is_empty(self, tmp_path):
        assert CsvFundamentals(str(tmp_path / "nope.csv")).get("ABC") is None
