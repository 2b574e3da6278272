"""
Tests for listing fetch and parse.
"""
import httpx
import pytest

from squeeze_scanner.discovery.symbol_source import (
    SymbolSource,
    is_tradeable_symbol,
    parse_listing,
)
from squeeze_scanner.errors import FetchError


LISTING = "\n".join([
    "Symbol|Security Name|Market Category|Test Issue|Financial Status|Round Lot Size|ETF|NextShares",
    "AAPL|Apple Inc. - Common Stock|Q|N|N|100|N|N",
    "ZXZZT|NASDAQ TEST STOCK|G|Y|N|100|N|N",
    "QQQ|Invesco QQQ Trust|G|N|N|100|Y|N",
    "ABCDW|ABCD Corp Warrant|S|N|N|100|N|N",
    "ABCDU|ABCD Corp Unit|S|N|N|100|N|N",
    "EFGWS|EFG Corp Warrants|S|N|N|100|N|N",
    "BRK.B|Berkshire Class B|Q|N|N|100|N|N",
    "AB$C|Bad Symbol|Q|N|N|100|N|N",
    "|Empty Symbol|Q|N|N|100|N|N",
    "MSFT|Microsoft Corporation - Common Stock|Q|N|N|100|N|N",
    "File Creation Time: 1019202608:00|||||||",
])


class TestParseListing:
    """Filtering and ordering of listing rows."""

    def test_keeps_common_stock_in_source_order(self):
        records = parse_listing(LISTING)
        assert [r.ticker for r in records] == ["AAPL", "BRK.B", "MSFT"]
        assert records[0].name == "Apple Inc. - Common Stock"

    def test_header_and_footer_skipped(self):
        tickers = [r.ticker for r in parse_listing(LISTING)]
        assert "Symbol" not in tickers
        assert not any(t.startswith("File Creation") for t in tickers)

    def test_positional_columns_without_named_header(self):
        """Without recognizable headers the documented positions are used (ETF at 5)."""
        text = "\n".join([
            "c0|c1|c2|c3|c4|c5|c6",
            "AAA|Alpha|Q|N|N|N|N",
            "ETFX|Some Fund|Q|N|N|Y|N",
            "footer",
        ])
        assert [r.ticker for r in parse_listing(text)] == ["AAA"]

    def test_empty_or_header_only_listing(self):
        assert parse_listing("") == []
        assert parse_listing("Symbol|Security Name\n") == []

    @pytest.mark.parametrize("symbol,expected", [
        ("AAPL", True),
        ("BRK.B", True),
        ("BF-B", True),
        ("ABCW", False),
        ("ABCWS", False),
        ("ABCU", False),
        ("abc", False),
        ("AB1", False),
        ("", False),
    ])
    def test_symbol_rules(self, symbol, expected):
        assert is_tradeable_symbol(symbol) is expected


class TestSymbolSource:
    """HTTP behaviour of the fetch."""

    def _client(self, handler) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(handler))

    def test_fetch_parses_body(self):
        def handler(request):
            return httpx.Response(200, text=LISTING)

        source = SymbolSource("https://example.test/listing.txt", client=self._client(handler))
        records = source.fetch_universe()
        assert [r.ticker for r in records] == ["AAPL", "BRK.B", "MSFT"]

    def test_non_2xx_raises_fetch_error(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        source = SymbolSource("https://example.test/listing.txt", client=self._client(handler))
        with pytest.raises(FetchError) as exc_info:
            source.fetch_universe()
        assert exc_info.value.status_code == 503

    def test_network_failure_raises_fetch_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        source = SymbolSource("https://example.test/listing.txt", client=self._client(handler))
        with pytest.raises(FetchError, match="connection refused"):
            source.fetch_universe()
