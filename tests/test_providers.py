import httpx
import pytest

from refresh_engine.errors import ProviderFetchError
from refresh_engine.providers import (
    EODHDProvider, YahooChartClient, YahooFundamentalsProvider, YahooQuoteProvider,
)
from refresh_engine.providers.eodhd import parse_eod_bars

EOD_BARS = [
    {"date": "2024-01-02", "open": 9.40, "high": 9.60, "low": 9.35, "close": 9.55, "volume": 120000},
    {"date": "2023-12-29", "open": 9.30, "high": 9.45, "low": 9.25, "close": 9.40, "volume": 98000},
]


def _chart(meta):
    return {"chart": {"result": [{"meta": meta}], "error": None}}


def _eodhd(handler):
    return EODHDProvider("key", transport=httpx.MockTransport(handler), retry_delay=0,
                         rate_limited=False)


def _yahoo(handler):
    return YahooChartClient(transport=httpx.MockTransport(handler), retry_delay=0,
                            rate_limited=False)


def test_parse_eod_bars_computes_change_from_previous_close():
    q = parse_eod_bars("1155", EOD_BARS)
    assert q.price == 9.55
    assert q.previous_close == 9.40
    assert q.change == pytest.approx(0.15)
    assert q.change_percent == pytest.approx(1.6)
    assert q.volume == 120000 and q.source == "eodhd"
    assert parse_eod_bars("1155", []) is None
    assert parse_eod_bars("1155", {"error": "x"}) is None


@pytest.mark.asyncio
async def test_eodhd_batch_uses_klse_symbols_and_omits_unknown_codes():
    seen = []

    def handler(request: httpx.Request):
        seen.append(request.url.path)
        assert request.url.params["api_token"] == "key"
        assert request.url.params["order"] == "d"
        if request.url.path.endswith("/5347.KLSE"):
            return httpx.Response(404)
        return httpx.Response(200, json=EOD_BARS)

    out = await _eodhd(handler).fetch_batch(["1155", "5347"])
    assert sorted(seen) == ["/api/eod/1155.KLSE", "/api/eod/5347.KLSE"]
    assert list(out) == ["1155"]


@pytest.mark.asyncio
async def test_eodhd_all_requests_failing_raises():
    out = _eodhd(lambda request: httpx.Response(503))
    with pytest.raises(ProviderFetchError):
        await out.fetch_batch(["1155", "5347"])


@pytest.mark.asyncio
async def test_eodhd_retries_after_rate_limit():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(429) if calls["n"] == 1 else httpx.Response(200, json=EOD_BARS)

    out = await _eodhd(handler).fetch_batch(["1155"])
    assert calls["n"] == 2 and "1155" in out


@pytest.mark.asyncio
async def test_eodhd_without_key_raises():
    with pytest.raises(ProviderFetchError):
        await EODHDProvider("").fetch_batch(["1155"])


@pytest.mark.asyncio
async def test_yahoo_quote_falls_back_to_query2():
    hosts = []

    def handler(request: httpx.Request):
        hosts.append(request.url.host)
        assert request.url.path.endswith("/1155.KL")
        if request.url.host.startswith("query1"):
            return httpx.Response(200, json={"chart": {"result": []}})
        return httpx.Response(200, json=_chart({
            "regularMarketPrice": 9.6, "chartPreviousClose": 9.5,
            "regularMarketDayHigh": 9.7, "regularMarketDayLow": 9.45,
            "regularMarketVolume": 5000, "regularMarketTime": 1704171600,
        }))

    q = await YahooQuoteProvider(_yahoo(handler)).fetch_one("1155")
    assert hosts == ["query1.finance.yahoo.com", "query2.finance.yahoo.com"]
    assert q.price == 9.6 and q.previous_close == 9.5
    assert q.change == pytest.approx(0.1) and q.change_percent == pytest.approx(1.05)
    assert q.source == "yahoo" and q.timestamp.startswith("2024-01-02")


@pytest.mark.asyncio
async def test_yahoo_missing_price_means_no_quote():
    handler = lambda request: httpx.Response(200, json=_chart({"currency": "MYR"}))
    assert await YahooQuoteProvider(_yahoo(handler)).fetch_one("0001") is None


@pytest.mark.asyncio
async def test_yahoo_unreachable_raises():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ProviderFetchError):
        await YahooQuoteProvider(_yahoo(handler)).fetch_batch(["1155"])


@pytest.mark.asyncio
async def test_yahoo_fundamentals_from_chart_meta():
    handler = lambda request: httpx.Response(200, json=_chart({
        "regularMarketPrice": 9.6, "marketCap": 1.16e11,
        "fiftyTwoWeekHigh": 10.2, "fiftyTwoWeekLow": 8.7,
    }))
    out = await YahooFundamentalsProvider(_yahoo(handler)).fetch_batch(["1155"])
    snap = out["1155"]
    assert snap.market_cap == 1.16e11
    assert snap.week_52_high == 10.2 and snap.week_52_low == 8.7
