from refresh_engine.providers.base import FundamentalsProvider, QuoteProvider
from refresh_engine.providers.eodhd import EODHDProvider
from refresh_engine.providers.yahoo import (
    YahooChartClient, YahooFundamentalsProvider, YahooQuoteProvider,
)

__all__ = [
    "QuoteProvider", "FundamentalsProvider",
    "EODHDProvider", "YahooChartClient", "YahooQuoteProvider", "YahooFundamentalsProvider",
]
