import asyncio

import structlog
import yfinance as yf

from app.exceptions import NotFoundError, ProviderError
from app.market.providers.base import MarketDataProvider

logger = structlog.get_logger()

_QUOTE_FIELDS = (
    "last_price",
    "previous_close",
    "day_high",
    "day_low",
    "year_high",
    "year_low",
    "last_volume",
    "three_month_average_volume",
    "market_cap",
    "currency",
    "exchange",
)


def _read_fast_info(fast_info, field: str):
    # fast_info computes fields lazily and raises when the backing data is missing
    try:
        return getattr(fast_info, field, None)
    except Exception as exc:
        logger.debug("yfinance_fast_info_field_missing", field=field, error=str(exc))
        return None


def _fetch_quote(symbol: str) -> dict:
    """Fetch the current quote synchronously (to be run in a thread)."""
    fast_info = yf.Ticker(symbol).fast_info
    quote = {field: _read_fast_info(fast_info, field) for field in _QUOTE_FIELDS}
    if quote["last_price"] is None and quote["previous_close"] is None:
        raise NotFoundError("Ticker", symbol)
    return quote


def _fetch_summary(symbol: str) -> dict:
    """Fetch company summary info synchronously (to be run in a thread)."""
    info = yf.Ticker(symbol).info
    has_no_data = not info or (
        info.get("regularMarketPrice") is None
        and not info.get("shortName")
        and not info.get("longName")
    )
    if has_no_data:
        raise NotFoundError("Ticker", symbol)
    return info


def _fetch_history(symbol: str, period: str, interval: str) -> list[dict]:
    """Fetch price history synchronously (to be run in a thread)."""
    hist = yf.Ticker(symbol).history(period=period, interval=interval)
    if hist.empty:
        return []
    return [
        {
            "timestamp": ts.to_pydatetime(),
            "open": row.get("Open"),
            "high": row.get("High"),
            "low": row.get("Low"),
            "close": row.get("Close"),
            "volume": row.get("Volume"),
        }
        for ts, row in hist.iterrows()
    ]


def _fetch_shares(symbol: str) -> float | None:
    shares = _read_fast_info(yf.Ticker(symbol).fast_info, "shares")
    return float(shares) if shares else None


class YahooFinanceProvider(MarketDataProvider):
    async def get_quote(self, symbol: str) -> dict:
        try:
            return await asyncio.to_thread(_fetch_quote, symbol)
        except NotFoundError:
            raise
        except Exception as exc:
            logger.error("yfinance_quote_error", symbol=symbol, error=str(exc))
            raise ProviderError(f"Failed to fetch quote for {symbol}: {exc}") from exc

    async def get_summary(self, symbol: str) -> dict:
        try:
            return await asyncio.to_thread(_fetch_summary, symbol)
        except NotFoundError:
            raise
        except Exception as exc:
            logger.error("yfinance_summary_error", symbol=symbol, error=str(exc))
            raise ProviderError(f"Failed to fetch summary for {symbol}: {exc}") from exc

    async def get_history(self, symbol: str, period: str, interval: str) -> list[dict]:
        try:
            return await asyncio.to_thread(_fetch_history, symbol, period, interval)
        except Exception as exc:
            logger.error("yfinance_history_error", symbol=symbol, error=str(exc))
            raise ProviderError(f"Failed to fetch history for {symbol}: {exc}") from exc

    async def get_shares_outstanding(self, symbol: str) -> float | None:
        try:
            return await asyncio.to_thread(_fetch_shares, symbol)
        except Exception as exc:
            logger.error("yfinance_shares_error", symbol=symbol, error=str(exc))
            raise ProviderError(f"Failed to fetch shares for {symbol}: {exc}") from exc
