from collections.abc import Sequence

import structlog

from app.market.normalizer import to_float
from app.market.providers.base import MarketDataProvider
from app.market.schemas import PriceBar, ReturnsBlock
from app.market.symbols import SymbolFormatter, identity_formatter

logger = structlog.get_logger()

# Trading-day lookbacks for the returns block
_RETURN_PERIODS = {
    "one_day": 1,
    "one_week": 5,
    "one_month": 21,
    "three_months": 63,
    "six_months": 126,
    "one_year": 252,
}


class HistoricalPriceFetcher:
    def __init__(
        self,
        provider: MarketDataProvider,
        formatter: SymbolFormatter = identity_formatter,
    ) -> None:
        self._provider = provider
        self._formatter = formatter

    async def fetch(
        self, symbol: str, lookback: str = "1y", interval: str = "1d"
    ) -> list[PriceBar]:
        """Return bars oldest to newest, or an empty list when the provider fails."""
        provider_symbol = self._formatter(symbol)
        try:
            rows = await self._provider.get_history(provider_symbol, lookback, interval)
        except Exception as exc:
            logger.warning(
                "history_fetch_failed",
                symbol=symbol,
                provider_symbol=provider_symbol,
                error=str(exc),
            )
            return []

        bars = [bar for bar in (_to_bar(row) for row in rows or []) if bar is not None]
        bars.sort(key=lambda bar: bar.timestamp)
        logger.debug("history_fetched", symbol=symbol, bars=len(bars), lookback=lookback)
        return bars


def _to_bar(row: dict) -> PriceBar | None:
    close = to_float(row.get("close"))
    timestamp = row.get("timestamp")
    if close is None or timestamp is None:
        return None
    return PriceBar(
        timestamp=timestamp,
        open=to_float(row.get("open")),
        high=to_float(row.get("high")),
        low=to_float(row.get("low")),
        close=close,
        volume=to_float(row.get("volume")),
    )


def _percent_change(current: float, past: float) -> float | None:
    if not past:
        return None
    return (current - past) / past * 100


def compute_returns(bars: Sequence[PriceBar]) -> ReturnsBlock:
    if not bars:
        return ReturnsBlock()

    current = bars[-1].close
    values: dict[str, float | None] = {}
    for name, periods in _RETURN_PERIODS.items():
        if len(bars) <= periods:
            values[name] = None
            continue
        values[name] = _percent_change(current, bars[-1 - periods].close)

    # YTD is measured from the last close of the previous year when available
    year = bars[-1].timestamp.year
    prior = [bar for bar in bars if bar.timestamp.year < year]
    base = prior[-1] if prior else next(bar for bar in bars if bar.timestamp.year == year)
    ytd = _percent_change(current, base.close) if base is not bars[-1] else None

    return ReturnsBlock(ytd=ytd, **values)
