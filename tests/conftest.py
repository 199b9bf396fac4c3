"""Shared fakes for the market data tests. Nothing here touches the network."""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path

import aiosqlite

from app.config import MarketSettings, Settings
from app.database import connect
from app.exceptions import ProviderError
from app.market.history import HistoricalPriceFetcher
from app.market.market_cap import build_market_cap_resolver
from app.market.normalizer import QuoteNormalizer
from app.market.providers.base import MarketDataProvider
from app.market.repository import SecurityRepository
from app.market.schemas import PriceBar
from app.market.service import MarketService
from app.market.symbols import formatter_for_market

START = datetime(2024, 1, 1, tzinfo=UTC)


def make_bars(closes: Sequence[float], start: datetime = START) -> list[PriceBar]:
    return [
        PriceBar(
            timestamp=start + timedelta(days=i),
            open=close,
            high=close + 1,
            low=close - 1,
            close=close,
            volume=1_000,
        )
        for i, close in enumerate(closes)
    ]


def history_rows(closes: Sequence[float | None], start: datetime = START) -> list[dict]:
    return [
        {
            "timestamp": start + timedelta(days=i),
            "open": close,
            "high": None if close is None else close + 1,
            "low": None if close is None else close - 1,
            "close": close,
            "volume": 1_000,
        }
        for i, close in enumerate(closes)
    ]


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeProvider(MarketDataProvider):
    def __init__(
        self,
        quote: dict | None = None,
        summary: dict | None = None,
        history: list[dict] | None = None,
        shares: float | None = None,
        fail: Sequence[str] = (),
        delay: float = 0.0,
        slow: Sequence[str] = (),
    ) -> None:
        self.quote = quote if quote is not None else {}
        self.summary = summary if summary is not None else {}
        self.history = history if history is not None else []
        self.shares = shares
        self.fail = set(fail)
        self.delay = delay
        # Calls that sleep for ``delay``; every call when empty
        self.slow = set(slow)
        self.calls: Counter[str] = Counter()
        self.symbols: list[str] = []

    async def _call(self, name: str, symbol: str):
        self.calls[name] += 1
        self.symbols.append(symbol)
        if self.delay and (not self.slow or name in self.slow):
            await asyncio.sleep(self.delay)
        if name in self.fail:
            raise ProviderError(f"{name} unavailable")

    async def get_quote(self, symbol: str) -> dict:
        await self._call("quote", symbol)
        return dict(self.quote)

    async def get_summary(self, symbol: str) -> dict:
        await self._call("summary", symbol)
        return dict(self.summary)

    async def get_history(self, symbol: str, period: str, interval: str) -> list[dict]:
        await self._call("history", symbol)
        return list(self.history)

    async def get_shares_outstanding(self, symbol: str) -> float | None:
        await self._call("shares", symbol)
        return self.shares


def sample_quote(**overrides) -> dict:
    quote = {
        "last_price": 105.0,
        "previous_close": 100.0,
        "day_high": 106.0,
        "day_low": 99.5,
        "year_high": 120.0,
        "year_low": 80.0,
        "last_volume": 2_000_000,
        "three_month_average_volume": 1_000_000,
        "market_cap": 7_000_000.0,
    }
    quote.update(overrides)
    return quote


def sample_summary(**overrides) -> dict:
    summary = {
        "longName": "Tata Consultancy Services Limited",
        "sector": "Technology",
        "industry": "Information Technology Services",
        "marketCap": 6_500_000.0,
        "averageVolume": 1_200_000,
        "trailingPE": 30.5,
        "priceToBook": 12.1,
        "trailingAnnualDividendYield": 0.0125,
        "trailingEps": 120.4,
        "beta": 0.6,
        "sharesOutstanding": 50_000.0,
    }
    summary.update(overrides)
    return summary


def make_settings(**overrides) -> Settings:
    values = {
        "single_stale_seconds": 60.0,
        "bulk_stale_seconds": 60.0,
        "provider_timeout_seconds": 1.0,
        "refresh_timeout_seconds": 2.0,
        "trending_symbols": "",
        "market": MarketSettings(),
        "market_cap_estimates": {},
    }
    values.update(overrides)
    return Settings(**values)


def build_service(
    provider: MarketDataProvider,
    repository: SecurityRepository,
    clock: FakeClock,
    config: Settings | None = None,
) -> MarketService:
    config = config or make_settings()
    normalizer = QuoteNormalizer(config.market)
    formatter = formatter_for_market(config.market)
    return MarketService(
        provider=provider,
        repository=repository,
        normalizer=normalizer,
        fetcher=HistoricalPriceFetcher(provider, formatter),
        market_cap_resolver=build_market_cap_resolver(
            provider,
            normalizer,
            estimates=config.market_cap_estimates,
            step_timeout=config.provider_timeout_seconds,
        ),
        formatter=formatter,
        config=config,
        clock=clock,
    )


async def open_repository(tmp_path: Path) -> tuple[SecurityRepository, aiosqlite.Connection]:
    db = await connect(str(tmp_path / "securities.db"))
    return SecurityRepository(db), db
