import asyncio
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

import structlog

from app.config import Settings
from app.exceptions import DataUnavailableError, NotFoundError, ValidationError
from app.market.history import HistoricalPriceFetcher, compute_returns
from app.market.indicators import compute_indicators
from app.market.market_cap import MarketCapContext, MarketCapResolver
from app.market.normalizer import CompanyProfile, NormalizedQuote, QuoteNormalizer
from app.market.providers.base import MarketDataProvider
from app.market.repository import SecurityRepository
from app.market.results import FetchResult, settle_all
from app.market.schemas import (
    DataSource,
    IndicatorSet,
    PriceBar,
    SecurityRecord,
    SecurityResult,
)
from app.market.symbols import SymbolFormatter, clean_symbol
from app.market.trending import trending_score

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _merge_block(current, incoming):
    """Overlay the non-null fields of ``incoming`` on ``current``."""
    updates = {k: v for k, v in incoming.model_dump().items() if v is not None}
    return current.model_copy(update=updates)


def _dedupe(symbols: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(symbols))


class MarketService:
    """Freshness-gated access to security records.

    Fresh records are served from the repository. Stale or missing records
    trigger one refresh cycle: quote, company summary and price history are
    fetched concurrently, successful pieces are merged into a copy of the
    prior record, the market cap chain runs, and the result is written back
    once.
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        repository: SecurityRepository,
        normalizer: QuoteNormalizer,
        fetcher: HistoricalPriceFetcher,
        market_cap_resolver: MarketCapResolver,
        formatter: SymbolFormatter,
        config: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._provider = provider
        self._repo = repository
        self._normalizer = normalizer
        self._fetcher = fetcher
        self._market_cap = market_cap_resolver
        self._formatter = formatter
        self._config = config
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def default_lookback(self) -> str:
        return self._config.history_lookback

    def normalize_symbol(self, symbol: str) -> str:
        cleaned = clean_symbol(symbol, self._config.market.known_suffixes)
        if not cleaned:
            raise ValidationError("Symbol must not be blank")
        return cleaned

    async def get_or_refresh(
        self, symbol: str, stale_seconds: float | None = None
    ) -> SecurityResult:
        symbol = self.normalize_symbol(symbol)
        threshold = self._config.single_stale_seconds if stale_seconds is None else stale_seconds

        record = await self._repo.load(symbol)
        if record is not None and self._is_fresh(record, threshold):
            return self._cached(record, threshold)

        # Shielded so a disconnecting caller still warms the cache. The lock is
        # taken inside the shield and stays held until the write-back is done.
        return await asyncio.shield(self._refresh_locked(symbol, threshold))

    async def _refresh_locked(self, symbol: str, threshold: float) -> SecurityResult:
        lock = self._locks.setdefault(symbol, asyncio.Lock())
        async with lock:
            # An overlapping request may have refreshed while we waited
            record = await self._repo.load(symbol)
            if record is not None and self._is_fresh(record, threshold):
                return self._cached(record, threshold)

            logger.info(
                "market_refresh_started",
                symbol=symbol,
                reason="missing" if record is None else "stale",
            )
            return await self._refresh(symbol, record)

    async def bulk_get_or_refresh(
        self, symbols: Iterable[str], stale_seconds: float | None = None
    ) -> list[SecurityResult]:
        cleaned = _dedupe(self.normalize_symbol(s) for s in symbols)
        if len(cleaned) > self._config.max_bulk_symbols:
            raise ValidationError(
                f"Maximum {self._config.max_bulk_symbols} symbols allowed per request"
            )
        threshold = self._config.bulk_stale_seconds if stale_seconds is None else stale_seconds
        return await self._gather(cleaned, threshold)

    async def get_trending(self, limit: int = 20) -> list[SecurityResult]:
        threshold = self._config.bulk_stale_seconds
        cutoff = self._clock() - timedelta(seconds=threshold)
        stale = await self._repo.find_stale_before(cutoff)
        symbols = _dedupe(
            [*self._config.trending_symbol_list, *(record.symbol for record in stale)]
        )

        logger.info("market_trending_refresh", symbols=len(symbols), stale=len(stale))
        results = await self._gather(symbols, threshold)
        refreshed = {result.record.symbol: result for result in results}

        records = await self._repo.list_active(limit)
        if not records:
            raise DataUnavailableError("trending")
        return [
            refreshed.get(record.symbol) or self._cached(record, threshold) for record in records
        ]

    async def get_history(
        self, symbol: str, lookback: str | None = None, interval: str = "1d"
    ) -> list[PriceBar]:
        symbol = self.normalize_symbol(symbol)
        bars = await self._fetcher.fetch(
            symbol, lookback or self._config.history_lookback, interval
        )
        if not bars:
            raise NotFoundError("Price history", symbol)
        return bars

    async def get_indicators(self, symbol: str, lookback: str | None = None) -> IndicatorSet:
        bars = await self.get_history(symbol, lookback)
        return compute_indicators(bars)

    async def _gather(self, symbols: list[str], threshold: float) -> list[SecurityResult]:
        results = await asyncio.gather(
            *(self.get_or_refresh(symbol, threshold) for symbol in symbols),
            return_exceptions=True,
        )

        successes: list[SecurityResult] = []
        for symbol, result in zip(symbols, results, strict=True):
            if isinstance(result, Exception):
                logger.warning("market_bulk_item_failed", symbol=symbol, error=str(result))
                continue
            successes.append(result)
        return successes

    async def _refresh(self, symbol: str, prior: SecurityRecord | None) -> SecurityResult:
        """One refresh cycle bounded by ``refresh_timeout_seconds``.

        The concurrent fetches and the market cap chain share the cycle's
        budget. Whatever arrived in time is merged and written back.
        """
        timeout = self._config.refresh_timeout_seconds
        deadline = asyncio.get_running_loop().time() + timeout
        provider_symbol = self._formatter(symbol)
        try:
            results = await asyncio.wait_for(
                settle_all(
                    {
                        "quote": self._provider.get_quote(provider_symbol),
                        "summary": self._provider.get_summary(provider_symbol),
                        "history": self._fetcher.fetch(symbol, self._config.history_lookback),
                    },
                    timeout=self._config.provider_timeout_seconds,
                ),
                timeout,
            )
        except TimeoutError:
            logger.error("market_refresh_timed_out", symbol=symbol, timeout=timeout)
            return self._fallback(symbol, prior)

        quote = self._parse_quote(symbol, results["quote"])
        profile = self._parse_summary(symbol, results["summary"])
        bars: list[PriceBar] = results["history"].value or []

        failed = [
            name
            for name, missing in (
                ("quote", quote is None),
                ("summary", profile is None),
                ("history", not bars),
            )
            if missing
        ]
        if failed:
            logger.warning("market_refresh_partial", symbol=symbol, failed=failed)

        if quote is None and profile is None and not bars:
            return self._fallback(symbol, prior)
        if prior is None and quote is None:
            logger.error("market_refresh_no_price", symbol=symbol)
            raise DataUnavailableError(symbol)

        now = self._clock()
        working = (
            prior.model_copy(deep=True)
            if prior is not None
            else SecurityRecord(symbol=symbol, last_updated=now)
        )

        if quote is not None:
            self._apply_quote(working, quote)
        if profile is not None:
            self._apply_profile(working, profile)
        if bars:
            working.technical_indicators = compute_indicators(bars)
            working.returns = compute_returns(bars)

        resolution = await self._market_cap.resolve(
            MarketCapContext(
                symbol=symbol,
                provider_symbol=provider_symbol,
                current_price=working.price.current,
                quote_market_cap=quote.market_cap if quote is not None else None,
                summary=profile,
                summary_requested=True,
                known_market_cap=working.market_cap,
            ),
            deadline=deadline,
        )
        if resolution.resolved:
            working.market_cap = resolution.value
        elif working.market_cap is not None:
            logger.info(
                "market_cap_preserved", symbol=symbol, market_cap=working.market_cap
            )

        working.trending = trending_score(working)
        working.last_updated = now
        working.is_active = True

        await self._repo.save(working)
        logger.info(
            "market_refresh_completed",
            symbol=symbol,
            created=prior is None,
            market_cap_source=resolution.source,
        )
        return SecurityResult(
            record=working, source=DataSource.live, is_stale=False, age_seconds=0.0
        )

    def _parse_quote(self, symbol: str, result: FetchResult) -> NormalizedQuote | None:
        if not result.ok or not result.value:
            return None
        quote = self._normalizer.normalize_quote(symbol, result.value)
        if quote.price.current is None:
            logger.warning("quote_without_price", symbol=symbol)
            return None
        return quote

    def _parse_summary(self, symbol: str, result: FetchResult) -> CompanyProfile | None:
        if not result.ok or not result.value:
            return None
        return self._normalizer.normalize_summary(result.value)

    @staticmethod
    def _apply_quote(record: SecurityRecord, quote: NormalizedQuote) -> None:
        record.price = _merge_block(record.price, quote.price)
        record.volume = _merge_block(record.volume, quote.volume)
        record.exchange = quote.exchange
        record.currency = quote.currency
        record.country = quote.country
        record.timezone = quote.timezone

    @staticmethod
    def _apply_profile(record: SecurityRecord, profile: CompanyProfile) -> None:
        record.name = profile.name or record.name
        record.sector = profile.sector or record.sector
        record.industry = profile.industry or record.industry
        record.fundamentals = _merge_block(record.fundamentals, profile.fundamentals)
        if profile.average_volume is not None:
            record.volume = record.volume.model_copy(update={"average": profile.average_volume})

    def _fallback(self, symbol: str, prior: SecurityRecord | None) -> SecurityResult:
        if prior is None:
            logger.error("market_refresh_failed", symbol=symbol)
            raise DataUnavailableError(symbol)
        logger.warning("market_serving_stale", symbol=symbol, age_seconds=self._age(prior))
        return SecurityResult(
            record=prior,
            source=DataSource.stale_fallback,
            is_stale=True,
            age_seconds=self._age(prior),
        )

    def _cached(self, record: SecurityRecord, threshold: float) -> SecurityResult:
        age = self._age(record)
        logger.debug("market_cache_hit", symbol=record.symbol, age_seconds=age)
        return SecurityResult(
            record=record,
            source=DataSource.cache,
            is_stale=age > threshold,
            age_seconds=age,
        )

    def _age(self, record: SecurityRecord) -> float:
        return max((self._clock() - record.last_updated).total_seconds(), 0.0)

    def _is_fresh(self, record: SecurityRecord, threshold: float) -> bool:
        return self._age(record) <= threshold
