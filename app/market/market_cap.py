"""Market capitalisation resolution chain.

The chain is an ordered list of named steps sharing one signature,
``(MarketCapContext) -> float | None``. Steps run in order and the first
value greater than zero wins; a failing step only moves the chain on.
Remote steps are bounded by the per-step timeout and by whatever is left of
the caller's deadline; once the deadline passes they are skipped.
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass

import structlog

from app.market.normalizer import CompanyProfile, QuoteNormalizer, to_float
from app.market.providers.base import MarketDataProvider

logger = structlog.get_logger()

# Rough sizes for large caps, in the market's currency
DEFAULT_MARKET_CAP_ESTIMATES: dict[str, float] = {
    "RELIANCE": 1_800_000_000_000,
    "TCS": 1_500_000_000_000,
    "HDFCBANK": 800_000_000_000,
    "INFY": 750_000_000_000,
    "ITC": 650_000_000_000,
    "HINDUNILVR": 600_000_000_000,
    "ICICIBANK": 550_000_000_000,
    "BHARTIARTL": 500_000_000_000,
    "MARUTI": 480_000_000_000,
    "KOTAKBANK": 450_000_000_000,
    "LT": 400_000_000_000,
    "SUNPHARMA": 400_000_000_000,
    "BAJFINANCE": 400_000_000_000,
    "SBIN": 380_000_000_000,
    "ASIANPAINT": 350_000_000_000,
    "AXISBANK": 300_000_000_000,
    "WIPRO": 300_000_000_000,
    "ULTRACEMCO": 250_000_000_000,
    "TITAN": 250_000_000_000,
    "TATASTEEL": 200_000_000_000,
    "NESTLEIND": 200_000_000_000,
    "POWERGRID": 200_000_000_000,
    "NTPC": 150_000_000_000,
}


@dataclass
class MarketCapContext:
    symbol: str
    provider_symbol: str
    current_price: float | None = None
    quote_market_cap: float | None = None
    summary: CompanyProfile | None = None
    # The summary endpoint was already tried this cycle, whatever the outcome
    summary_requested: bool = False
    # Market cap already on record for the symbol
    known_market_cap: float | None = None


MarketCapStrategy = Callable[[MarketCapContext], Awaitable[float | None]]


@dataclass(frozen=True)
class MarketCapStep:
    name: str
    resolve: MarketCapStrategy
    remote: bool = True


@dataclass(frozen=True)
class MarketCapResolution:
    value: float | None = None
    source: str | None = None

    @property
    def resolved(self) -> bool:
        return self.value is not None


async def quote_market_cap(ctx: MarketCapContext) -> float | None:
    return ctx.quote_market_cap


def summary_market_cap(
    provider: MarketDataProvider, normalizer: QuoteNormalizer
) -> MarketCapStrategy:
    async def _resolve(ctx: MarketCapContext) -> float | None:
        summary = ctx.summary
        if summary is None:
            if ctx.summary_requested:
                return None
            summary = normalizer.normalize_summary(await provider.get_summary(ctx.provider_symbol))
        return summary.market_cap

    return _resolve


def shares_times_price(provider: MarketDataProvider) -> MarketCapStrategy:
    async def _resolve(ctx: MarketCapContext) -> float | None:
        if not ctx.current_price:
            return None
        shares = ctx.summary.fundamentals.shares_outstanding if ctx.summary else None
        if not shares:
            shares = to_float(await provider.get_shares_outstanding(ctx.provider_symbol))
        if not shares:
            return None
        return shares * ctx.current_price

    return _resolve


def static_estimate(estimates: Mapping[str, float]) -> MarketCapStrategy:
    async def _resolve(ctx: MarketCapContext) -> float | None:
        # Only fills a gap, never replaces a value already known
        if ctx.known_market_cap is not None:
            return None
        return estimates.get(ctx.symbol)

    return _resolve


class MarketCapResolver:
    def __init__(self, steps: Sequence[MarketCapStep], step_timeout: float | None = None) -> None:
        self._steps = list(steps)
        self._step_timeout = step_timeout

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self._steps]

    async def resolve(
        self, ctx: MarketCapContext, deadline: float | None = None
    ) -> MarketCapResolution:
        """Run the steps in order. ``deadline`` is an event loop time."""
        loop = asyncio.get_running_loop()
        for step in self._steps:
            timeout = None
            if step.remote:
                timeout = self._step_timeout
                if deadline is not None:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        logger.warning(
                            "market_cap_step_skipped", symbol=ctx.symbol, step=step.name
                        )
                        continue
                    timeout = remaining if timeout is None else min(timeout, remaining)

            try:
                value = to_float(await asyncio.wait_for(step.resolve(ctx), timeout))
            except Exception as exc:
                logger.warning(
                    "market_cap_step_failed",
                    symbol=ctx.symbol,
                    step=step.name,
                    error=str(exc) or type(exc).__name__,
                )
                continue

            if value is not None and value > 0:
                logger.info("market_cap_resolved", symbol=ctx.symbol, step=step.name, value=value)
                return MarketCapResolution(value=value, source=step.name)

        logger.info("market_cap_unresolved", symbol=ctx.symbol)
        return MarketCapResolution()


def build_market_cap_resolver(
    provider: MarketDataProvider,
    normalizer: QuoteNormalizer,
    estimates: Mapping[str, float] | None = None,
    step_timeout: float | None = None,
) -> MarketCapResolver:
    table = DEFAULT_MARKET_CAP_ESTIMATES if estimates is None else estimates
    return MarketCapResolver(
        [
            MarketCapStep("quote", quote_market_cap, remote=False),
            MarketCapStep("summary", summary_market_cap(provider, normalizer)),
            MarketCapStep("shares_times_price", shares_times_price(provider)),
            MarketCapStep("static_estimate", static_estimate(table), remote=False),
        ],
        step_timeout=step_timeout,
    )
