import math
from dataclasses import dataclass, field

from app.config import MarketSettings
from app.market.schemas import FundamentalsBlock, PriceBlock, VolumeBlock


def to_float(value: object) -> float | None:
    """Coerce a provider value to float; missing, NaN and non-numeric values become None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _percent(value: object) -> float | None:
    fraction = to_float(value)
    return fraction * 100 if fraction is not None else None


@dataclass
class NormalizedQuote:
    symbol: str
    price: PriceBlock
    volume: VolumeBlock
    market_cap: float | None
    exchange: str
    currency: str
    country: str
    timezone: str


@dataclass
class CompanyProfile:
    name: str | None = None
    sector: str | None = None
    industry: str | None = None
    market_cap: float | None = None
    average_volume: float | None = None
    fundamentals: FundamentalsBlock = field(default_factory=FundamentalsBlock)


class QuoteNormalizer:
    def __init__(self, market: MarketSettings) -> None:
        self._market = market

    def normalize_quote(self, symbol: str, raw: dict) -> NormalizedQuote:
        current = to_float(raw.get("last_price"))
        previous_close = to_float(raw.get("previous_close"))

        return NormalizedQuote(
            symbol=symbol,
            price=PriceBlock(
                current=current if current is not None else previous_close,
                previous_close=previous_close,
                day_high=to_float(raw.get("day_high")),
                day_low=to_float(raw.get("day_low")),
                fifty_two_week_high=to_float(raw.get("year_high")),
                fifty_two_week_low=to_float(raw.get("year_low")),
            ),
            volume=VolumeBlock(
                current=to_float(raw.get("last_volume")),
                average=to_float(raw.get("three_month_average_volume")),
            ),
            market_cap=to_float(raw.get("market_cap")),
            exchange=self._market.exchange,
            currency=self._market.currency,
            country=self._market.country,
            timezone=self._market.timezone,
        )

    def normalize_summary(self, raw: dict) -> CompanyProfile:
        return CompanyProfile(
            name=raw.get("longName") or raw.get("shortName"),
            sector=raw.get("sector"),
            industry=raw.get("industry"),
            market_cap=to_float(raw.get("marketCap")),
            average_volume=to_float(raw.get("averageVolume")),
            fundamentals=FundamentalsBlock(
                pe_ratio=to_float(raw.get("trailingPE")),
                price_to_book=to_float(raw.get("priceToBook")),
                dividend_yield=_percent(raw.get("trailingAnnualDividendYield")),
                eps=to_float(raw.get("trailingEps")),
                beta=to_float(raw.get("beta")),
                shares_outstanding=to_float(raw.get("sharesOutstanding")),
            ),
        )
