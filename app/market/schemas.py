from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class PriceBar(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    open: float | None = None
    high: float | None = None
    low: float | None = None
    close: float
    volume: float | None = None


class PriceBlock(BaseModel):
    current: float | None = None
    previous_close: float | None = None
    day_high: float | None = None
    day_low: float | None = None
    fifty_two_week_high: float | None = None
    fifty_two_week_low: float | None = None


class VolumeBlock(BaseModel):
    current: float | None = None
    average: float | None = None


class FundamentalsBlock(BaseModel):
    pe_ratio: float | None = None
    price_to_book: float | None = None
    dividend_yield: float | None = None  # percent
    eps: float | None = None
    beta: float | None = None
    shares_outstanding: float | None = None


class ReturnsBlock(BaseModel):
    one_day: float | None = None
    one_week: float | None = None
    one_month: float | None = None
    three_months: float | None = None
    six_months: float | None = None
    one_year: float | None = None
    ytd: float | None = None


class MovingAverages(BaseModel):
    sma20: float | None = None
    sma50: float | None = None
    sma200: float | None = None
    ema12: float | None = None
    ema26: float | None = None


class MACD(BaseModel):
    value: float
    signal: float | None = None
    histogram: float | None = None


class BollingerBands(BaseModel):
    upper: float
    middle: float
    lower: float


class Trend(StrEnum):
    bullish = "Bullish"
    bearish = "Bearish"
    sideways = "Sideways"
    unknown = "Unknown"


class IndicatorSet(BaseModel):
    rsi: float | None = None
    moving_averages: MovingAverages = Field(default_factory=MovingAverages)
    macd: MACD | None = None
    bollinger_bands: BollingerBands | None = None
    support: float | None = None
    resistance: float | None = None
    trend: Trend = Trend.unknown


# The persisted snapshot has the same shape as a freshly computed set.
TechnicalIndicators = IndicatorSet


class TrendingInfo(BaseModel):
    score: float = Field(default=0.0, ge=0, le=100)
    reasons: list[str] = Field(default_factory=list)


class SecurityRecord(BaseModel):
    symbol: str
    name: str | None = None
    sector: str | None = None
    industry: str | None = None
    exchange: str | None = None
    currency: str | None = None
    country: str | None = None
    timezone: str | None = None
    price: PriceBlock = Field(default_factory=PriceBlock)
    volume: VolumeBlock = Field(default_factory=VolumeBlock)
    fundamentals: FundamentalsBlock = Field(default_factory=FundamentalsBlock)
    market_cap: float | None = None
    technical_indicators: TechnicalIndicators = Field(default_factory=IndicatorSet)
    returns: ReturnsBlock = Field(default_factory=ReturnsBlock)
    trending: TrendingInfo = Field(default_factory=TrendingInfo)
    last_updated: datetime
    is_active: bool = True


class DataSource(StrEnum):
    cache = "cache"
    live = "live"
    stale_fallback = "stale_fallback"


class SecurityResult(BaseModel):
    record: SecurityRecord
    source: DataSource
    is_stale: bool
    age_seconds: float


class ResponseMeta(BaseModel):
    source: DataSource
    is_stale: bool
    last_updated: datetime
    age_seconds: float


class SecurityResponse(BaseModel):
    data: SecurityRecord
    meta: ResponseMeta


class BulkSecurityResponse(BaseModel):
    count: int
    data: list[SecurityResponse]


class HistoryResponse(BaseModel):
    symbol: str
    lookback: str
    interval: str
    count: int
    data: list[PriceBar]
