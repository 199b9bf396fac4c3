"""Technical indicators computed from an oldest-to-newest list of price bars.

Every function is pure. Insufficient history is not an error: the indicator
is reported as ``None`` (or ``Trend.unknown`` for :func:`trend`).
"""

from collections.abc import Sequence
from statistics import fmean, pstdev

from app.market.schemas import (
    MACD,
    BollingerBands,
    IndicatorSet,
    MovingAverages,
    PriceBar,
    Trend,
)

LEVEL_WINDOW = 30
TREND_MIN_BARS = 20


def _closes(bars: Sequence[PriceBar]) -> list[float]:
    return [bar.close for bar in bars]


def _ema_series(values: Sequence[float], period: int) -> list[float]:
    """EMA values aligned to ``values[period - 1:]``, seeded with the SMA of the first window."""
    if period <= 0 or len(values) < period:
        return []
    k = 2 / (period + 1)
    current = fmean(values[:period])
    series = [current]
    for value in values[period:]:
        current = value * k + current * (1 - k)
        series.append(current)
    return series


def sma(bars: Sequence[PriceBar], period: int) -> float | None:
    if period <= 0 or len(bars) < period:
        return None
    return fmean(_closes(bars[-period:]))


def ema(bars: Sequence[PriceBar], period: int) -> float | None:
    series = _ema_series(_closes(bars), period)
    return series[-1] if series else None


def rsi(bars: Sequence[PriceBar], period: int = 14) -> float | None:
    """Wilder's RSI. Needs ``period + 1`` bars."""
    if period <= 0 or len(bars) < period + 1:
        return None

    closes = _closes(bars)
    deltas = [curr - prev for prev, curr in zip(closes, closes[1:], strict=False)]

    avg_gain = sum(d for d in deltas[:period] if d > 0) / period
    avg_loss = sum(-d for d in deltas[:period] if d < 0) / period

    for delta in deltas[period:]:
        gain = delta if delta > 0 else 0.0
        loss = -delta if delta < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100 - 100 / (1 + rs)


def macd(
    bars: Sequence[PriceBar],
    fast: int = 12,
    slow: int = 26,
    signal_period: int = 9,
) -> MACD | None:
    """MACD line with its signal EMA and histogram.

    ``signal`` and ``histogram`` stay ``None`` until the MACD line itself has
    ``signal_period`` points, i.e. ``slow + signal_period - 1`` bars.
    """
    closes = _closes(bars)
    fast_series = _ema_series(closes, fast)
    slow_series = _ema_series(closes, slow)
    if not fast_series or not slow_series:
        return None

    offset = slow - fast
    line = [f - s for f, s in zip(fast_series[offset:], slow_series, strict=False)]
    value = line[-1]

    signal_series = _ema_series(line, signal_period)
    if not signal_series:
        return MACD(value=value)
    signal = signal_series[-1]
    return MACD(value=value, signal=signal, histogram=value - signal)


def bollinger_bands(
    bars: Sequence[PriceBar], period: int = 20, width: float = 2.0
) -> BollingerBands | None:
    middle = sma(bars, period)
    if middle is None:
        return None
    half_width = width * pstdev(_closes(bars[-period:]))
    return BollingerBands(upper=middle + half_width, middle=middle, lower=middle - half_width)


def support(bars: Sequence[PriceBar]) -> float | None:
    window = bars[-LEVEL_WINDOW:]
    if not window:
        return None
    return min(bar.low if bar.low is not None else bar.close for bar in window)


def resistance(bars: Sequence[PriceBar]) -> float | None:
    window = bars[-LEVEL_WINDOW:]
    if not window:
        return None
    return max(bar.high if bar.high is not None else bar.close for bar in window)


def trend(bars: Sequence[PriceBar]) -> Trend:
    if len(bars) < TREND_MIN_BARS:
        return Trend.unknown

    close = bars[-1].close
    sma20 = sma(bars, 20)
    sma50 = sma(bars, 50)
    if sma20 is None or sma50 is None:
        return Trend.sideways

    if close > sma20 > sma50:
        return Trend.bullish
    if close < sma20 < sma50:
        return Trend.bearish
    return Trend.sideways


def compute_indicators(bars: Sequence[PriceBar]) -> IndicatorSet:
    return IndicatorSet(
        rsi=rsi(bars),
        moving_averages=MovingAverages(
            sma20=sma(bars, 20),
            sma50=sma(bars, 50),
            sma200=sma(bars, 200),
            ema12=ema(bars, 12),
            ema26=ema(bars, 26),
        ),
        macd=macd(bars),
        bollinger_bands=bollinger_bands(bars),
        support=support(bars),
        resistance=resistance(bars),
        trend=trend(bars),
    )
