from app.market.schemas import SecurityRecord, TrendingInfo

VOLUME_SPIKE_RATIO = 1.5
MOMENTUM_THRESHOLD_PCT = 2.0
RSI_OVERSOLD = 30
RSI_OVERBOUGHT = 70


def trending_score(record: SecurityRecord) -> TrendingInfo:
    """Weighted score: volume up to 30, one-day momentum up to 40, technicals up to 30."""
    score = 0.0
    reasons: list[str] = []

    current_volume = record.volume.current
    average_volume = record.volume.average
    if current_volume and average_volume:
        ratio = current_volume / average_volume
        score += min(ratio * 15, 30)
        if ratio >= VOLUME_SPIKE_RATIO:
            reasons.append("volume_spike")

    one_day = record.returns.one_day
    if one_day:
        score += min(abs(one_day) * 2, 40)
        if abs(one_day) >= MOMENTUM_THRESHOLD_PCT:
            reasons.append("price_momentum")

    indicators = record.technical_indicators
    if indicators.rsi is not None and (
        indicators.rsi < RSI_OVERSOLD or indicators.rsi > RSI_OVERBOUGHT
    ):
        score += 15
        reasons.append("rsi_extreme")

    sma20 = indicators.moving_averages.sma20
    sma50 = indicators.moving_averages.sma50
    price = record.price.current
    if sma20 and sma50 and price and price > sma20 > sma50:
        score += 15
        reasons.append("ma_alignment")

    return TrendingInfo(score=round(min(score, 100.0), 4), reasons=reasons)
