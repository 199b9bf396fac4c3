"""Freshness gate, merge policy and refresh orchestration."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from conftest import (
    FakeClock,
    FakeProvider,
    build_service,
    history_rows,
    make_settings,
    open_repository,
    sample_quote,
    sample_summary,
)

from app.exceptions import DataUnavailableError, NotFoundError, ValidationError
from app.market.schemas import (
    DataSource,
    FundamentalsBlock,
    PriceBlock,
    SecurityRecord,
    Trend,
)

NOW = datetime(2024, 6, 3, 10, 0, tzinfo=UTC)


def _prior(age_seconds: float, **overrides) -> SecurityRecord:
    values = {
        "symbol": "TCS",
        "name": "TCS Ltd",
        "price": PriceBlock(current=90.0, previous_close=89.0),
        "fundamentals": FundamentalsBlock(pe_ratio=20.0, beta=0.9),
        "last_updated": NOW - timedelta(seconds=age_seconds),
    }
    values.update(overrides)
    return SecurityRecord(**values)


def _full_provider(**overrides) -> FakeProvider:
    values = {
        "quote": sample_quote(),
        "summary": sample_summary(),
        "history": history_rows([float(i) for i in range(1, 61)]),
    }
    values.update(overrides)
    return FakeProvider(**values)


def _run(tmp_path, scenario, provider, prior=None, config=None):
    async def _runner():
        repo, db = await open_repository(tmp_path)
        try:
            if prior is not None:
                await repo.save(prior)
            service = build_service(provider, repo, FakeClock(NOW), config)
            return await scenario(service, repo)
        finally:
            await db.close()

    return asyncio.run(_runner())


def test_fresh_record_served_without_network(tmp_path) -> None:
    provider = _full_provider()

    async def scenario(service, repo):
        return await service.get_or_refresh("TCS")

    result = _run(tmp_path, scenario, provider, prior=_prior(30))

    assert result.source is DataSource.cache
    assert not result.is_stale
    assert result.age_seconds == pytest.approx(30)
    assert sum(provider.calls.values()) == 0


def test_stale_record_triggers_exactly_one_refresh(tmp_path) -> None:
    provider = _full_provider()

    async def scenario(service, repo):
        result = await service.get_or_refresh("TCS")
        return result, await repo.load("TCS")

    result, stored = _run(tmp_path, scenario, provider, prior=_prior(90))

    assert result.source is DataSource.live
    assert provider.calls["quote"] == 1
    assert provider.calls["summary"] == 1
    assert provider.calls["history"] == 1
    assert stored.last_updated == NOW
    assert stored.price.current == 105.0


def test_missing_record_is_created(tmp_path) -> None:
    provider = _full_provider()

    async def scenario(service, repo):
        result = await service.get_or_refresh("tcs.bo")
        return result, await repo.load("TCS")

    result, stored = _run(tmp_path, scenario, provider)

    assert result.source is DataSource.live
    assert set(provider.symbols) == {"TCS.NS"}
    assert stored.name == "Tata Consultancy Services Limited"
    assert stored.currency == "INR"
    assert stored.exchange == "NSE"
    assert stored.market_cap == 7_000_000.0


def test_static_estimate_does_not_replace_known_market_cap(tmp_path) -> None:
    provider = _full_provider(
        quote=sample_quote(market_cap=None),
        summary=sample_summary(marketCap=None, sharesOutstanding=None),
        shares=None,
    )
    config = make_settings(market_cap_estimates={"TCS": 1e12})

    async def scenario(service, repo):
        await service.get_or_refresh("TCS")
        return await repo.load("TCS")

    stored = _run(
        tmp_path, scenario, provider, prior=_prior(90, market_cap=1.55e12), config=config
    )

    assert stored.market_cap == 1.55e12


def test_static_estimate_fills_missing_market_cap(tmp_path) -> None:
    provider = _full_provider(
        quote=sample_quote(market_cap=None),
        summary=sample_summary(marketCap=None, sharesOutstanding=None),
        shares=None,
    )
    config = make_settings(market_cap_estimates={"TCS": 1e12})

    async def scenario(service, repo):
        await service.get_or_refresh("TCS")
        return await repo.load("TCS")

    stored = _run(tmp_path, scenario, provider, prior=_prior(90), config=config)

    assert stored.market_cap == 1e12
    assert stored.fundamentals.dividend_yield == pytest.approx(1.25)
    assert stored.volume.average == 1_200_000
    assert stored.technical_indicators.trend is Trend.bullish
    assert stored.technical_indicators.moving_averages.sma50 is not None
    assert stored.returns.one_day == pytest.approx(100 * (60 - 59) / 59)
    assert stored.is_active


def test_known_market_cap_is_never_regressed_to_null(tmp_path) -> None:
    provider = _full_provider(
        quote=sample_quote(market_cap=None),
        summary=sample_summary(marketCap=None, sharesOutstanding=None),
        shares=None,
    )

    async def scenario(service, repo):
        await service.get_or_refresh("TCS")
        return await repo.load("TCS")

    stored = _run(tmp_path, scenario, provider, prior=_prior(90, market_cap=5_000_000.0))

    assert stored.market_cap == 5_000_000.0
    assert stored.last_updated == NOW


def test_resolved_market_cap_replaces_prior_value(tmp_path) -> None:
    provider = _full_provider()

    async def scenario(service, repo):
        await service.get_or_refresh("TCS")
        return await repo.load("TCS")

    stored = _run(tmp_path, scenario, provider, prior=_prior(90, market_cap=5_000_000.0))

    assert stored.market_cap == 7_000_000.0


def test_failed_pieces_keep_prior_fields(tmp_path) -> None:
    provider = _full_provider(fail=["summary", "history"])
    prior = _prior(90)
    prior.technical_indicators.rsi = 55.5

    async def scenario(service, repo):
        await service.get_or_refresh("TCS")
        return await repo.load("TCS")

    stored = _run(tmp_path, scenario, provider, prior=prior)

    assert stored.price.current == 105.0
    assert stored.fundamentals.pe_ratio == 20.0
    assert stored.fundamentals.beta == 0.9
    assert stored.name == "TCS Ltd"
    assert stored.technical_indicators.rsi == 55.5


def test_null_quote_fields_do_not_wipe_known_prices(tmp_path) -> None:
    provider = _full_provider(quote=sample_quote(previous_close=None))

    async def scenario(service, repo):
        await service.get_or_refresh("TCS")
        return await repo.load("TCS")

    stored = _run(tmp_path, scenario, provider, prior=_prior(90))

    assert stored.price.current == 105.0
    assert stored.price.previous_close == 89.0


def test_total_failure_serves_stale_record(tmp_path) -> None:
    provider = FakeProvider(fail=["quote", "summary", "history"])

    async def scenario(service, repo):
        result = await service.get_or_refresh("TCS")
        return result, await repo.load("TCS")

    result, stored = _run(tmp_path, scenario, provider, prior=_prior(600))

    assert result.source is DataSource.stale_fallback
    assert result.is_stale
    assert result.age_seconds == pytest.approx(600)
    assert stored.last_updated == NOW - timedelta(seconds=600)


def test_total_failure_without_cache_is_unavailable(tmp_path) -> None:
    provider = FakeProvider(fail=["quote", "summary", "history"])

    async def scenario(service, repo):
        with pytest.raises(DataUnavailableError):
            await service.get_or_refresh("TCS")
        return await repo.load("TCS")

    assert _run(tmp_path, scenario, provider) is None


def test_new_symbol_needs_a_price(tmp_path) -> None:
    provider = _full_provider(fail=["quote"])

    async def scenario(service, repo):
        with pytest.raises(DataUnavailableError):
            await service.get_or_refresh("TCS")
        return await repo.load("TCS")

    assert _run(tmp_path, scenario, provider) is None


def test_refresh_timeout_falls_back_to_cache(tmp_path) -> None:
    provider = _full_provider(delay=0.5)
    config = make_settings(provider_timeout_seconds=1.0, refresh_timeout_seconds=0.05)

    async def scenario(service, repo):
        return await service.get_or_refresh("TCS")

    result = _run(tmp_path, scenario, provider, prior=_prior(90), config=config)

    assert result.source is DataSource.stale_fallback


def test_slow_summary_does_not_discard_quote_and_history(tmp_path) -> None:
    provider = _full_provider(
        quote=sample_quote(last_price=222.0, market_cap=None),
        delay=1.0,
        slow=["summary", "shares"],
    )
    config = make_settings(provider_timeout_seconds=0.1, refresh_timeout_seconds=0.2)

    async def scenario(service, repo):
        result = await service.get_or_refresh("TCS")
        return result, await repo.load("TCS")

    result, stored = _run(
        tmp_path, scenario, provider, prior=_prior(90, market_cap=5_000_000.0), config=config
    )

    assert result.source is DataSource.live
    assert stored.price.current == 222.0
    assert stored.last_updated == NOW
    assert stored.technical_indicators.trend is Trend.bullish
    assert stored.market_cap == 5_000_000.0
    # The summary that already timed out is not requested a second time
    assert provider.calls["summary"] == 1


def test_overlapping_requests_share_one_refresh(tmp_path) -> None:
    provider = _full_provider(delay=0.05)

    async def scenario(service, repo):
        return await asyncio.gather(service.get_or_refresh("TCS"), service.get_or_refresh("TCS"))

    first, second = _run(tmp_path, scenario, provider)

    assert provider.calls["quote"] == 1
    assert {first.source, second.source} == {DataSource.live, DataSource.cache}


def test_zero_threshold_always_refreshes(tmp_path) -> None:
    provider = _full_provider()

    async def scenario(service, repo):
        return await service.get_or_refresh("TCS", stale_seconds=0)

    result = _run(tmp_path, scenario, provider, prior=_prior(30))

    assert result.source is DataSource.live
    assert provider.calls["quote"] == 1


def test_cancelled_caller_keeps_refresh_single_flight(tmp_path) -> None:
    provider = _full_provider(delay=0.05)

    async def scenario(service, repo):
        first = asyncio.create_task(service.get_or_refresh("TCS"))
        while not provider.calls["quote"]:
            await asyncio.sleep(0.001)
        first.cancel()
        second = await service.get_or_refresh("TCS")
        with pytest.raises(asyncio.CancelledError):
            await first
        return second, await repo.load("TCS")

    second, stored = _run(tmp_path, scenario, provider, prior=_prior(90))

    assert provider.calls["quote"] == 1
    assert second.source is DataSource.cache
    assert stored.last_updated == NOW


def test_blank_symbol_rejected(tmp_path) -> None:
    async def scenario(service, repo):
        with pytest.raises(ValidationError):
            await service.get_or_refresh("  ")

    _run(tmp_path, scenario, FakeProvider())


def test_bulk_dedupes_and_skips_failures(tmp_path) -> None:
    provider = _full_provider()

    async def scenario(service, repo):
        await repo.save(_prior(10, symbol="INFY"))
        return await service.bulk_get_or_refresh(["tcs", "TCS", "INFY"])

    results = _run(tmp_path, scenario, provider)

    assert [r.record.symbol for r in results] == ["TCS", "INFY"]
    assert [r.source for r in results] == [DataSource.live, DataSource.cache]
    assert provider.calls["quote"] == 1

    failing = FakeProvider(fail=["quote", "summary", "history"])
    assert _run(tmp_path, lambda s, r: s.bulk_get_or_refresh(["NEWCO"]), failing) == []


def test_bulk_limit(tmp_path) -> None:
    config = make_settings(max_bulk_symbols=2)

    async def scenario(service, repo):
        with pytest.raises(ValidationError):
            await service.bulk_get_or_refresh(["A", "B", "C"])

    _run(tmp_path, scenario, FakeProvider(), config=config)


def test_trending_refreshes_and_sorts_by_score(tmp_path) -> None:
    provider = _full_provider()
    config = make_settings(trending_symbols="TCS,INFY")

    async def scenario(service, repo):
        await repo.save(_prior(3_600, symbol="OLD"))
        return await service.get_trending(limit=10)

    results = _run(tmp_path, scenario, provider, config=config)

    assert {r.record.symbol for r in results} == {"TCS", "INFY", "OLD"}
    assert all(r.source is DataSource.live for r in results)
    scores = [r.record.trending.score for r in results]
    assert scores == sorted(scores, reverse=True)
    assert "volume_spike" in results[0].record.trending.reasons


def test_trending_unavailable_without_any_data(tmp_path) -> None:
    provider = FakeProvider(fail=["quote", "summary", "history"])
    config = make_settings(trending_symbols="TCS")

    async def scenario(service, repo):
        with pytest.raises(DataUnavailableError):
            await service.get_trending()

    _run(tmp_path, scenario, provider, config=config)


def test_history_and_indicators(tmp_path) -> None:
    provider = FakeProvider(history=history_rows([float(i) for i in range(1, 31)]))

    async def scenario(service, repo):
        bars = await service.get_history("TCS", "1mo")
        indicators = await service.get_indicators("TCS")
        return bars, indicators

    bars, indicators = _run(tmp_path, scenario, provider)

    assert len(bars) == 30
    assert indicators.support == 0.0
    assert indicators.trend is Trend.sideways


def test_history_not_found(tmp_path) -> None:
    async def scenario(service, repo):
        with pytest.raises(NotFoundError):
            await service.get_history("TCS")

    _run(tmp_path, scenario, FakeProvider())
