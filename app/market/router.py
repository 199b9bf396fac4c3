from typing import Annotated

from fastapi import APIRouter, Query

from app.dependencies import MarketServiceDep
from app.exceptions import ValidationError
from app.market.schemas import (
    BulkSecurityResponse,
    HistoryResponse,
    IndicatorSet,
    ResponseMeta,
    SecurityResponse,
    SecurityResult,
)

router = APIRouter()


def _to_response(result: SecurityResult) -> SecurityResponse:
    return SecurityResponse(
        data=result.record,
        meta=ResponseMeta(
            source=result.source,
            is_stale=result.is_stale,
            last_updated=result.record.last_updated,
            age_seconds=round(result.age_seconds, 3),
        ),
    )


@router.get("/securities", response_model=BulkSecurityResponse)
async def get_securities(
    symbols: Annotated[str, Query(description="Comma separated symbols")],
    service: MarketServiceDep,
) -> BulkSecurityResponse:
    requested = [s for s in (part.strip() for part in symbols.split(",")) if s]
    if not requested:
        raise ValidationError("At least one symbol is required")
    results = await service.bulk_get_or_refresh(requested)
    return BulkSecurityResponse(count=len(results), data=[_to_response(r) for r in results])


@router.get("/securities/{symbol}", response_model=SecurityResponse)
async def get_security(symbol: str, service: MarketServiceDep) -> SecurityResponse:
    return _to_response(await service.get_or_refresh(symbol))


@router.get("/securities/{symbol}/history", response_model=HistoryResponse)
async def get_history(
    symbol: str,
    service: MarketServiceDep,
    lookback: str | None = None,
    interval: str = "1d",
) -> HistoryResponse:
    bars = await service.get_history(symbol, lookback, interval)
    return HistoryResponse(
        symbol=service.normalize_symbol(symbol),
        lookback=lookback or service.default_lookback,
        interval=interval,
        count=len(bars),
        data=bars,
    )


@router.get("/securities/{symbol}/indicators", response_model=IndicatorSet)
async def get_indicators(
    symbol: str, service: MarketServiceDep, lookback: str | None = None
) -> IndicatorSet:
    return await service.get_indicators(symbol, lookback)


@router.get("/trending", response_model=list[SecurityResponse])
async def get_trending(
    service: MarketServiceDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> list[SecurityResponse]:
    return [_to_response(result) for result in await service.get_trending(limit)]
