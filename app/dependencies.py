from typing import Annotated

from fastapi import Depends

from app.config import settings
from app.database import get_db
from app.market.history import HistoricalPriceFetcher
from app.market.market_cap import build_market_cap_resolver
from app.market.normalizer import QuoteNormalizer
from app.market.providers.base import MarketDataProvider
from app.market.providers.yahoo_finance import YahooFinanceProvider
from app.market.repository import SecurityRepository
from app.market.service import MarketService
from app.market.symbols import formatter_for_market

_provider: MarketDataProvider | None = None
_market_service: MarketService | None = None


def get_provider() -> MarketDataProvider:
    global _provider
    if _provider is None:
        _provider = YahooFinanceProvider()
    return _provider


def get_security_repo() -> SecurityRepository:
    return SecurityRepository(get_db())


def get_market_service() -> MarketService:
    # One instance per process so the per-symbol refresh locks are shared
    global _market_service
    if _market_service is None:
        provider = get_provider()
        normalizer = QuoteNormalizer(settings.market)
        formatter = formatter_for_market(settings.market)
        _market_service = MarketService(
            provider=provider,
            repository=get_security_repo(),
            normalizer=normalizer,
            fetcher=HistoricalPriceFetcher(provider, formatter),
            market_cap_resolver=build_market_cap_resolver(
                provider,
                normalizer,
                estimates=settings.market_cap_estimates,
                step_timeout=settings.provider_timeout_seconds,
            ),
            formatter=formatter,
            config=settings,
        )
    return _market_service


def reset_market_service() -> None:
    global _market_service
    _market_service = None


MarketServiceDep = Annotated[MarketService, Depends(get_market_service)]
