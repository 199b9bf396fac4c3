from abc import ABC, abstractmethod


class MarketDataProvider(ABC):
    """Raw access to an external quote provider.

    Returned dicts are provider-shaped; mapping them onto the canonical record
    is the normalizer's job. Implementations raise on transport failures.
    """

    @abstractmethod
    async def get_quote(self, symbol: str) -> dict: ...

    @abstractmethod
    async def get_summary(self, symbol: str) -> dict: ...

    @abstractmethod
    async def get_history(self, symbol: str, period: str, interval: str) -> list[dict]: ...

    @abstractmethod
    async def get_shares_outstanding(self, symbol: str) -> float | None: ...
