import asyncio
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """Outcome of one independent sub-fetch: either a value or an error message."""

    name: str
    value: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, name: str, value: T) -> "FetchResult[T]":
        return cls(name=name, value=value)

    @classmethod
    def failure(cls, name: str, error: str) -> "FetchResult[T]":
        return cls(name=name, error=error)


async def _settle(name: str, call: Awaitable[Any], timeout: float | None) -> FetchResult[Any]:
    try:
        value = await asyncio.wait_for(call, timeout)
    except TimeoutError:
        logger.warning("fetch_timed_out", fetch=name, timeout=timeout)
        return FetchResult.failure(name, f"timed out after {timeout}s")
    except Exception as exc:
        logger.warning("fetch_failed", fetch=name, error=str(exc))
        return FetchResult.failure(name, str(exc) or type(exc).__name__)
    return FetchResult.success(name, value)


async def settle_all(
    calls: Mapping[str, Awaitable[Any]], timeout: float | None = None
) -> dict[str, FetchResult[Any]]:
    """Run every call concurrently; one failing or timing out never cancels the others."""
    names = list(calls)
    results = await asyncio.gather(*(_settle(name, calls[name], timeout) for name in names))
    return dict(zip(names, results, strict=True))
