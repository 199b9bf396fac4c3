import re
from collections.abc import Callable, Iterable

from app.config import MarketSettings

SymbolFormatter = Callable[[str], str]


def _suffix_pattern(suffixes: Iterable[str]) -> re.Pattern[str] | None:
    escaped = [re.escape(s) for s in suffixes if s]
    if not escaped:
        return None
    return re.compile(f"(?:{'|'.join(escaped)})$", re.IGNORECASE)


def clean_symbol(symbol: str, known_suffixes: Iterable[str] = ()) -> str:
    """Strip whitespace, upper-case and drop any known exchange suffix."""
    cleaned = symbol.strip().upper()
    pattern = _suffix_pattern(known_suffixes)
    if pattern is not None:
        cleaned = pattern.sub("", cleaned)
    return cleaned


def identity_formatter(symbol: str) -> str:
    return symbol.strip().upper()


def exchange_suffix_formatter(suffix: str, known_suffixes: Iterable[str] = ()) -> SymbolFormatter:
    """Build a formatter that swaps any known suffix for ``suffix``."""
    known = tuple(known_suffixes)

    def _format(symbol: str) -> str:
        return f"{clean_symbol(symbol, known)}{suffix.upper()}"

    return _format


def formatter_for_market(market: MarketSettings) -> SymbolFormatter:
    if not market.exchange_suffix:
        return identity_formatter
    return exchange_suffix_formatter(market.exchange_suffix, market.known_suffixes)
