from datetime import UTC, datetime

import aiosqlite
import structlog

from app.market.schemas import (
    FundamentalsBlock,
    IndicatorSet,
    PriceBlock,
    ReturnsBlock,
    SecurityRecord,
    TrendingInfo,
    VolumeBlock,
)

logger = structlog.get_logger()

_COLUMNS = (
    "symbol",
    "name",
    "sector",
    "industry",
    "exchange",
    "currency",
    "country",
    "timezone",
    "price",
    "volume",
    "fundamentals",
    "market_cap",
    "technical_indicators",
    "returns",
    "trending",
    "trending_score",
    "last_updated",
    "is_active",
)


def _timestamp(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class SecurityRepository:
    """Key-value store of security records keyed by symbol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def load(self, symbol: str) -> SecurityRecord | None:
        cursor = await self._db.execute(
            "SELECT * FROM securities WHERE symbol = ?",
            (symbol,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._to_record(row)

    async def save(self, record: SecurityRecord) -> None:
        placeholders = ", ".join("?" for _ in _COLUMNS)
        updates = ", ".join(f"{col} = excluded.{col}" for col in _COLUMNS if col != "symbol")
        await self._db.execute(
            f"""
            INSERT INTO securities ({", ".join(_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT(symbol) DO UPDATE SET {updates}
            """,  # noqa: S608
            self._to_row(record),
        )
        await self._db.commit()
        logger.debug("security_saved", symbol=record.symbol)

    async def find_stale_before(self, threshold: datetime) -> list[SecurityRecord]:
        cursor = await self._db.execute(
            """
            SELECT * FROM securities
            WHERE is_active = 1 AND last_updated < ?
            ORDER BY last_updated ASC
            """,
            (_timestamp(threshold),),
        )
        rows = await cursor.fetchall()
        return [self._to_record(row) for row in rows]

    async def list_active(self, limit: int = 50) -> list[SecurityRecord]:
        cursor = await self._db.execute(
            """
            SELECT * FROM securities
            WHERE is_active = 1
            ORDER BY trending_score DESC, symbol ASC
            LIMIT ?
            """,
            (limit,),
        )
        rows = await cursor.fetchall()
        return [self._to_record(row) for row in rows]

    @staticmethod
    def _to_row(record: SecurityRecord) -> tuple:
        return (
            record.symbol,
            record.name,
            record.sector,
            record.industry,
            record.exchange,
            record.currency,
            record.country,
            record.timezone,
            record.price.model_dump_json(),
            record.volume.model_dump_json(),
            record.fundamentals.model_dump_json(),
            record.market_cap,
            record.technical_indicators.model_dump_json(),
            record.returns.model_dump_json(),
            record.trending.model_dump_json(),
            record.trending.score,
            _timestamp(record.last_updated),
            int(record.is_active),
        )

    @staticmethod
    def _to_record(row: aiosqlite.Row) -> SecurityRecord:
        return SecurityRecord(
            symbol=row["symbol"],
            name=row["name"],
            sector=row["sector"],
            industry=row["industry"],
            exchange=row["exchange"],
            currency=row["currency"],
            country=row["country"],
            timezone=row["timezone"],
            price=PriceBlock.model_validate_json(row["price"]),
            volume=VolumeBlock.model_validate_json(row["volume"]),
            fundamentals=FundamentalsBlock.model_validate_json(row["fundamentals"]),
            market_cap=row["market_cap"],
            technical_indicators=IndicatorSet.model_validate_json(row["technical_indicators"]),
            returns=ReturnsBlock.model_validate_json(row["returns"]),
            trending=TrendingInfo.model_validate_json(row["trending"]),
            last_updated=datetime.fromisoformat(row["last_updated"]),
            is_active=bool(row["is_active"]),
        )
