import aiosqlite
import structlog

from app.config import settings

logger = structlog.get_logger()

_db: aiosqlite.Connection | None = None

DDL_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS securities (
        symbol TEXT PRIMARY KEY,
        name TEXT,
        sector TEXT,
        industry TEXT,
        exchange TEXT,
        currency TEXT,
        country TEXT,
        timezone TEXT,
        price TEXT NOT NULL,
        volume TEXT NOT NULL,
        fundamentals TEXT NOT NULL,
        market_cap REAL,
        technical_indicators TEXT NOT NULL,
        returns TEXT NOT NULL,
        trending TEXT NOT NULL,
        trending_score REAL NOT NULL DEFAULT 0,
        last_updated TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_securities_last_updated ON securities (last_updated)",
    """
    CREATE INDEX IF NOT EXISTS idx_securities_trending
    ON securities (is_active, trending_score DESC)
    """,
]


async def create_schema(db: aiosqlite.Connection) -> None:
    for ddl in DDL_STATEMENTS:
        await db.execute(ddl)
    await db.commit()


async def connect(path: str) -> aiosqlite.Connection:
    db = await aiosqlite.connect(path)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL")
    await create_schema(db)
    return db


async def init_database() -> None:
    global _db
    _db = await connect(settings.db_path)
    logger.info("database_initialized", path=settings.db_path)


async def close_database() -> None:
    global _db
    if _db is not None:
        await _db.close()
        _db = None
        logger.info("database_closed")


def get_db() -> aiosqlite.Connection:
    if _db is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _db


async def check_health() -> None:
    db = get_db()
    cursor = await db.execute("SELECT 1")
    await cursor.close()
