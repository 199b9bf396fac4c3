from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import close_database, init_database
from app.dependencies import reset_market_service
from app.exception_handlers import register_exception_handlers
from app.logging_config import setup_logging
from app.market.router import router as market_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await init_database()
    yield
    reset_market_service()
    await close_database()


app = FastAPI(
    title="Portfolio Tracker",
    description="Market data freshness and technical indicator service",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(market_router, prefix="/api/v1/market", tags=["market"])


@app.get("/api/v1/health")
async def health():
    from app.database import check_health

    await check_health()
    return {"status": "healthy"}
