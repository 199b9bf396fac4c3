from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class MarketSettings(BaseModel):
    exchange: str = Field(default="NSE")
    exchange_suffix: str = Field(default=".NS")
    known_suffixes: list[str] = Field(default_factory=lambda: [".NS", ".BO"])
    currency: str = Field(default="INR")
    country: str = Field(default="IN")
    timezone: str = Field(default="Asia/Kolkata")


class Settings(BaseSettings):
    model_config = {
        "env_prefix": "PT_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)
    db_path: str = Field(default="portfolio_tracker.db")
    cors_origins: str = Field(default="http://localhost:3000")

    # Freshness thresholds per data class
    single_stale_seconds: float = Field(default=300.0, gt=0)
    bulk_stale_seconds: float = Field(default=60.0, gt=0)

    provider_timeout_seconds: float = Field(default=8.0, gt=0)
    refresh_timeout_seconds: float = Field(default=20.0, gt=0)
    history_lookback: str = Field(default="1y")
    max_bulk_symbols: int = Field(default=50, ge=1)
    trending_symbols: str = Field(
        default=(
            "RELIANCE,TCS,HDFCBANK,INFY,HINDUNILVR,ICICIBANK,BHARTIARTL,ITC,"
            "KOTAKBANK,LT,SBIN,ASIANPAINT,AXISBANK,MARUTI,TITAN,NESTLEIND,"
            "HCLTECH,WIPRO,ULTRACEMCO,BAJFINANCE"
        )
    )

    market: MarketSettings = Field(default_factory=MarketSettings)
    market_cap_estimates: dict[str, float] | None = Field(default=None)

    @property
    def trending_symbol_list(self) -> list[str]:
        return [s.strip().upper() for s in self.trending_symbols.split(",") if s.strip()]


settings = Settings()
