import os
from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)


DEFAULT_CONFIG_PATH = "config.yaml"
_VENUE_OVERRIDE_FIELDS = ("auth_key", "auth_secret", "auth_token", "auth_private_key", "proxy")


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()

    if scheme == "postgres":
        scheme = "postgresql"

    if scheme == "postgresql":
        scheme = "postgresql+psycopg"

    if scheme not in {"postgresql+psycopg", "postgresql+asyncpg"}:
        scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("sslmode", "prefer")
    query_params.setdefault("target_session_attrs", "read-write")
    new_query = urlencode(query_params, doseq=True)

    return urlunparse(parsed._replace(scheme=scheme, query=new_query))


class ServerConfig(BaseModel):
    port: int = Field(8080, description="HTTP listen port")
    mode: str = Field("debug", description="Runtime mode (debug|release)")
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"],
        description="Origins allowed by the CORS middleware",
    )


class DatabaseConfig(BaseModel):
    dsn: str = Field(
        "sqlite:///../data/forecastsync.db",
        description="SQLAlchemy compatible database URL",
    )
    max_open_conns: int = Field(20, ge=1, description="Upper bound on pooled connections")
    max_idle_conns: int = Field(5, ge=0, description="Connections kept open while idle")
    conn_max_lifetime: int = Field(300, ge=0, description="Seconds before a pooled connection is recycled")


class LogConfig(BaseModel):
    file_path: str | None = Field("logs/forecastsync.log", description="Log file path; blank disables the file sink")
    max_size_mb: int = Field(10, ge=1, description="Rotate the log file at this size")
    max_age_days: int = Field(2, ge=1, description="Delete rotated files older than this")
    also_stdout: bool = Field(True, description="Mirror log lines to stdout")
    level: str = Field("INFO", description="Minimum log level")


class SyncConfig(BaseModel):
    cron: str | None = Field(None, description="Cron expression for external ingest schedulers")
    enabled_platforms: list[str] = Field(default_factory=lambda: ["polymarket", "kalshi"])
    odds_sync_enabled: bool = Field(False, description="Run the periodic live-odds refresh")
    odds_sync_interval_sec: int = Field(60, ge=0, description="Seconds between live-odds refreshes")


class PlatformConfig(BaseModel):
    base_url: str = ""
    protocol: str = "https"
    timeout: float = Field(30.0, gt=0, description="Per-request HTTP timeout in seconds")
    retry_count: int = Field(0, ge=0)
    sport_path: str = ""
    series_ticker: str = ""
    series_tickers: list[str] = Field(default_factory=list)
    auth_token: str | None = None
    auth_key: str | None = None
    auth_secret: str | None = None
    auth_private_key: str | None = None
    clob_base_url: str | None = None
    proxy: str | None = None
    min_bet: float = 0.0
    max_bet: float = 0.0

    @field_validator("series_tickers", mode="before")
    @classmethod
    def _split_series_tickers(cls, value: Any) -> Any:
        if value in (None, ""):
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


class CircleConfig(BaseModel):
    base_url: str = Field("https://api-sandbox.circle.com", description="Circle API base URL")
    api_key: str | None = None
    timeout: float = Field(30.0, gt=0)
    proxy: str | None = None


class ChainConfig(BaseModel):
    chain_id: int = 137
    rpc_url: str | None = None
    ws_url: str | None = None
    escrow_address: str | None = None
    bet_router_address: str | None = None
    settlement_address: str | None = None
    fee_vault_address: str | None = None
    executor_private_key: str | None = Field(default=None, exclude=True, repr=False)


def _default_platforms() -> dict[str, PlatformConfig]:
    return {
        "polymarket": PlatformConfig(
            base_url="https://gamma-api.polymarket.com",
            clob_base_url="https://clob.polymarket.com",
        ),
        "kalshi": PlatformConfig(base_url="https://api.elections.kalshi.com/trade-api/v2"),
    }


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        yaml_file=os.getenv("FORECASTSYNC_CONFIG", DEFAULT_CONFIG_PATH),
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    log: LogConfig = Field(default_factory=LogConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    platforms: dict[str, PlatformConfig] = Field(default_factory=_default_platforms)
    circle: CircleConfig = Field(default_factory=CircleConfig)
    chain: ChainConfig = Field(default_factory=ChainConfig)

    # Flat environment overrides applied on top of the nested sections.
    database_dsn: str | None = None
    circle_api_key: str | None = None
    circle_base_url: str | None = None
    chain_executor_private_key: str | None = Field(default=None, repr=False)
    polymarket_auth_key: str | None = None
    polymarket_auth_secret: str | None = None
    polymarket_auth_token: str | None = None
    polymarket_auth_private_key: str | None = Field(default=None, repr=False)
    polymarket_proxy: str | None = None
    kalshi_auth_key: str | None = None
    kalshi_auth_secret: str | None = Field(default=None, repr=False)
    kalshi_auth_token: str | None = None
    kalshi_auth_private_key: str | None = Field(default=None, repr=False)
    kalshi_proxy: str | None = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _apply_overrides(self) -> "Settings":
        if self.database_dsn:
            self.database.dsn = self.database_dsn
        if self.circle_api_key:
            self.circle.api_key = self.circle_api_key
        if self.circle_base_url:
            self.circle.base_url = self.circle_base_url
        # The executor key is only ever taken from the environment.
        self.chain.executor_private_key = self.chain_executor_private_key

        for venue in ("polymarket", "kalshi"):
            platform = self.platforms.get(venue)
            if platform is None:
                continue
            for field_name in _VENUE_OVERRIDE_FIELDS:
                value = getattr(self, f"{venue}_{field_name}")
                if value:
                    setattr(platform, field_name, value)
        return self

    def platform(self, name: str) -> PlatformConfig:
        return self.platforms.get(name.lower()) or PlatformConfig()

    @property
    def resolved_database_url(self) -> str:
        return _ensure_sqlalchemy_postgres_scheme(str(self.database.dsn))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
