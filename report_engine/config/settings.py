"""
Report Aggregation Engine
Centralized Configuration Management

Configuration is read from environment variables (and an optional .env file)
through Pydantic settings, split into one section per subsystem.
"""

from functools import lru_cache
from typing import Optional
from pydantic import Field, field_validator, model_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL Database Configuration"""
    
    model_config = SettingsConfigDict(env_prefix="POSTGRES_")
    
    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="business_reporting", description="Database name")
    user: str = Field(default="reporting", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, description="Full async URL (overrides host/port)")
    
    @property
    def async_url(self) -> str:
        """Async database URL for asyncpg"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Redis Cache Configuration"""
    
    model_config = SettingsConfigDict(env_prefix="REDIS_")
    
    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[SecretStr] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    max_connections: int = Field(default=20, description="Max connections")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    decode_responses: bool = Field(default=True, description="Decode responses to strings")
    url: Optional[str] = Field(default=None, description="Redis URL (overrides host/port)")
    
    def get_url(self) -> str:
        """Redis connection URL - uses REDIS_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        if self.password:
            return f"redis://:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class EngineSettings(BaseSettings):
    """Batched fetching and scheduling configuration"""
    
    model_config = SettingsConfigDict(env_prefix="ENGINE_")
    
    page_size: int = Field(default=500, gt=0, description="Rows per page request")
    max_concurrency: int = Field(default=3, gt=0, description="Page requests in flight per window")
    window_delay_seconds: float = Field(default=0.2, ge=0, description="Pause between windows")
    page_timeout_seconds: float = Field(default=30.0, gt=0, description="Upstream timeout per page")
    max_sequential_pages: int = Field(default=1000, gt=0, description="Hard stop for count-less pagination")
    
    # Retry policy (1 attempt = no retry)
    retry_max_attempts: int = Field(default=1, ge=1, description="Attempts per page")
    retry_base_delay_seconds: float = Field(default=1.0, ge=0, description="First backoff delay")
    retry_backoff_multiplier: float = Field(default=2.0, ge=1, description="Backoff growth factor")
    retry_max_delay_seconds: float = Field(default=30.0, ge=0, description="Backoff ceiling")
    
    # Read-through report cache
    cache_enabled: bool = Field(default=False, description="Serve reports through Redis")
    report_cache_ttl_seconds: int = Field(default=300, gt=0, description="Report cache TTL")


class StockSettings(BaseSettings):
    """Days-of-stock thresholds"""
    
    model_config = SettingsConfigDict(env_prefix="STOCK_")
    
    critical_days: float = Field(default=7, gt=0, description="Below this many days: critical")
    low_days: float = Field(default=30, gt=0, description="Below this many days: low")
    max_days_of_stock: float = Field(default=999, gt=0, description="Cap for days-of-stock values")
    days_in_period: int = Field(default=30, gt=0, description="Length of the consumption period")
    
    @model_validator(mode="after")
    def validate_thresholds(self) -> "StockSettings":
        """Thresholds must be ordered critical < low <= max"""
        if self.critical_days >= self.low_days:
            raise ValueError("critical_days must be lower than low_days")
        if self.low_days > self.max_days_of_stock:
            raise ValueError("low_days cannot exceed max_days_of_stock")
        return self


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""
    
    model_config = SettingsConfigDict(env_prefix="")
    
    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Main Application Settings
    
    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )
    
    # Application
    app_name: str = Field(default="report-engine", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")
    
    # Version
    version: str = Field(default="1.0.0", description="Application version")
    
    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    stock: StockSettings = Field(default_factory=StockSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    
    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()
    
    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.
    
    Uses LRU cache to ensure settings are only loaded once.
    
    Returns:
        Settings: Application settings instance
    """
    return Settings()
