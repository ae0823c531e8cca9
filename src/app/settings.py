from functools import lru_cache
from typing import Literal, final

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from yarl import URL


class PostgresConfig(BaseModel):
    user: str
    password: str
    host: str
    port: int = 5432
    db: str


class RedisConfig(BaseModel):
    host: str = "localhost"
    port: int = 6379
    db: int = 0


class APIConfig(BaseModel):
    title: str = "Registration Guard API"
    version: str = "1.0.0"
    port: int = 8000
    host: str = "0.0.0.0"
    allowed_hosts: list[str] = Field(default_factory=list)
    admin_api_key: str | None = None

    page_max_size: int = 100
    page_default_size: int = 50


class RegistrationConfig(BaseModel):
    # Defaults for the hot-reloadable protection snapshot. The persisted
    # feature-flag value wins once an admin has saved one.
    enabled: bool = True
    rollout_percentage: int = Field(100, ge=0, le=100)
    max_attempts_per_ip: int = Field(5, ge=1)
    max_attempts_per_email: int = Field(3, ge=1)
    window_minutes: int = Field(15, ge=1)
    block_duration_minutes: int = Field(60, ge=1)
    require_captcha_threshold: float = Field(0.5, ge=0, le=1)
    deny_threshold: float = Field(0.9, ge=0, le=1)
    captcha_enabled: bool = True
    auto_block_on_rate_limit: bool = True
    allowed_countries: list[str] = Field(default_factory=list)
    blocked_countries: list[str] = Field(default_factory=list)

    trust_forwarded_ip: bool = False
    counter_backend: Literal["memory", "redis"] = "memory"

    captcha_provider: Literal["turnstile", "hcaptcha", "recaptcha"] = "recaptcha"
    captcha_site_key: str | None = None
    captcha_secret_key: str | None = None
    captcha_verify_url: str | None = None
    captcha_timeout_seconds: float = 5.0
    captcha_min_score: float = 0.5

    ip_geolocation_enabled: bool = False
    ip_geolocation_base_url: str = "https://ipapi.co"
    ip_geolocation_timeout_seconds: float = 2.0
    ip_geolocation_cache_ttl_seconds: int = 3600

    account_service_url: str = "http://localhost:8080"
    account_timeout_seconds: float = 10.0
    account_retry_after_seconds: int = 30

    detector_interval_seconds: int = 300
    detector_volume_trigger: int = 200
    detector_window_minutes: int = 10
    subnet_attempt_threshold: int = 20
    subnet_min_distinct_ips: int = 3
    rapid_attempt_threshold: int = 10
    blacklisted_domain_threshold: int = 5
    recent_blacklist_days: int = 7
    score_shift_delta: float = 0.25
    score_shift_min_samples: int = 20
    baseline_hours: int = 24


@final
class Config(BaseSettings):
    model_config: SettingsConfigDict = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="APP__",
        env_nested_delimiter="__",
        extra="ignore",
    )

    env: Literal["local", "dev", "prod"] = "local"

    api: APIConfig = APIConfig()
    registration: RegistrationConfig = RegistrationConfig()

    postgres: PostgresConfig | None = None
    redis: RedisConfig = RedisConfig()
    database_url_override: str | None = None

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        if self.postgres is None:
            return "sqlite+aiosqlite:///./registration_guard.db"
        host = "localhost" if self.env == "local" else self.postgres.host
        return URL.build(
            scheme="postgresql+asyncpg",
            user=self.postgres.user,
            password=self.postgres.password,
            host=host,
            port=self.postgres.port,
            path=f"/{self.postgres.db}",
        ).human_repr()

    @property
    def redis_url(self) -> str:
        host = "localhost" if self.env == "local" else self.redis.host
        return URL.build(
            scheme="redis",
            host=host,
            port=self.redis.port,
            path=f"/{self.redis.db}",
        ).human_repr()


@lru_cache
def get_config() -> Config:
    return Config()
