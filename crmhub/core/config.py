from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "CRM Hub"
    app_env: str = "local"
    api_base_url: str = "http://localhost:8000"
    demo_mode: bool = False
    http_timeout_seconds: float = 30.0
    stale_lead_days: int = 7
    invoice_due_days: int = 14
    default_quote_tax_percent: float = 15.0
    metrics_enabled: bool = False
    otel_enabled: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()
