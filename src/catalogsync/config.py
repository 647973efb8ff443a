from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./catalogsync.db"

    # External catalog (Graph API style)
    catalog_access_token: str = ""
    catalog_id: str = ""
    catalog_business_id: str = ""
    catalog_api_base: str = "https://graph.facebook.com/v21.0"
    catalog_request_timeout: float = 30.0
    rate_limit_calls_per_hour: int = 200

    # Global kill switch: false disables every sync side effect
    sync_enabled: bool = True
    site_url: str = "https://primepickz.com"

    # Shared secret the scheduler sends as a bearer token
    cron_secret: str = ""

    alert_webhook_url: Optional[str] = None
    dashboard_url: Optional[str] = None

    reconciliation_hour: int = 2  # UTC
    reconciliation_minute: int = 0
    reconciliation_batch_size: int = 10

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
