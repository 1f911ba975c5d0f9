"""All settings, loaded from the .env file."""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_url: str = "http://localhost:8000"
    database_url: str = "sqlite:///./data/storefront.db"
    admin_api_key: str = ""

    # Square (external commerce platform)
    square_access_token: str = ""
    square_location_id: str = ""
    square_environment: str = "sandbox"  # sandbox | production
    square_api_version: str = "2024-07-17"
    square_timeout_seconds: float = 30
    square_rate_limit_per_minute: int = 100

    # Sync behavior
    sync_max_retries: int = 3
    sync_retry_base_delay: float = 1.0  # seconds, doubled per attempt
    products_cache_ttl_seconds: int = 300
    mirror_max_staleness_hours: float = 24  # 0 disables the bound
    low_stock_threshold: int = 3

    # Background jobs
    catalog_sync_enabled: bool = False
    catalog_sync_interval_minutes: int = 30
    preorder_release_enabled: bool = True
    preorder_release_interval_minutes: int = 60

    @property
    def square_base_url(self) -> str:
        if self.square_environment == "production":
            return "https://connect.squareup.com"
        return "https://connect.squareupsandbox.com"

    class Config:
        env_file = ".env"


settings = Settings()
