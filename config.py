from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite:///./catalog.db"

    shop_url: Optional[str] = None
    shop_token: Optional[str] = None
    shopify_api_version: str = "2025-10"
    shopify_webhook_secret: Optional[str] = None
    shopify_max_retries: int = 1
    upstream_timeout_seconds: float = 10.0

    default_storefront: str = "LUNERA"
    system_partitions: str = "shopifyItems,orders,carts,users,userEvents,shippingRates"
    market_codes: str = "FI,DE"
    online_store_publication_name: str = "Online Store"

    # Products below this total are kept but reported as not listable.
    min_display_stock: int = 5
    variant_lookup_mode: str = "index"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def system_partition_names(self) -> List[str]:
        return [p.strip() for p in self.system_partitions.split(",") if p.strip()]

    @property
    def market_code_list(self) -> List[str]:
        return [m.strip().upper() for m in self.market_codes.split(",") if m.strip()]


settings = Settings()
