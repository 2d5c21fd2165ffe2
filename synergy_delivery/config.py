from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./synergy_delivery.db"

    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    # Store origin address used for every outgoing shipment
    store_name: str = "Synergy Foods"
    store_phone: str = "+971501234567"
    store_address: str = "Sheikh Zayed Road, Dubai"
    store_city: str = "Dubai"
    store_state: str = "Dubai"
    store_country: str = "AE"
    store_postal_code: str = "12345"

    # Checkout does not receive the customer's address yet
    placeholder_name: str = "Customer"
    placeholder_phone: str = "+971501234567"
    placeholder_street: str = "Sheikh Zayed Road"
    placeholder_city: str = "Dubai"
    placeholder_state: str = "Dubai"
    placeholder_country: str = "AE"
    placeholder_postal_code: str = "12345"

    # Users allowed on the /api/admin endpoints
    admin_user_ids: List[str] = []

    default_delivery_provider: str = "mock"
    rate_cache_ttl_minutes: int = 60

    log_level: str = "INFO"
    log_file: Optional[str] = None

    class Config:
        env_file = ".env"


settings = Settings()
