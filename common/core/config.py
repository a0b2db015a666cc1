from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

from common.core.constants import Environment


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment Profile
    environment: Environment = Environment.LOCAL

    # Service Settings
    debug: bool = False

    # Database Components
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "subscriptions"
    db_use_nullpool: bool = (
        False  # True for workers (sequential), False for API (concurrent)
    )
    db_pool_size: int = 10
    db_pool_overflow: int = 5

    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # OpenTelemetry
    otel_service_name: str = "subscription-billing"
    otel_service_version: str = "0.1.0"

    # Axiom (exporters are only attached when a token is set)
    axiom_token: Optional[str] = None
    axiom_dataset: str = "subscription-billing"

    # Billing - Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    # Pricing rules (defaults for PricingRules)
    pricing_annual_discount_percent: Decimal = Decimal("20")
    pricing_volume_threshold: int = 10
    pricing_volume_discount_per_unit_percent: Decimal = Decimal("2")
    pricing_volume_discount_max_percent: Decimal = Decimal("30")
    pricing_enterprise_threshold: Decimal = Decimal("1000")
    pricing_enterprise_discount_percent: Decimal = Decimal("15")
    pricing_minimum_commitment: Decimal = Decimal("5.00")
    pricing_maximum_discount_percent: Decimal = Decimal("50")

    # Usage metering
    usage_near_limit_percent: float = 80.0
    usage_summary_default_days: int = 30

    @property
    def billing_provider_enabled(self) -> bool:
        """Stripe is only called when a secret key is configured."""
        return bool(self.stripe_secret_key)


settings = Settings()
