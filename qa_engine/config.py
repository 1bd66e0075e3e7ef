"""
Application Configuration - Pydantic Settings for type-safe config.

All tunable marketplace values live here. Business services never read the
environment themselves: they receive a MarketplaceConfig and FeatureFlags
built from these settings at construction time.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from qa_engine.models.domain import FeatureFlags, MarketplaceConfig


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 20
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Q&A Marketplace Engine"
    api_version: str = "0.1.0"
    api_description: str = "Pricing, claims, tier gates and resolution for expert Q&A"

    # Shared secret for the scheduler that triggers the expiry sweep
    cron_secret: str = ""

    # Apply pending Alembic migrations on startup
    run_migrations_on_startup: bool = True

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability
    metrics_enabled: bool = True
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "qa-marketplace-engine"

    # Payment Provider - Stripe
    stripe_api_key: str = ""
    payments_test_mode: bool = False  # fake ids instead of live Stripe calls
    currency: str = "usd"

    # Claim / acceptance timing
    claim_expiry_hours: int = 2
    auto_accept_hours: int = 24

    # Dynamic pricing (difficulty tiers)
    platform_fee_rate: float = 0.18
    standard_price_cents: int = 1500
    complex_price_cents: int = 2500
    specialist_price_cents: int = 4500
    high_value_project_cents: int = 50000

    # Legacy flat pricing
    legacy_general_cents: int = 500
    legacy_code_specific_cents: int = 800
    legacy_platform_fee_rate: float = 0.20

    # Expert subscription fee discounts
    pro_platform_fee_rate: float = 0.15
    premium_platform_fee_rate: float = 0.12

    # Progressive tiers
    tier2_message_threshold: int = 3
    tier3_message_threshold: int = 6
    tier2_additional_cents: int = 1000
    tier3_additional_cents: int = 2000

    second_opinion_price_cents: int = 1500

    # Feature flags: global switch plus percentage rollout (0-100)
    feature_dynamic_pricing: bool = False
    rollout_dynamic_pricing: int = 0
    feature_progressive_payments: bool = False
    rollout_progressive_payments: int = 0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.tier3_message_threshold <= self.tier2_message_threshold:
            errors.append("TIER3_MESSAGE_THRESHOLD must be greater than TIER2_MESSAGE_THRESHOLD")

        for name in ("platform_fee_rate", "legacy_platform_fee_rate",
                     "pro_platform_fee_rate", "premium_platform_fee_rate"):
            rate = getattr(self, name)
            if not 0 <= rate < 1:
                errors.append(f"{name.upper()} must be in [0, 1), got {rate}")

        for name in ("rollout_dynamic_pricing", "rollout_progressive_payments"):
            pct = getattr(self, name)
            if not 0 <= pct <= 100:
                errors.append(f"{name.upper()} must be between 0 and 100, got {pct}")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    def marketplace_config(self) -> MarketplaceConfig:
        """Snapshot of the business values injected into the services."""
        return MarketplaceConfig(
            claim_expiry_hours=self.claim_expiry_hours,
            auto_accept_hours=self.auto_accept_hours,
            platform_fee_rate=self.platform_fee_rate,
            standard_price_cents=self.standard_price_cents,
            complex_price_cents=self.complex_price_cents,
            specialist_price_cents=self.specialist_price_cents,
            high_value_project_cents=self.high_value_project_cents,
            legacy_general_cents=self.legacy_general_cents,
            legacy_code_specific_cents=self.legacy_code_specific_cents,
            legacy_platform_fee_rate=self.legacy_platform_fee_rate,
            pro_platform_fee_rate=self.pro_platform_fee_rate,
            premium_platform_fee_rate=self.premium_platform_fee_rate,
            tier2_message_threshold=self.tier2_message_threshold,
            tier3_message_threshold=self.tier3_message_threshold,
            tier2_additional_cents=self.tier2_additional_cents,
            tier3_additional_cents=self.tier3_additional_cents,
            second_opinion_price_cents=self.second_opinion_price_cents,
        )

    def feature_flags(self) -> FeatureFlags:
        """Feature flag values for injection into pricing and the tier gate."""
        return FeatureFlags(
            dynamic_pricing=self.feature_dynamic_pricing,
            dynamic_pricing_rollout=self.rollout_dynamic_pricing,
            progressive_payments=self.feature_progressive_payments,
            progressive_payments_rollout=self.rollout_progressive_payments,
        )


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
